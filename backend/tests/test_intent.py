"""
Tests for the classifier fallback: prompt rendering, JSON parsing and error mapping.
"""
import asyncio

import httpx
import pytest

from app.core.errors import ClassifierError, ClassifierTimeoutError
from app.services.chat.intent import ClassifierRoute, RouteClassifier
from app.utils.json_parser import parse_llm_json
from app.utils.prompt_loader import get_prompt_loader


class FakeLLM:
    def __init__(self, reply=None, delay=0.0, error=None):
        self.reply = reply
        self.delay = delay
        self.error = error
        self.prompts = []

    async def chat(self, messages, temperature=0.1, system=None):
        self.prompts.append((system, messages[-1]["content"]))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


def classify(client, message="what is a workspace", timeout=1.0):
    return asyncio.run(RouteClassifier(client).classify(message, timeout=timeout))


def test_prompt_renders_message():
    loader = get_prompt_loader()
    prompt = loader.format_prompt("route_classification", message="open recent")
    assert "Message: open recent" in prompt
    assert '{"route": "app|doc_explain|action|other"' in prompt
    assert "Respond with JSON only." in loader.get_system_prompt("route_classification")


def test_parse_llm_json_variants():
    assert parse_llm_json('```json\n{"route": "app", "confidence": 0.9}\n```')["route"] == "app"
    assert parse_llm_json('Sure! {"route": "other", "confidence": 0.5,}')["route"] == "other"
    assert parse_llm_json("no json here", fallback={"route": "other"}) == {"route": "other"}
    with pytest.raises(ValueError):
        parse_llm_json('{"route": "app"}', required_fields=["route", "confidence"])


def test_classify_parses_verdict():
    client = FakeLLM('{"route": "doc_explain", "confidence": 0.85, "rewrite": "workspace"}')
    result = classify(client)
    assert result.route == ClassifierRoute.DOC_EXPLAIN
    assert result.wants_docs
    assert result.rewrite == "workspace"
    system, prompt = client.prompts[0]
    assert "Message: what is a workspace" in prompt
    assert system


def test_unknown_route_is_an_error():
    with pytest.raises(ClassifierError):
        classify(FakeLLM('{"route": "weather", "confidence": 0.9}'))


def test_out_of_range_confidence_is_an_error():
    with pytest.raises(ClassifierError):
        classify(FakeLLM('{"route": "app", "confidence": 7}'))


def test_transport_failure_is_an_error():
    with pytest.raises(ClassifierError):
        classify(FakeLLM(error=httpx.ConnectError("refused")))


def test_slow_model_times_out():
    with pytest.raises(ClassifierTimeoutError):
        classify(FakeLLM('{"route": "app", "confidence": 0.9}', delay=0.5), timeout=0.01)
