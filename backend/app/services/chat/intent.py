"""Optional model-backed route classifier used when no deterministic tier claims a turn."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.core.config import get_settings
from app.core.errors import ClassifierError, ClassifierTimeoutError
from app.core.llm_client import LLMClient, get_llm_client
from app.core.logging import get_logger
from app.utils.json_parser import parse_llm_json
from app.utils.prompt_loader import get_prompt_loader

logger = get_logger("services.chat.intent")

PROMPT_KEY = "route_classification"


class ClassifierRoute(str, Enum):
    APP = "app"
    DOC_EXPLAIN = "doc_explain"
    ACTION = "action"
    OTHER = "other"


class ClassifierResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    route: ClassifierRoute
    confidence: float = Field(ge=0.0, le=1.0)
    rewrite: str = ""

    @property
    def wants_docs(self) -> bool:
        return self.route in (ClassifierRoute.APP, ClassifierRoute.DOC_EXPLAIN)


class RouteClassifier:
    """
    Wraps the LLM client with a hard timeout.

    Any failure surfaces as ClassifierError (or ClassifierTimeoutError) so the
    dispatcher can treat it as "classifier declined".
    """

    def __init__(self, client: Optional[LLMClient] = None):
        self._client = client

    @property
    def client(self) -> LLMClient:
        if self._client is None:
            self._client = get_llm_client()
        return self._client

    async def classify(self, message: str, timeout: Optional[float] = None) -> ClassifierResult:
        """
        Classify a message into app / doc_explain / action / other.

        Raises:
            ClassifierTimeoutError: If the model does not answer within timeout.
            ClassifierError: On transport errors or an unusable response.
        """
        timeout = timeout if timeout is not None else get_settings().classifier_timeout_seconds
        loader = get_prompt_loader()
        system_prompt = loader.get_system_prompt(PROMPT_KEY)
        user_prompt = loader.format_prompt(PROMPT_KEY, message=message)

        try:
            response = await asyncio.wait_for(
                self.client.chat(
                    messages=[{"role": "user", "content": user_prompt}],
                    temperature=0.0,
                    system=system_prompt,
                ),
                timeout=timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.info(f"[Classifier] timed out after {timeout}s")
            raise ClassifierTimeoutError(timeout) from e
        except (httpx.HTTPError, KeyError, IndexError) as e:
            logger.warning(f"[Classifier] request failed: {e}")
            raise ClassifierError(f"Classifier request failed: {e}") from e

        try:
            data = parse_llm_json(response, required_fields=["route", "confidence"])
            result = ClassifierResult(
                route=str(data["route"]).strip().lower(),
                confidence=float(data["confidence"]),
                rewrite=str(data.get("rewrite") or ""),
            )
        except (ValueError, TypeError, ValidationError) as e:
            logger.warning(f"[Classifier] unusable response: {e}")
            raise ClassifierError(f"Unusable classifier response: {e}") from e

        logger.debug(f"[Classifier] route={result.route.value} confidence={result.confidence:.2f}")
        return result


# Global instance
_classifier: Optional[RouteClassifier] = None


def get_route_classifier() -> RouteClassifier:
    """Get or create global RouteClassifier instance."""
    global _classifier
    if _classifier is None:
        _classifier = RouteClassifier()
    return _classifier
