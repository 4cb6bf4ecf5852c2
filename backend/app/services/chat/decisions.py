"""Routing decision types consumed by the executor."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict


class RoutingAction(str, Enum):
    EXECUTE_PANEL = "execute_panel"
    DISAMBIGUATE = "disambiguate"
    CLARIFY = "clarify"
    RETRIEVE_DOC_RESPONSE = "retrieve_doc_response"
    AFFIRM_SUGGESTION = "affirm_suggestion"
    REJECT_SUGGESTION = "reject_suggestion"
    PASSTHROUGH = "passthrough"


class PassthroughTarget(str, Enum):
    LLM = "llm"
    WIDGET_CONTEXT = "widget_context"
    ACTION = "action"


class Tier(str, Enum):
    STOP_CANCEL = "stop_cancel"
    RETURN_RESUME = "return_resume"
    INTERRUPT_COMMAND = "interrupt_command"
    SUGGESTION = "suggestion"
    CLARIFICATION = "clarification"
    KNOWN_NOUN = "known_noun"
    GROUNDING_SET = "grounding_set"
    WIDGET_CONTEXT = "widget_context"
    DOC_RETRIEVAL = "doc_retrieval"
    FALLBACK = "fallback"


class RoutingDecision(BaseModel):
    """One per turn. Never persisted; the executor derives side effects from it."""

    model_config = ConfigDict(frozen=True)

    handled: bool
    action: RoutingAction
    payload: Dict[str, Any] = {}
    tier: Tier

    @property
    def message(self) -> str:
        return str(self.payload.get("message", ""))
