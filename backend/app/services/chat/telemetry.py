"""
Routing telemetry events and sinks.

RoutingPatternId values are persisted by downstream analytics: add new members,
never rename or remove existing ones.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Protocol

from pydantic import BaseModel, Field

from app.core.logging import get_logger

logger = get_logger("telemetry")


class RoutingPatternId(str, Enum):
    DEF_WHAT_IS = "DEF_WHAT_IS"
    DEF_WHAT_ARE = "DEF_WHAT_ARE"
    DEF_EXPLAIN = "DEF_EXPLAIN"
    DEF_CONVERSATIONAL = "DEF_CONVERSATIONAL"
    FOLLOWUP_TELL_ME_MORE = "FOLLOWUP_TELL_ME_MORE"
    FOLLOWUP_PRONOUN = "FOLLOWUP_PRONOUN"
    FOLLOWUP_CLASSIFIER = "FOLLOWUP_CLASSIFIER"
    FOLLOWUP_POLITE = "FOLLOWUP_POLITE"
    ACTION_COMMAND = "ACTION_COMMAND"
    ACTION_WIDGET = "ACTION_WIDGET"
    ROUTE_DOC_STYLE = "ROUTE_DOC_STYLE"
    ROUTE_BARE_NOUN = "ROUTE_BARE_NOUN"
    ROUTE_APP_RELEVANT = "ROUTE_APP_RELEVANT"
    ROUTE_CORE_TERMS = "ROUTE_CORE_TERMS"
    ROUTE_LLM_FALLBACK = "ROUTE_LLM_FALLBACK"
    CORRECTION = "CORRECTION"
    CLARIFICATION_EXIT = "CLARIFICATION_EXIT"
    AMBIGUOUS_CROSS_DOC = "AMBIGUOUS_CROSS_DOC"
    CLARIFY_HIGH_AMBIGUITY = "CLARIFY_HIGH_AMBIGUITY"
    SEMANTIC_FALLBACK = "SEMANTIC_FALLBACK"
    CROSS_CORPUS_DOCS = "CROSS_CORPUS_DOCS"
    CROSS_CORPUS_NOTES = "CROSS_CORPUS_NOTES"
    CROSS_CORPUS_AMBIGUOUS = "CROSS_CORPUS_AMBIGUOUS"
    UNKNOWN = "UNKNOWN"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TelemetryEvent(BaseModel):
    event: str
    timestamp: datetime = Field(default_factory=_now)


class DocRoutingDecisionEvent(TelemetryEvent):
    """One per turn routed through document retrieval, whatever the outcome."""

    event: str = "doc_routing_decision"
    input_len: int
    normalized_query: str
    route_deterministic: str
    route_final: str
    matched_pattern_id: RoutingPatternId = RoutingPatternId.UNKNOWN
    known_terms_loaded: bool = True
    known_terms_version: Optional[str] = None
    classifier_called: bool = False
    classifier_confidence: Optional[float] = None
    classifier_timeout: bool = False
    classifier_error: bool = False
    retrieval_query_corrected: bool = False
    doc_status: Optional[str] = None
    doc_slug_top: Optional[str] = None
    doc_slug_alt: List[str] = []
    followup_detected: bool = False
    last_doc_slug_present: bool = False
    user_corrected_next_turn: bool = False


class FuzzyMatchEvent(TelemetryEvent):
    """Every fuzzy known-noun hit, for offline threshold tuning."""

    event: str = "known_noun_fuzzy_match"
    input_token: str
    matched_term: str
    distance: int
    known_terms_version: Optional[str] = None


class RoutingCorrectionEvent(TelemetryEvent):
    """The user rejected the previous doc answer."""

    event: str = "routing_correction"
    matched_pattern_id: RoutingPatternId = RoutingPatternId.CORRECTION
    corrected_doc_slug: Optional[str] = None
    user_corrected_next_turn: bool = True


class TelemetrySink(Protocol):
    def emit(self, event: TelemetryEvent) -> None:
        ...


class LoggingTelemetrySink:
    """Writes each event as one JSON line on the telemetry logger."""

    def emit(self, event: TelemetryEvent) -> None:
        logger.info(event.model_dump_json())


class InMemoryTelemetrySink:
    """Collects events in a list."""

    def __init__(self):
        self.events: List[TelemetryEvent] = []

    def emit(self, event: TelemetryEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: type) -> List[TelemetryEvent]:
        return [e for e in self.events if isinstance(e, event_type)]

    def clear(self) -> None:
        self.events.clear()


# Global instance
_sink: Optional[TelemetrySink] = None


def get_telemetry_sink() -> TelemetrySink:
    """Get or create the global telemetry sink."""
    global _sink
    if _sink is None:
        _sink = LoggingTelemetrySink()
    return _sink


def set_telemetry_sink(sink: Optional[TelemetrySink]) -> None:
    global _sink
    _sink = sink
