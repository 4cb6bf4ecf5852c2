"""Per-turn entry point: load session state, run the dispatcher, store the result."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.core.errors import StaleKnownTermsError
from app.core.logging import get_logger
from app.db.schema import ChatRouteRequest, ChatRouteResponse
from app.services.chat.decisions import RoutingDecision
from app.services.chat.dispatcher import TurnContext, route_turn
from app.services.chat.intent import RouteClassifier, get_route_classifier
from app.services.chat.known_terms import KnownTermRegistry, get_known_term_registry, stale_reason
from app.services.chat.normalizer import normalize_label
from app.services.chat.state import ClarificationOption, ConversationState, Suggestion
from app.services.chat.telemetry import TelemetrySink
from app.services.conversation_memory import ConversationMemory
from app.services.doc_store import get_alias_table, get_corpus_registry

logger = get_logger("services.chat.router")


def acquire_known_terms(registry: KnownTermRegistry, now: Optional[datetime] = None):
    """
    The store for this turn and whether fuzzy matching may use it.
    A stale store that cannot be refreshed is still used, with fuzzy matching off.
    """
    try:
        store = registry.acquire(now)
    except StaleKnownTermsError as e:
        logger.warning(f"{e}; fuzzy matching disabled for this turn")
        return registry.current, False
    return store, True


def build_turn_context(
    db: Session,
    request: ChatRouteRequest,
    state: ConversationState,
    settings: Optional[Settings] = None,
    registry: Optional[KnownTermRegistry] = None,
    telemetry: Optional[TelemetrySink] = None,
) -> TurnContext:
    settings = settings or get_settings()
    registry = registry or get_known_term_registry()
    store, fresh = acquire_known_terms(registry)
    return TurnContext.build(
        request.message,
        state=state,
        store=store,
        corpus=get_corpus_registry().get(db),
        aliases=get_alias_table(),
        ui_context=request.ui_context,
        fuzzy_enabled=fresh,
        known_terms_loaded=fresh and not store.is_bootstrap,
        strict_app_relevance=settings.strict_app_relevance,
        classifier_enabled=settings.classifier_enabled,
        classifier_timeout=settings.classifier_timeout_seconds,
        classifier_doc_style_timeout=settings.classifier_doc_style_timeout_seconds,
        classifier_confidence_min=settings.classifier_confidence_min,
        telemetry=telemetry,
    )


async def route_message(
    db: Session,
    request: ChatRouteRequest,
    classifier: Optional[RouteClassifier] = None,
    telemetry: Optional[TelemetrySink] = None,
) -> ChatRouteResponse:
    """
    Route one chat turn.

    Turns for the same session are expected to arrive one at a time; the state is
    loaded at the start and replaced wholesale at the end.
    """
    memory = ConversationMemory(db, request.session_id)
    state = await memory.load_state()
    ctx = build_turn_context(db, request, state, telemetry=telemetry)

    settings = get_settings()
    if classifier is None and settings.classifier_enabled:
        classifier = get_route_classifier()

    result = await route_turn(ctx, classifier)
    decision = result.decision

    await memory.save_state(result.state)
    await memory.record_turn(request.message, decision.message, decision.action.value, decision.tier.value)

    return to_response(decision)


def to_response(decision: RoutingDecision) -> ChatRouteResponse:
    return ChatRouteResponse(
        handled=decision.handled,
        action=decision.action.value,
        payload=decision.payload,
        tier=decision.tier.value,
    )


async def offer_suggestion(
    db: Session,
    session_id: str,
    candidates: Sequence[ClarificationOption],
    alternatives: Sequence[ClarificationOption] = (),
    message: Optional[str] = None,
) -> ConversationState:
    """
    Put the session into the offered state. Labels the user already rejected are
    dropped; if nothing is left the suggestion is not stored.
    """
    memory = ConversationMemory(db, session_id)
    state = await memory.load_state()
    rejected = state.rejected_suggestions

    kept = tuple(c for c in candidates if normalize_label(c.label) not in rejected)
    kept_alternatives = tuple(a for a in alternatives if normalize_label(a.label) not in rejected)
    suggestion = Suggestion(candidates=kept, alternatives=kept_alternatives, message=message) if kept else None

    new_state = state.with_suggestion(suggestion)
    await memory.save_state(new_state)
    return new_state


def known_terms_status(now: Optional[datetime] = None) -> dict:
    """Version and staleness of the active known-term store, for /health."""
    registry = get_known_term_registry()
    store = registry.current
    reason = stale_reason(store, now or datetime.now(timezone.utc), get_settings().known_terms_expected_hash)
    return {
        "version": store.version,
        "terms": len(store),
        "bootstrap": store.is_bootstrap,
        "stale": reason is not None,
        "stale_reason": reason,
    }
