"""
Tier dispatcher.

Each tier is a pure function (TurnContext, ConversationState) -> Optional[TierOutcome].
TIERS is evaluated in order by a single fold: the first outcome carrying a decision
ends the turn; an outcome without a decision only replaces the state and the fold
continues. Only the classifier fallback awaits.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from app.core.constants import MessageTemplates
from app.core.errors import ClassifierError, ClassifierTimeoutError
from app.core.logging import get_logger
from app.db.schema import UIContext
from app.services.chat import known_noun, patterns
from app.services.chat.decisions import PassthroughTarget, RoutingDecision, Tier
from app.services.chat.doc_routing import DocRoute, classify_route, correct_retrieval_query, visible_widget_titles
from app.services.chat.helpers import (
    affirm_suggestion,
    clarify,
    disambiguate,
    doc_response,
    execute_panel,
    format_option,
    passthrough,
    reject_suggestion,
)
from app.services.chat.intent import ClassifierRoute, RouteClassifier
from app.services.chat.known_terms import KnownTerm, KnownTermStore, TermKind
from app.services.chat.normalizer import NormalizedQuery, normalize, normalize_label
from app.services.chat.state import (
    ClarificationOption,
    ClarificationSnapshot,
    ConversationState,
    OptionKind,
    Suggestion,
    WidgetSelectionContext,
    option_labels,
)
from app.services.chat.telemetry import (
    DocRoutingDecisionEvent,
    RoutingCorrectionEvent,
    RoutingPatternId,
    TelemetrySink,
    get_telemetry_sink,
)
from app.services.retrieval import (
    AliasTable,
    DocumentCorpus,
    RetrievalResult,
    RetrievalStatus,
    chunk_to_hit,
    next_chunk,
    retrieve,
)

logger = get_logger("services.chat.dispatcher")


@dataclass(frozen=True)
class TurnContext:
    """Everything a tier may read. Built once per turn and never mutated."""

    raw: str
    query: NormalizedQuery
    state: ConversationState
    store: KnownTermStore
    corpus: DocumentCorpus
    aliases: AliasTable = field(default_factory=dict)
    ui_context: Optional[UIContext] = None
    fuzzy_enabled: bool = True
    known_terms_loaded: bool = True
    strict_app_relevance: bool = True
    classifier_enabled: bool = False
    classifier_timeout: float = 2.0
    classifier_doc_style_timeout: float = 3.5
    classifier_confidence_min: float = 0.7
    telemetry: Optional[TelemetrySink] = None

    @classmethod
    def build(cls, raw: str, state: Optional[ConversationState] = None, **kwargs: Any) -> "TurnContext":
        return cls(raw=raw, query=normalize(raw), state=state or ConversationState(), **kwargs)

    @property
    def sink(self) -> TelemetrySink:
        return self.telemetry or get_telemetry_sink()


@dataclass(frozen=True)
class TierOutcome:
    """
    What a tier produced. telemetry is the draft of the doc_routing_decision event
    for turns that reached document retrieval; route is the deterministic route
    handed to the fallback when no decision was made.
    """

    state: ConversationState
    decision: Optional[RoutingDecision] = None
    telemetry: Optional[Dict[str, Any]] = None
    route: Optional[DocRoute] = None


@dataclass(frozen=True)
class TurnResult:
    decision: RoutingDecision
    state: ConversationState


TierFn = Callable[[TurnContext, ConversationState], Optional[TierOutcome]]


# ---------------------------------------------------------------------------
# Shared resolution helpers
# ---------------------------------------------------------------------------

def _display_name(term: KnownTerm) -> str:
    name = term.term.title()
    if name.lower().endswith(" panel"):
        name = name[: -len(" panel")]
    return name


def _is_available(term: KnownTerm, ui_context: Optional[UIContext]) -> bool:
    if term.panel_id is None or ui_context is None or ui_context.visible_panel_ids is None:
        return True
    return term.panel_id in ui_context.visible_panel_ids


def _open_or_explain_options(term: KnownTerm) -> Tuple[ClarificationOption, ...]:
    open_option = ClarificationOption.from_term(term)
    return (
        open_option.model_copy(update={"label": f"Open {term.label}"}),
        ClarificationOption(id=f"explain:{term.key}", label=f"Explain {term.label}", kind=OptionKind.INTENT),
    )


def _resolve_terms(
    ctx: TurnContext,
    state: ConversationState,
    result: known_noun.MatchResult,
    tier: Tier,
) -> Optional[TierOutcome]:
    """
    Turn an exact known-noun match into a decision.
    Concept-only matches are left to document retrieval.
    """
    candidates = [c for c in result.candidates if c.kind != TermKind.CONCEPT]
    if not candidates:
        return None

    if result.open_or_explain and len(candidates) == 1 and candidates[0].kind == TermKind.PANEL:
        term = candidates[0]
        options = _open_or_explain_options(term)
        message = MessageTemplates.OPEN_OR_EXPLAIN.format(title=term.label)
        return TierOutcome(state=state.with_options(options, message), decision=disambiguate(options, message, tier))

    if len(candidates) > 1:
        available = [c for c in candidates if _is_available(c, ctx.ui_context)]
        if not available:
            message = MessageTemplates.PANEL_NOT_VISIBLE.format(title=_display_name(candidates[0]))
            return TierOutcome(state=state, decision=clarify(message, tier))
        if len(available) > 1:
            options = [ClarificationOption.from_term(c) for c in available]
            message = MessageTemplates.WHICH_PANEL.format(term=_display_name(available[0]))
            return TierOutcome(state=state.with_options(options, message), decision=disambiguate(options, message, tier))
        candidates = available

    term = candidates[0]
    if term.kind == TermKind.ACTION:
        decision = passthrough(PassthroughTarget.ACTION, tier, action=term.term, label=term.label)
        return TierOutcome(state=state.cleared_selection(), decision=decision)

    if not _is_available(term, ctx.ui_context):
        message = MessageTemplates.PANEL_NOT_VISIBLE.format(title=_display_name(term))
        return TierOutcome(state=state, decision=clarify(message, tier))

    return TierOutcome(
        state=state.cleared_selection(),
        decision=execute_panel(ClarificationOption.from_term(term), tier),
    )


def _doc_option(corpus: DocumentCorpus, slug: str) -> ClarificationOption:
    return ClarificationOption.for_doc(slug, corpus.title_for(slug) or slug)


def _serve_doc(ctx: TurnContext, state: ConversationState, slug: str, tier: Tier) -> Optional[TierOutcome]:
    """Answer with the first readable chunk of a document the user picked explicitly."""
    chunk = next_chunk(ctx.corpus, slug, -1)
    if chunk is None:
        chunks = ctx.corpus.chunks_for(slug)
        if not chunks:
            return None
        chunk = chunks[0]
    decision = doc_response(chunk_to_hit(chunk), "selected", tier, title=ctx.corpus.title_for(slug))
    return TierOutcome(state=state.cleared_selection().with_doc(slug, chunk.chunk_index), decision=decision)


def _doc_outcome(
    ctx: TurnContext,
    state: ConversationState,
    result: RetrievalResult,
    tier: Tier,
    telemetry: Optional[Dict[str, Any]] = None,
) -> TierOutcome:
    """
    Map a retrieval result to a decision.

    Only a found result sets follow-up state. A weak result with a top document
    is offered as a suggestion; a weak result without one asks which part.
    """
    if telemetry is not None:
        telemetry = dict(
            telemetry,
            doc_status=result.status.value,
            doc_slug_top=result.top_slug,
            doc_slug_alt=list(result.alt_slugs),
            route_final="doc",
        )

    if result.status == RetrievalStatus.FOUND:
        hit = result.answer
        decision = doc_response(hit, result.status.value, tier, title=ctx.corpus.title_for(hit.slug))
        new_state = state.cleared_selection().with_doc(hit.slug, hit.chunk_index, result.alt_slugs)
        return TierOutcome(state=new_state, decision=decision, telemetry=telemetry)

    cleared = state.with_doc(None)

    if result.status == RetrievalStatus.AMBIGUOUS:
        if telemetry is not None:
            telemetry["matched_pattern_id"] = RoutingPatternId.AMBIGUOUS_CROSS_DOC
        slugs = [result.top_slug] + list(result.alt_slugs)
        options = [_doc_option(ctx.corpus, slug) for slug in slugs]
        message = result.clarification or MessageTemplates.WHICH_ONE
        return TierOutcome(
            state=cleared.with_options(options, message),
            decision=disambiguate(options, message, tier),
            telemetry=telemetry,
        )

    if result.status == RetrievalStatus.WEAK:
        if result.has_usable_top:
            option = _doc_option(ctx.corpus, result.top_slug)
            if normalize_label(option.label) not in state.rejected_suggestions:
                alternatives = tuple(
                    _doc_option(ctx.corpus, slug)
                    for slug in result.alt_slugs
                    if normalize_label(ctx.corpus.title_for(slug) or slug) not in state.rejected_suggestions
                )
                message = result.clarification or MessageTemplates.WEAK_DOC.format(title=option.label)
                suggestion = Suggestion(candidates=(option,), alternatives=alternatives, message=message)
                return TierOutcome(
                    state=cleared.with_suggestion(suggestion),
                    decision=clarify(message, tier, options=[option]),
                    telemetry=telemetry,
                )
        return TierOutcome(
            state=cleared,
            decision=clarify(MessageTemplates.WHICH_PART, tier),
            telemetry=telemetry,
        )

    # no_match is left to the fallback
    return TierOutcome(state=cleared, telemetry=telemetry, route=DocRoute.DOC)


def _explain_term(ctx: TurnContext, state: ConversationState, term: str, tier: Tier) -> TierOutcome:
    """Retrieve docs for a term the user chose to learn about."""
    result = retrieve(normalize(term), ctx.corpus, ctx.aliases)
    outcome = _doc_outcome(ctx, state, result, tier)
    if outcome.decision is None:
        return TierOutcome(state=outcome.state, decision=clarify(MessageTemplates.NO_DOC_MATCH, tier))
    return outcome


def _select_option(
    ctx: TurnContext,
    state: ConversationState,
    option: ClarificationOption,
    tier: Tier,
) -> TierOutcome:
    """Act on a pill the user picked."""
    if option.kind == OptionKind.DOC and option.doc_slug:
        served = _serve_doc(ctx, state, option.doc_slug, tier)
        if served is not None:
            return served
        return TierOutcome(state=state.cleared_selection(), decision=clarify(MessageTemplates.NO_DOC_MATCH, tier))

    if option.kind == OptionKind.INTENT:
        intent, _, subject = option.id.partition(":")
        if intent == "explain":
            return _explain_term(ctx, state.cleared_selection(), subject, tier)
        return TierOutcome(
            state=state.cleared_selection(),
            decision=passthrough(PassthroughTarget.LLM, tier, query=subject),
        )

    if option.kind == OptionKind.CONCEPT:
        return _explain_term(ctx, state.cleared_selection(), option.label, tier)

    if option.kind == OptionKind.WIDGET_ITEM:
        return TierOutcome(
            state=state.cleared_selection(),
            decision=passthrough(PassthroughTarget.WIDGET_CONTEXT, tier, option=format_option(option)),
        )

    if option.kind == OptionKind.ACTION:
        return TierOutcome(
            state=state.cleared_selection(),
            decision=passthrough(PassthroughTarget.ACTION, tier, option=format_option(option)),
        )

    return TierOutcome(state=state.cleared_selection(), decision=execute_panel(option, tier))


def _matches_label(ctx: TurnContext, label: str) -> bool:
    target = normalize_label(label)
    return target in (normalize_label(ctx.raw), ctx.query.text, ctx.query.full_text)


# ---------------------------------------------------------------------------
# Tiers
# ---------------------------------------------------------------------------

def stop_cancel_tier(ctx: TurnContext, state: ConversationState) -> Optional[TierOutcome]:
    """Stop/cancel. An active list is paused so it can be restored later."""
    if not patterns.is_exit(ctx.raw):
        return None

    if state.has_active_options:
        snapshot = ClarificationSnapshot(
            options=state.pending_options,
            message=state.last_clarification,
            paused_reason="stop",
        )
        new_state = state.cleared_selection().model_copy(update={"clarification_snapshot": snapshot})
        return TierOutcome(
            state=new_state.superseded(),
            decision=clarify(MessageTemplates.STOPPED_WITH_LIST, Tier.STOP_CANCEL),
        )

    new_state = state.model_copy(update={"widget_selection_context": None})
    return TierOutcome(state=new_state.superseded(), decision=clarify(MessageTemplates.STOPPED, Tier.STOP_CANCEL))


def return_resume_tier(ctx: TurnContext, state: ConversationState) -> Optional[TierOutcome]:
    """Restore a paused list, or show the last list again."""
    wants_return = patterns.has_return_cue(ctx.raw)
    if not wants_return and not patterns.is_reshow(ctx.raw):
        return None

    snapshot = state.clarification_snapshot
    if snapshot is not None:
        options, message = snapshot.options, snapshot.message or MessageTemplates.WHICH_ONE
    elif state.last_options_shown:
        options, message = state.last_options_shown, state.last_clarification or MessageTemplates.WHICH_ONE
    else:
        return TierOutcome(state=state, decision=clarify(MessageTemplates.NOTHING_TO_RETURN, Tier.RETURN_RESUME))

    new_state = state.with_options(options, message).model_copy(update={"clarification_snapshot": None})
    return TierOutcome(state=new_state, decision=disambiguate(options, message, Tier.RETURN_RESUME))


def interrupt_command_tier(ctx: TurnContext, state: ConversationState) -> Optional[TierOutcome]:
    """
    An explicit command ("open recent") wins over suggestions and option lists.
    Exact matches only; an explicit command that resolves to nothing retires a
    pending list and lets the later tiers have the turn.
    """
    if not patterns.is_explicit_command(ctx.raw):
        return None

    result = known_noun.match(ctx.query, ctx.store, known_noun.MatchContext(fuzzy_enabled=False, telemetry=ctx.telemetry))
    if result.badge_error is not None:
        return TierOutcome(state=state, decision=clarify(result.badge_error.user_message, Tier.INTERRUPT_COMMAND))

    outcome = _resolve_terms(ctx, state, result, Tier.INTERRUPT_COMMAND) if result.kind == known_noun.MatchKind.EXACT else None
    if outcome is not None:
        return outcome

    if state.has_active_options:
        logger.debug("[Dispatcher] unresolved command retires the pending list")
        return TierOutcome(state=state.cleared_selection())
    return None


def suggestion_tier(ctx: TurnContext, state: ConversationState) -> Optional[TierOutcome]:
    """Affirm or reject an outstanding "did you mean" offer."""
    suggestion = state.last_suggestion
    if suggestion is None:
        return None

    if patterns.is_affirmation(ctx.raw):
        if len(suggestion.candidates) > 1:
            options = suggestion.candidates
            message = MessageTemplates.WHICH_ONE
            return TierOutcome(
                state=state.with_options(options, message),
                decision=disambiguate(options, message, Tier.SUGGESTION),
            )
        option = suggestion.candidates[0]
        confirmed = _select_option(ctx, state.with_suggestion(None), option, Tier.SUGGESTION)
        extra = {"result": confirmed.decision.model_dump(mode="json", exclude={"tier"})}
        return TierOutcome(
            state=confirmed.state,
            decision=affirm_suggestion(option, Tier.SUGGESTION, **extra),
        )

    if patterns.is_rejection(ctx.raw):
        rejected = set(state.rejected_suggestions)
        rejected.update(normalize_label(label) for label in option_labels(suggestion.candidates))
        alternatives = [a for a in suggestion.alternatives if normalize_label(a.label) not in rejected]
        new_state = state.model_copy(update={
            "last_suggestion": None,
            "rejected_suggestions": frozenset(rejected),
        })
        if alternatives:
            message = MessageTemplates.REJECTED_WITH_ALTERNATIVES.format(
                alternatives=", ".join(option_labels(alternatives))
            )
            new_state = new_state.with_options(alternatives, message)
        else:
            message = MessageTemplates.REJECTED
        return TierOutcome(state=new_state, decision=reject_suggestion(message, alternatives, Tier.SUGGESTION))

    return None


def clarification_tier(ctx: TurnContext, state: ConversationState) -> Optional[TierOutcome]:
    """
    Resolve a reply against the active option list: ordinal, badge letter, exact
    label, or "yes" to a single option. A selection-shaped reply that resolves to
    nothing re-asks; anything else falls through so commands can escape.
    """
    if not state.has_active_options:
        return None

    options = state.pending_options
    labels = option_labels(options)

    index = patterns.parse_selection(ctx.raw, len(options), labels)
    if index is None:
        index = next((i for i, option in enumerate(options) if _matches_label(ctx, option.label)), None)
    if index is None and len(options) == 1 and patterns.is_affirmation(ctx.raw):
        index = 0

    if index is not None:
        return _select_option(ctx, state, options[index], Tier.CLARIFICATION)

    if patterns.looks_like_selection(ctx.raw):
        message = MessageTemplates.WHICH_OPTION.format(labels=", ".join(labels))
        return TierOutcome(state=state, decision=clarify(message, Tier.CLARIFICATION, options=options))

    return None


def known_noun_tier(ctx: TurnContext, state: ConversationState) -> Optional[TierOutcome]:
    """
    Known-noun commands: exact matches execute or disambiguate; a fuzzy hit is
    offered as a suggestion unless the user already turned it down.
    """
    fuzzy = ctx.fuzzy_enabled and not state.has_active_options
    result = known_noun.match(ctx.query, ctx.store, known_noun.MatchContext(fuzzy_enabled=fuzzy, telemetry=ctx.telemetry))

    if result.badge_error is not None:
        return TierOutcome(state=state, decision=clarify(result.badge_error.user_message, Tier.KNOWN_NOUN))

    if result.kind == known_noun.MatchKind.EXACT:
        return _resolve_terms(ctx, state, result, Tier.KNOWN_NOUN)

    if result.kind == known_noun.MatchKind.FUZZY:
        option = ClarificationOption.from_term(result.candidates[0])
        if normalize_label(option.label) in state.rejected_suggestions:
            return None
        message = MessageTemplates.DID_YOU_MEAN.format(label=option.label)
        suggestion = Suggestion(candidates=(option,), message=message)
        return TierOutcome(
            state=state.with_suggestion(suggestion),
            decision=clarify(message, Tier.KNOWN_NOUN, options=[option]),
        )

    return None


def _grounding_candidates(ctx: TurnContext, state: ConversationState) -> List[ClarificationOption]:
    candidates: List[ClarificationOption] = []
    if ctx.ui_context:
        for widget in ctx.ui_context.visible_widgets:
            candidates.append(ClarificationOption(
                id=f"widget:{widget.widget_id}",
                label=widget.title,
                kind=OptionKind.PANEL,
                panel_id=widget.panel_id or widget.widget_id,
                badge=widget.badge,
                widget_id=widget.widget_id,
            ))
            for position, item in enumerate(widget.items):
                candidates.append(ClarificationOption(
                    id=f"item:{widget.widget_id}:{position}",
                    label=item,
                    kind=OptionKind.WIDGET_ITEM,
                    widget_id=widget.widget_id,
                ))
    candidates.extend(state.last_options_shown)
    return candidates


def grounding_set_tier(ctx: TurnContext, state: ConversationState) -> Optional[TierOutcome]:
    """Exact match against what is on screen: widget titles, widget items, the last list shown."""
    matches: List[ClarificationOption] = []
    seen = set()
    for option in _grounding_candidates(ctx, state):
        if option.id not in seen and _matches_label(ctx, option.label):
            seen.add(option.id)
            matches.append(option)

    if not matches:
        return None
    if len(matches) == 1:
        return _select_option(ctx, state, matches[0], Tier.GROUNDING_SET)

    message = MessageTemplates.WHICH_ONE
    new_state = state.with_options(matches, message)
    widget_ids = {m.widget_id for m in matches}
    if all(m.kind == OptionKind.WIDGET_ITEM for m in matches) and len(widget_ids) == 1:
        new_state = new_state.model_copy(update={
            "widget_selection_context": WidgetSelectionContext(
                widget_id=matches[0].widget_id,
                item_labels=tuple(option_labels(matches)),
            )
        })
    return TierOutcome(state=new_state, decision=disambiguate(matches, message, Tier.GROUNDING_SET))


def widget_context_tier(ctx: TurnContext, state: ConversationState) -> Optional[TierOutcome]:
    """Questions about an on-screen widget go to the context-aware answerer, not the docs."""
    if not ctx.ui_context or not ctx.ui_context.visible_widgets:
        return None
    titles = visible_widget_titles(ctx.ui_context)
    if not patterns.is_widget_reference_question(ctx.raw, titles):
        return None

    decision = passthrough(
        PassthroughTarget.WIDGET_CONTEXT,
        Tier.WIDGET_CONTEXT,
        focused_widget_id=ctx.ui_context.focused_widget_id,
        widget_ids=[w.widget_id for w in ctx.ui_context.visible_widgets],
    )
    return TierOutcome(state=state, decision=decision)


def _followup_pattern(raw: str) -> RoutingPatternId:
    cleaned = patterns.clean(raw)
    if cleaned.startswith(("can you", "could you", "please")):
        return RoutingPatternId.FOLLOWUP_POLITE
    if cleaned.startswith("tell me more") or cleaned == "more":
        return RoutingPatternId.FOLLOWUP_TELL_ME_MORE
    return RoutingPatternId.FOLLOWUP_PRONOUN


def doc_retrieval_tier(ctx: TurnContext, state: ConversationState) -> Optional[TierOutcome]:
    """
    Document retrieval. Always produces an outcome: a decision, or the route and
    telemetry draft the fallback needs.
    """
    followup = patterns.is_followup(ctx.raw)
    telemetry: Dict[str, Any] = dict(
        input_len=len(ctx.raw),
        normalized_query=ctx.query.text,
        known_terms_loaded=ctx.known_terms_loaded,
        known_terms_version=ctx.store.version,
        followup_detected=followup,
        last_doc_slug_present=state.last_doc_slug is not None,
    )

    if state.last_doc_slug and patterns.is_correction(ctx.raw):
        slug = state.last_doc_slug
        ctx.sink.emit(RoutingCorrectionEvent(corrected_doc_slug=slug))
        options = [_doc_option(ctx.corpus, alt) for alt in state.last_doc_alternatives if ctx.corpus.title_for(alt)]
        new_state = state.with_doc(None)
        if options:
            message = MessageTemplates.REJECTED_WITH_ALTERNATIVES.format(alternatives=", ".join(option_labels(options)))
            new_state = new_state.with_options(options, message)
            decision = disambiguate(options, message, Tier.DOC_RETRIEVAL)
        else:
            decision = clarify(MessageTemplates.REJECTED, Tier.DOC_RETRIEVAL)
        telemetry.update(
            route_deterministic=DocRoute.DOC.value,
            route_final="correction",
            matched_pattern_id=RoutingPatternId.CORRECTION,
            doc_slug_top=slug,
            user_corrected_next_turn=True,
        )
        return TierOutcome(state=new_state, decision=decision, telemetry=telemetry)

    if followup and state.last_doc_slug:
        slug = state.last_doc_slug
        title = ctx.corpus.title_for(slug) or slug
        last_index = state.last_chunk_index if state.last_chunk_index is not None else -1
        chunk = next_chunk(ctx.corpus, slug, last_index)
        telemetry.update(
            route_deterministic=DocRoute.DOC.value,
            route_final="followup",
            matched_pattern_id=_followup_pattern(ctx.raw),
            doc_slug_top=slug,
        )
        if chunk is None:
            telemetry["doc_status"] = RetrievalStatus.NO_MATCH.value
            message = MessageTemplates.NO_MORE_CONTENT.format(title=title)
            return TierOutcome(state=state, decision=clarify(message, Tier.DOC_RETRIEVAL), telemetry=telemetry)
        telemetry["doc_status"] = RetrievalStatus.FOUND.value
        decision = doc_response(chunk_to_hit(chunk), "followup", Tier.DOC_RETRIEVAL, title=title)
        new_state = state.with_doc(slug, chunk.chunk_index, state.last_doc_alternatives)
        return TierOutcome(state=new_state, decision=decision, telemetry=telemetry)

    route, pattern_id = classify_route(
        ctx.raw,
        ctx.query,
        ctx.store,
        ctx.ui_context,
        strict_app_relevance=ctx.strict_app_relevance,
        fuzzy_enabled=ctx.fuzzy_enabled,
    )
    telemetry.update(route_deterministic=route.value, route_final=route.value, matched_pattern_id=pattern_id)
    logger.debug(f"[Dispatcher] doc route={route.value} pattern={pattern_id.value}")

    if route == DocRoute.ACTION:
        decision = passthrough(PassthroughTarget.ACTION, Tier.DOC_RETRIEVAL, query=ctx.query.text)
        return TierOutcome(state=state, decision=decision, telemetry=telemetry)

    if route == DocRoute.LLM:
        return TierOutcome(state=state, telemetry=telemetry, route=route)

    if route == DocRoute.CLARIFY_AMBIGUOUS:
        term = patterns.get_high_ambiguity_only_match(ctx.query.full_tokens, ctx.store.vocabulary) or ctx.query.text
        options = (
            ClarificationOption(id=f"explain:{term}", label=f"Yes, {term} in this app", kind=OptionKind.INTENT),
            ClarificationOption(id=f"other:{ctx.query.text}", label="No, something else", kind=OptionKind.INTENT),
        )
        message = MessageTemplates.HIGH_AMBIGUITY.format(term=term)
        return TierOutcome(
            state=state.with_options(options, message),
            decision=disambiguate(options, message, Tier.DOC_RETRIEVAL),
            telemetry=telemetry,
        )

    doc_query = ctx.query
    if route == DocRoute.DOC:
        extracted = normalize(patterns.extract_doc_query_term(ctx.raw))
        if not extracted.is_empty:
            doc_query = extracted
    if ctx.fuzzy_enabled:
        corrected, applied = correct_retrieval_query(doc_query, ctx.store, route)
        if applied:
            logger.info(f"[Dispatcher] corrected retrieval query: '{doc_query.text}' -> '{corrected.text}'")
            doc_query = corrected
        telemetry["retrieval_query_corrected"] = applied

    result = retrieve(doc_query, ctx.corpus, ctx.aliases)
    outcome = _doc_outcome(ctx, state, result, Tier.DOC_RETRIEVAL, telemetry)
    if outcome.decision is None:
        return replace(outcome, route=route)
    return outcome


TIERS: Tuple[Tuple[Tier, TierFn], ...] = (
    (Tier.STOP_CANCEL, stop_cancel_tier),
    (Tier.RETURN_RESUME, return_resume_tier),
    (Tier.INTERRUPT_COMMAND, interrupt_command_tier),
    (Tier.SUGGESTION, suggestion_tier),
    (Tier.CLARIFICATION, clarification_tier),
    (Tier.KNOWN_NOUN, known_noun_tier),
    (Tier.GROUNDING_SET, grounding_set_tier),
    (Tier.WIDGET_CONTEXT, widget_context_tier),
    (Tier.DOC_RETRIEVAL, doc_retrieval_tier),
)


# ---------------------------------------------------------------------------
# Fold and fallback
# ---------------------------------------------------------------------------

def _supersede(original: ConversationState, outcome: TierOutcome) -> TierOutcome:
    """
    Any tier other than the suggestion tier that decides the turn retires the
    outstanding suggestion, unless it offered a new one itself.
    """
    if outcome.decision is None or outcome.decision.tier == Tier.SUGGESTION:
        return outcome
    if original.last_suggestion is not None and outcome.state.last_suggestion is original.last_suggestion:
        return replace(outcome, state=outcome.state.superseded())
    return outcome


def run_tiers(ctx: TurnContext, tiers: Sequence[Tuple[Tier, TierFn]] = TIERS) -> TierOutcome:
    """Evaluate the deterministic tiers in order; stop at the first decision."""
    state = ctx.state
    last = TierOutcome(state=state)
    for tier, tier_fn in tiers:
        outcome = tier_fn(ctx, state)
        if outcome is None:
            continue
        last = outcome
        if outcome.decision is not None:
            logger.info(f"[Dispatcher] {tier.value} claimed the turn: {outcome.decision.action.value}")
            return _supersede(ctx.state, outcome)
        state = outcome.state
    return replace(last, state=state)


async def _fallback(ctx: TurnContext, pending: TierOutcome, classifier: Optional[RouteClassifier]) -> TierOutcome:
    """
    No tier decided. Without a classifier the llm route passes through and a doc
    route that found nothing asks to rephrase; with one, its verdict picks between
    docs, an action passthrough and the llm. A classifier failure is a decline.
    """
    state = pending.state
    telemetry = dict(pending.telemetry) if pending.telemetry is not None else None
    route = pending.route or DocRoute.LLM

    if not ctx.classifier_enabled or classifier is None:
        if route == DocRoute.LLM:
            decision = passthrough(PassthroughTarget.LLM, Tier.FALLBACK)
        else:
            decision = clarify(MessageTemplates.NO_DOC_MATCH, Tier.FALLBACK)
        return TierOutcome(state=state, decision=decision, telemetry=telemetry)

    timeout = ctx.classifier_timeout if route == DocRoute.LLM else ctx.classifier_doc_style_timeout
    if telemetry is not None:
        telemetry["classifier_called"] = True

    try:
        verdict = await classifier.classify(ctx.raw, timeout=timeout)
    except ClassifierTimeoutError:
        logger.info("[Dispatcher] classifier timed out; asking to rephrase")
        if telemetry is not None:
            telemetry.update(classifier_timeout=True, route_final="clarify")
        return TierOutcome(state=state, decision=clarify(MessageTemplates.REPHRASE, Tier.FALLBACK), telemetry=telemetry)
    except ClassifierError as e:
        logger.warning(f"[Dispatcher] classifier declined: {e}")
        if telemetry is not None:
            telemetry.update(classifier_error=True, route_final="clarify")
        return TierOutcome(state=state, decision=clarify(MessageTemplates.REPHRASE, Tier.FALLBACK), telemetry=telemetry)

    if telemetry is not None:
        telemetry["classifier_confidence"] = verdict.confidence
    confident = verdict.confidence >= ctx.classifier_confidence_min

    if confident and verdict.wants_docs:
        query = normalize(verdict.rewrite) if verdict.rewrite.strip() else ctx.query
        result = retrieve(query, ctx.corpus, ctx.aliases)
        if telemetry is not None:
            telemetry["matched_pattern_id"] = RoutingPatternId.SEMANTIC_FALLBACK
        outcome = _doc_outcome(ctx, state, result, Tier.FALLBACK, telemetry)
        if outcome.decision is None:
            return replace(outcome, decision=clarify(MessageTemplates.NO_DOC_MATCH, Tier.FALLBACK))
        return outcome

    if confident and verdict.route == ClassifierRoute.ACTION:
        if telemetry is not None:
            telemetry["route_final"] = DocRoute.ACTION.value
        return TierOutcome(
            state=state,
            decision=passthrough(PassthroughTarget.ACTION, Tier.FALLBACK, query=ctx.query.text),
            telemetry=telemetry,
        )

    if telemetry is not None:
        telemetry["route_final"] = DocRoute.LLM.value
    return TierOutcome(state=state, decision=passthrough(PassthroughTarget.LLM, Tier.FALLBACK), telemetry=telemetry)


async def route_turn(ctx: TurnContext, classifier: Optional[RouteClassifier] = None) -> TurnResult:
    """
    Route one turn to exactly one decision and the replacement state.
    Emits one doc_routing_decision event when the turn reached document retrieval.
    """
    outcome = run_tiers(ctx)
    if outcome.decision is None:
        outcome = _supersede(ctx.state, await _fallback(ctx, outcome, classifier))

    if outcome.telemetry is not None:
        ctx.sink.emit(DocRoutingDecisionEvent(**outcome.telemetry))

    decision = outcome.decision
    logger.info(f"[Dispatcher] tier={decision.tier.value} action={decision.action.value} handled={decision.handled}")
    return TurnResult(decision=decision, state=outcome.state)
