"""
Helper functions that build routing decisions, to keep the tiers short.
"""
from typing import Iterable, List, Optional, Sequence

from app.services.chat.decisions import PassthroughTarget, RoutingAction, RoutingDecision, Tier
from app.services.chat.state import ClarificationOption, option_set_id
from app.services.retrieval import ChunkHit


def format_option(option: ClarificationOption) -> dict:
    """Convert an option to the dictionary shape the UI renders as a pill."""
    return option.model_dump(mode="json", exclude_none=True)


def execute_panel(option: ClarificationOption, tier: Tier) -> RoutingDecision:
    return RoutingDecision(
        handled=True,
        action=RoutingAction.EXECUTE_PANEL,
        tier=tier,
        payload={
            "panel_id": option.panel_id,
            "label": option.label,
            "badge": option.badge,
            "message": f"Opening {option.label}.",
        },
    )


def disambiguate(options: Sequence[ClarificationOption], message: str, tier: Tier) -> RoutingDecision:
    return RoutingDecision(
        handled=True,
        action=RoutingAction.DISAMBIGUATE,
        tier=tier,
        payload={
            "message": message,
            "options": [format_option(o) for o in options],
            "option_set_id": option_set_id(options),
        },
    )


def clarify(message: str, tier: Tier, options: Iterable[ClarificationOption] = ()) -> RoutingDecision:
    payload = {"message": message}
    option_list = list(options)
    if option_list:
        payload["options"] = [format_option(o) for o in option_list]
    return RoutingDecision(handled=True, action=RoutingAction.CLARIFY, tier=tier, payload=payload)


def doc_response(hit: ChunkHit, status: str, tier: Tier, title: Optional[str] = None) -> RoutingDecision:
    title = title or hit.title
    return RoutingDecision(
        handled=True,
        action=RoutingAction.RETRIEVE_DOC_RESPONSE,
        tier=tier,
        payload={
            "doc_slug": hit.slug,
            "title": title,
            "message": f"{title}: {hit.snippet}" if hit.snippet else title,
            "header_path": hit.header_path,
            "chunk_index": hit.chunk_index,
            "snippet": hit.snippet,
            "status": status,
        },
    )


def affirm_suggestion(option: ClarificationOption, tier: Tier, **extra) -> RoutingDecision:
    payload = {"option": format_option(option), "message": f"Okay, {option.label}."}
    payload.update(extra)
    return RoutingDecision(
        handled=True,
        action=RoutingAction.AFFIRM_SUGGESTION,
        tier=tier,
        payload=payload,
    )


def reject_suggestion(message: str, alternatives: List[ClarificationOption], tier: Tier) -> RoutingDecision:
    return RoutingDecision(
        handled=True,
        action=RoutingAction.REJECT_SUGGESTION,
        tier=tier,
        payload={"message": message, "alternatives": [format_option(o) for o in alternatives]},
    )


def passthrough(target: PassthroughTarget, tier: Tier, **extra) -> RoutingDecision:
    payload = {"target": target.value}
    payload.update(extra)
    return RoutingDecision(handled=False, action=RoutingAction.PASSTHROUGH, tier=tier, payload=payload)
