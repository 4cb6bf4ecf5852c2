"""
Per-session conversation state.

The state is immutable: every tier receives the current value and returns a
replacement. Fields that belong together are cleared together.
"""

from __future__ import annotations

import hashlib
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict

from app.services.chat.known_terms import KnownTerm, TermKind


class OptionKind(str, Enum):
    PANEL = "panel"
    DOC = "doc"
    CONCEPT = "concept"
    ACTION = "action"
    WIDGET_ITEM = "widget_item"
    INTENT = "intent"


class ClarificationOption(BaseModel):
    """A pill offered to the user."""

    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    kind: OptionKind
    panel_id: Optional[str] = None
    badge: Optional[str] = None
    doc_slug: Optional[str] = None
    widget_id: Optional[str] = None

    @classmethod
    def from_term(cls, term: KnownTerm) -> "ClarificationOption":
        kind = {
            TermKind.PANEL: OptionKind.PANEL,
            TermKind.ACTION: OptionKind.ACTION,
        }.get(term.kind, OptionKind.CONCEPT)
        suffix = f"-{term.badge.lower()}" if term.badge else ""
        return cls(
            id=f"{term.panel_id or term.key.replace(' ', '-')}{suffix}",
            label=term.label,
            kind=kind,
            panel_id=term.panel_id,
            badge=term.badge,
        )

    @classmethod
    def for_doc(cls, slug: str, title: str) -> "ClarificationOption":
        return cls(id=f"doc:{slug}", label=title, kind=OptionKind.DOC, doc_slug=slug)


class ClarificationSnapshot(BaseModel):
    """An option list put aside by stop/cancel, restorable with "back to the options"."""

    model_config = ConfigDict(frozen=True)

    options: Tuple[ClarificationOption, ...]
    message: Optional[str] = None
    paused_reason: str = "stop"


class Suggestion(BaseModel):
    """A "did you mean" offer awaiting a yes/no."""

    model_config = ConfigDict(frozen=True)

    candidates: Tuple[ClarificationOption, ...]
    alternatives: Tuple[ClarificationOption, ...] = ()
    message: Optional[str] = None


class WidgetSelectionContext(BaseModel):
    """Items of a widget the user is picking from."""

    model_config = ConfigDict(frozen=True)

    widget_id: str
    item_labels: Tuple[str, ...] = ()


def option_set_id(options: Sequence[ClarificationOption]) -> str:
    """Deterministic id for an option list."""
    joined = "|".join(option.id for option in options)
    return hashlib.sha1(joined.encode("utf-8")).hexdigest()[:12]


class ConversationState(BaseModel):
    """Immutable per-session routing state."""

    model_config = ConfigDict(frozen=True)

    # Clarification / selection group: always cleared together
    last_clarification: Optional[str] = None
    pending_options: Tuple[ClarificationOption, ...] = ()
    active_option_set_id: Optional[str] = None
    last_options_shown: Tuple[ClarificationOption, ...] = ()
    clarification_snapshot: Optional[ClarificationSnapshot] = None
    widget_selection_context: Optional[WidgetSelectionContext] = None

    # Follow-up state
    last_doc_slug: Optional[str] = None
    last_chunk_index: Optional[int] = None
    last_doc_alternatives: Tuple[str, ...] = ()

    # Suggestion state
    last_suggestion: Optional[Suggestion] = None
    rejected_suggestions: FrozenSet[str] = frozenset()

    @property
    def has_active_options(self) -> bool:
        return bool(self.pending_options) and self.active_option_set_id is not None

    def cleared_selection(self) -> "ConversationState":
        """Clear the whole clarification/selection group at once."""
        return self.model_copy(update={
            "last_clarification": None,
            "pending_options": (),
            "active_option_set_id": None,
            "last_options_shown": (),
            "clarification_snapshot": None,
            "widget_selection_context": None,
        })

    def with_options(self, options: Sequence[ClarificationOption], message: str) -> "ConversationState":
        """Show a new option list; it becomes both pending and last shown."""
        options = tuple(options)
        return self.model_copy(update={
            "last_clarification": message,
            "pending_options": options,
            "active_option_set_id": option_set_id(options),
            "last_options_shown": options,
        })

    def with_suggestion(self, suggestion: Optional[Suggestion]) -> "ConversationState":
        return self.model_copy(update={"last_suggestion": suggestion})

    def superseded(self) -> "ConversationState":
        """Drop an outstanding suggestion without confirming or rejecting it."""
        if self.last_suggestion is None:
            return self
        return self.model_copy(update={"last_suggestion": None})

    def with_doc(self, slug: Optional[str], chunk_index: Optional[int] = None, alternatives: Sequence[str] = ()) -> "ConversationState":
        return self.model_copy(update={
            "last_doc_slug": slug,
            "last_chunk_index": chunk_index if slug else None,
            "last_doc_alternatives": tuple(alternatives) if slug else (),
        })

    def to_dict(self) -> Dict:
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "ConversationState":
        if not data:
            return cls()
        return cls.model_validate(data)


def option_labels(options: Sequence[ClarificationOption]) -> List[str]:
    return [option.label for option in options]
