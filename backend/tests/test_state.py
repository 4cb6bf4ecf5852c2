"""
Tests for the conversation state and its persistence.
"""
import asyncio

from app.services.chat.known_terms import KnownTerm, TermKind
from app.services.chat.state import (
    ClarificationOption,
    ConversationState,
    OptionKind,
    Suggestion,
    option_set_id,
)
from app.services.conversation_memory import ConversationMemory

OPTIONS = (
    ClarificationOption(id="recent", label="Recent", kind=OptionKind.PANEL, panel_id="recent"),
    ClarificationOption.for_doc("workspace", "Workspace"),
)


def test_option_from_term_carries_badge():
    option = ClarificationOption.from_term(
        KnownTerm(term="links panel", kind=TermKind.PANEL, panel_id="links-panel", badge="d")
    )
    assert option.id == "links-panel-d"
    assert option.label == "Links Panel D"
    assert option.kind == OptionKind.PANEL


def test_option_set_id_is_deterministic():
    assert option_set_id(OPTIONS) == option_set_id(list(OPTIONS))
    assert option_set_id(OPTIONS) != option_set_id(OPTIONS[:1])


def test_with_options_marks_list_active():
    state = ConversationState().with_options(OPTIONS, "Which one?")
    assert state.has_active_options
    assert state.last_options_shown == OPTIONS
    assert state.active_option_set_id == option_set_id(OPTIONS)


def test_with_doc_none_clears_followup_fields():
    state = ConversationState().with_doc("workspace", 2, ["dashboard"])
    assert state.last_doc_alternatives == ("dashboard",)
    cleared = state.with_doc(None)
    assert cleared.last_doc_slug is None
    assert cleared.last_chunk_index is None
    assert cleared.last_doc_alternatives == ()


def test_state_roundtrips_through_json():
    state = ConversationState(
        last_suggestion=Suggestion(candidates=OPTIONS[:1]),
        rejected_suggestions=frozenset({"navigator"}),
    ).with_options(OPTIONS, "Which one?")
    assert ConversationState.from_dict(state.to_dict()) == state
    assert ConversationState.from_dict(None) == ConversationState()


def test_memory_persists_state_and_turns(db):
    memory = ConversationMemory(db, "session-1")
    state = ConversationState().with_options(OPTIONS, "Which one?")

    async def scenario():
        assert await memory.load_state() == ConversationState()
        await memory.save_state(state)
        await memory.record_turn("open", "Which one?", "disambiguate", "known_noun")
        return await memory.load_state(), await memory.get_conversation_history()

    loaded, history = asyncio.run(scenario())
    assert loaded == state
    assert [m["role"] for m in history] == ["user", "assistant"]
    assert history[1]["tier"] == "known_noun"
