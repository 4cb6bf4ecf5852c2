"""
End-to-end tests for the tier dispatcher, one conversation turn at a time.
"""
import asyncio

import pytest

from app.core.errors import ClassifierTimeoutError
from app.db.schema import DocumentRecord, UIContext, VisibleWidget
from app.services.chat.decisions import RoutingAction, Tier
from app.services.chat.dispatcher import TurnContext, route_turn
from app.services.chat.intent import ClassifierResult, ClassifierRoute
from app.services.chat.state import (
    ClarificationOption,
    ClarificationSnapshot,
    ConversationState,
    OptionKind,
    Suggestion,
    WidgetSelectionContext,
)
from app.services.chat.telemetry import DocRoutingDecisionEvent, RoutingCorrectionEvent

from conftest import make_corpus

LAYOUT_CORPUS = make_corpus([
    DocumentRecord(
        slug="layout",
        category="guides",
        title="Layout Guide",
        content="Panels line up in columns on the grid. A pinned widget stays in place when the grid reflows.",
    ),
])


class FakeClassifier:
    """Returns a canned verdict, or raises the given error."""

    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    async def classify(self, message, timeout=None):
        self.calls.append((message, timeout))
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def turn(store, corpus, aliases, sink):
    def run(text, state=None, classifier=None, **overrides):
        options = dict(store=store, corpus=corpus, aliases=aliases, telemetry=sink)
        options.update(overrides)
        ctx = TurnContext.build(text, state=state, **options)
        return asyncio.run(route_turn(ctx, classifier))
    return run


def panel_option(panel_id, label):
    return ClarificationOption(id=panel_id, label=label, kind=OptionKind.PANEL, panel_id=panel_id)


def test_open_links_panel_disambiguates(turn):
    result = turn("open links panel")
    decision = result.decision
    assert decision.action == RoutingAction.DISAMBIGUATE
    assert decision.tier == Tier.INTERRUPT_COMMAND
    assert decision.message == "Which Links panel do you mean?"
    assert [o["label"] for o in decision.payload["options"]] == ["Links Panel D", "Links Panel E"]
    assert result.state.has_active_options


def test_badge_letter_picks_from_the_list(turn):
    first = turn("open links panel")
    second = turn("e", state=first.state)
    assert second.decision.action == RoutingAction.EXECUTE_PANEL
    assert second.decision.tier == Tier.CLARIFICATION
    assert second.decision.payload["panel_id"] == "links-panel-e"
    assert not second.state.has_active_options


def test_unresolved_ordinal_reasks(turn):
    first = turn("open links panel")
    second = turn("fifth", state=first.state)
    assert second.decision.action == RoutingAction.CLARIFY
    assert "Links Panel D, Links Panel E" in second.decision.message
    assert second.state.pending_options == first.state.pending_options


def test_explicit_command_escapes_an_open_list(turn):
    first = turn("open links panel")
    second = turn("open recent", state=first.state)
    assert second.decision.action == RoutingAction.EXECUTE_PANEL
    assert second.decision.payload["panel_id"] == "recent"
    assert second.state.pending_options == ()


def test_badge_command_executes_directly(turn):
    result = turn("open links panel d")
    assert result.decision.action == RoutingAction.EXECUTE_PANEL
    assert result.decision.payload["panel_id"] == "links-panel-d"


def test_missing_badge_is_reported(turn):
    result = turn("open links panel z")
    assert result.decision.action == RoutingAction.CLARIFY
    assert result.decision.message == "No Links panel with badge 'Z' found."


def test_panel_hidden_from_dashboard(turn):
    ui = UIContext(visible_panel_ids=["recent"])
    result = turn("open navigator", ui_context=ui)
    assert result.decision.action == RoutingAction.CLARIFY
    assert result.decision.message == "The Navigator panel isn't available on the current dashboard."


def test_action_term_passes_through(turn):
    result = turn("create workspace")
    assert result.decision.action == RoutingAction.PASSTHROUGH
    assert not result.decision.handled
    assert result.decision.payload["target"] == "action"


def test_trailing_question_mark_offers_open_or_explain(turn):
    result = turn("recent?")
    assert result.decision.action == RoutingAction.DISAMBIGUATE
    assert result.decision.message == "Open Recent, or read docs about it?"
    labels = [o["label"] for o in result.decision.payload["options"]]
    assert labels == ["Open Recent", "Explain Recent"]


def test_what_is_question_answers_from_docs(turn, sink):
    result = turn("what is workspace")
    decision = result.decision
    assert decision.action == RoutingAction.RETRIEVE_DOC_RESPONSE
    assert decision.payload["doc_slug"] == "workspace"
    assert decision.payload["status"] == "found"
    assert result.state.last_doc_slug == "workspace"
    assert result.state.last_chunk_index == 0

    events = sink.of_type(DocRoutingDecisionEvent)
    assert len(events) == 1
    assert events[0].route_deterministic == "doc"
    assert events[0].matched_pattern_id.value == "DEF_WHAT_IS"
    assert events[0].doc_status == "found"


def test_followup_serves_the_next_chunk(turn):
    first = turn("what is workspace")
    second = turn("tell me more", state=first.state)
    assert second.decision.action == RoutingAction.RETRIEVE_DOC_RESPONSE
    assert second.decision.payload["status"] == "followup"
    assert second.decision.payload["chunk_index"] == 1

    third = turn("tell me more", state=second.state)
    assert third.decision.action == RoutingAction.CLARIFY
    assert third.decision.message == "That's everything I have on Workspace. Anything else?"


def test_correction_offers_the_alternatives(turn, sink):
    first = turn("what is workspace")
    second = turn("not what I meant", state=first.state)
    assert second.decision.action == RoutingAction.DISAMBIGUATE
    assert second.state.last_doc_slug is None
    assert len(sink.of_type(RoutingCorrectionEvent)) == 1

    # One routing decision record per turn, the correction carried on the second
    decisions = [e for e in sink.events if e.event == "doc_routing_decision"]
    assert len(decisions) == 2
    assert decisions[1].user_corrected_next_turn is True
    assert sink.of_type(RoutingCorrectionEvent)[0].event == "routing_correction"


def test_typo_in_question_is_corrected_before_retrieval(turn, sink):
    result = turn("what is wrkspace")
    assert result.decision.action == RoutingAction.RETRIEVE_DOC_RESPONSE
    assert result.decision.payload["doc_slug"] == "workspace"
    assert sink.of_type(DocRoutingDecisionEvent)[0].retrieval_query_corrected is True


def test_typo_is_left_alone_when_fuzzy_is_off(turn):
    result = turn("what is wrkspace", fuzzy_enabled=False)
    assert result.decision.action != RoutingAction.RETRIEVE_DOC_RESPONSE


def test_doc_answer_carries_a_message(turn):
    decision = turn("what is workspace").decision
    assert decision.message.startswith("Workspace: ")


def test_weak_guess_does_not_set_followup_state(turn):
    first = turn("what is a widget", corpus=LAYOUT_CORPUS)
    assert first.decision.action == RoutingAction.CLARIFY
    assert first.decision.message == "Which part would you like me to explain?"
    assert first.state.last_doc_slug is None

    second = turn("tell me more", state=first.state, corpus=LAYOUT_CORPUS)
    assert second.decision.action != RoutingAction.RETRIEVE_DOC_RESPONSE
    assert second.state.last_doc_slug is None


def test_weak_suggestion_sets_followup_state_once_confirmed(turn):
    first = turn("what is a pinned widget", corpus=LAYOUT_CORPUS)
    assert first.decision.action == RoutingAction.CLARIFY
    assert first.decision.message == 'I think you mean "Layout Guide". Is that right?'
    assert first.state.last_doc_slug is None

    second = turn("yes", state=first.state, corpus=LAYOUT_CORPUS)
    assert second.decision.action == RoutingAction.AFFIRM_SUGGESTION
    assert second.state.last_doc_slug == "layout"


def test_unrelated_sentence_goes_to_llm(turn, sink):
    result = turn("I love workspace music")
    assert result.decision.action == RoutingAction.PASSTHROUGH
    assert result.decision.tier == Tier.FALLBACK
    assert result.decision.payload["target"] == "llm"
    assert sink.of_type(DocRoutingDecisionEvent)[0].route_final == "llm"


def test_ambiguous_docs_disambiguate_and_pick(turn, sink):
    first = turn("what is sharing")
    assert first.decision.action == RoutingAction.DISAMBIGUATE
    labels = [o["label"] for o in first.decision.payload["options"]]
    assert labels == ["Sharing Notes", "Sharing Workspaces"]
    assert sink.of_type(DocRoutingDecisionEvent)[0].matched_pattern_id.value == "AMBIGUOUS_CROSS_DOC"

    second = turn("second", state=first.state)
    assert second.decision.action == RoutingAction.RETRIEVE_DOC_RESPONSE
    assert second.decision.payload["doc_slug"] == "sharing-workspaces"
    assert second.state.last_doc_slug == "sharing-workspaces"


def test_high_ambiguity_word_asks_first(turn):
    first = turn("notes")
    assert first.decision.action == RoutingAction.DISAMBIGUATE
    assert first.decision.message == "Are you asking about notes in this app?"

    second = turn("No, something else", state=first.state)
    assert second.decision.action == RoutingAction.PASSTHROUGH
    assert second.decision.payload["target"] == "llm"


def test_fuzzy_suggestion_then_yes(turn):
    first = turn("navigater")
    assert first.decision.action == RoutingAction.CLARIFY
    assert first.decision.message == 'Did you mean "Navigator"?'
    assert first.state.last_suggestion is not None

    second = turn("yes", state=first.state)
    assert second.decision.action == RoutingAction.AFFIRM_SUGGESTION
    assert second.decision.payload["result"]["payload"]["panel_id"] == "navigator"
    assert second.state.last_suggestion is None


def test_rejected_suggestion_is_not_offered_again(turn):
    first = turn("navigater")
    second = turn("no", state=first.state)
    assert second.decision.action == RoutingAction.REJECT_SUGGESTION
    assert "navigator" in second.state.rejected_suggestions

    third = turn("navigater", state=second.state)
    assert third.decision.action != RoutingAction.CLARIFY
    assert third.state.last_suggestion is None


def test_fuzzy_off_when_terms_are_stale(turn):
    result = turn("navigater", fuzzy_enabled=False)
    assert result.state.last_suggestion is None
    assert result.decision.action == RoutingAction.PASSTHROUGH


def test_yes_with_two_candidates_asks_which(turn):
    suggestion = Suggestion(candidates=(
        panel_option("recent", "Recent"),
        panel_option("navigator", "Navigator"),
    ))
    result = turn("yes", state=ConversationState(last_suggestion=suggestion))
    assert result.decision.action == RoutingAction.DISAMBIGUATE
    assert result.decision.message == "Which one?"
    assert result.state.last_suggestion == suggestion
    assert len(result.state.pending_options) == 2


def test_stop_retires_the_suggestion(turn):
    suggestion = Suggestion(candidates=(panel_option("recent", "Recent"),))
    result = turn("stop", state=ConversationState(last_suggestion=suggestion))
    assert result.decision.tier == Tier.STOP_CANCEL
    assert result.decision.message == "All set. What would you like to do?"
    assert result.state.last_suggestion is None


def test_unrelated_turn_supersedes_the_suggestion(turn):
    suggestion = Suggestion(candidates=(panel_option("recent", "Recent"),))
    result = turn("open navigator", state=ConversationState(last_suggestion=suggestion))
    assert result.decision.action == RoutingAction.EXECUTE_PANEL
    assert result.state.last_suggestion is None


def test_stop_pauses_the_list_and_back_restores_it(turn):
    first = turn("open links panel")
    stopped = turn("cancel", state=first.state)
    assert stopped.decision.message.startswith("Okay, I've closed that list.")
    assert not stopped.state.has_active_options
    assert stopped.state.clarification_snapshot is not None

    restored = turn("back to the options", state=stopped.state)
    assert restored.decision.action == RoutingAction.DISAMBIGUATE
    assert restored.decision.tier == Tier.RETURN_RESUME
    assert restored.state.pending_options == first.state.pending_options
    assert restored.state.clarification_snapshot is None


def test_nothing_to_return_to(turn):
    result = turn("back to the options")
    assert result.decision.action == RoutingAction.CLARIFY
    assert result.decision.tier == Tier.RETURN_RESUME


def test_selection_clears_every_selection_field(turn):
    options = (panel_option("recent", "Recent"), panel_option("navigator", "Navigator"))
    state = ConversationState().with_options(options, "Which one?").model_copy(update={
        "clarification_snapshot": ClarificationSnapshot(options=options),
        "widget_selection_context": WidgetSelectionContext(widget_id="w1"),
    })
    result = turn("first", state=state)
    assert result.decision.payload["panel_id"] == "recent"
    cleared = result.state
    assert cleared.last_clarification is None
    assert cleared.pending_options == ()
    assert cleared.active_option_set_id is None
    assert cleared.last_options_shown == ()
    assert cleared.clarification_snapshot is None
    assert cleared.widget_selection_context is None


def test_widget_question_goes_to_widget_context(turn):
    ui = UIContext(visible_widgets=[VisibleWidget(widget_id="w1", title="Team Links", items=["Roadmap"])])
    result = turn("what's in this widget?", ui_context=ui)
    assert result.decision.action == RoutingAction.PASSTHROUGH
    assert result.decision.payload["target"] == "widget_context"


def test_widget_item_is_grounded(turn):
    ui = UIContext(visible_widgets=[VisibleWidget(widget_id="w1", title="Team Links", items=["Roadmap", "Budget"])])
    result = turn("roadmap", ui_context=ui)
    assert result.decision.tier == Tier.GROUNDING_SET
    assert result.decision.payload["option"]["widget_id"] == "w1"


def test_classifier_rewrite_is_retrieved(turn):
    classifier = FakeClassifier(ClassifierResult(route=ClassifierRoute.DOC_EXPLAIN, confidence=0.9, rewrite="sharing workspaces"))
    result = turn("I love workspace music", classifier=classifier, classifier_enabled=True)
    assert classifier.calls
    assert result.decision.tier == Tier.FALLBACK
    assert result.decision.action == RoutingAction.RETRIEVE_DOC_RESPONSE
    assert result.decision.payload["doc_slug"] == "sharing-workspaces"


def test_low_confidence_classifier_passes_through(turn):
    classifier = FakeClassifier(ClassifierResult(route=ClassifierRoute.APP, confidence=0.3))
    result = turn("I love workspace music", classifier=classifier, classifier_enabled=True)
    assert result.decision.payload["target"] == "llm"


def test_classifier_timeout_asks_to_rephrase(turn, sink):
    classifier = FakeClassifier(error=ClassifierTimeoutError(2.0))
    result = turn("I love workspace music", classifier=classifier, classifier_enabled=True)
    assert result.decision.action == RoutingAction.CLARIFY
    assert result.decision.message == "I'm not sure what you mean. Could you try rephrasing?"
    event = sink.of_type(DocRoutingDecisionEvent)[0]
    assert event.classifier_called
    assert event.classifier_timeout
