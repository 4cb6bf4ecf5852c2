"""Coarse pre-classification of a turn before document retrieval."""

from __future__ import annotations

import re
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from rapidfuzz.distance import Levenshtein

from app.core.constants import MatchingConstants
from app.db.schema import UIContext
from app.services.chat import patterns
from app.services.chat.known_terms import KnownTermStore, TermKind
from app.services.chat.normalizer import NormalizedQuery, normalize, normalize_label
from app.services.chat.telemetry import RoutingPatternId


class DocRoute(str, Enum):
    ACTION = "action"
    DOC = "doc"
    BARE_NOUN = "bare_noun"
    CLARIFY_AMBIGUOUS = "clarify_ambiguous"
    LLM = "llm"


def visible_widget_titles(ui_context: Optional[UIContext]) -> Sequence[str]:
    if not ui_context:
        return ()
    return [w.title for w in ui_context.visible_widgets]


def matches_visible_widget_title(phrase: str, ui_context: Optional[UIContext]) -> bool:
    return any(normalize_label(title) == phrase for title in visible_widget_titles(ui_context))


def is_action_noun(phrase: str, store: KnownTermStore) -> bool:
    """The whole input names a panel or action from the known-term store."""
    return any(term.kind != TermKind.CONCEPT for term in store.lookup(phrase))


def find_fuzzy_corrections(tokens: Sequence[str], store: KnownTermStore) -> List[Tuple[str, str]]:
    """
    (token, known term) for each unknown token of five or more letters that is
    within two edits of a term. The closest term wins; ties keep snapshot order.
    """
    corrections = []
    for token in tokens:
        if len(token) < MatchingConstants.FUZZY_MIN_TOKEN_LENGTH or store.is_known_word(token):
            continue
        best: Optional[Tuple[str, int]] = None
        for key in store.keys:
            if len(key) < MatchingConstants.FUZZY_MIN_TOKEN_LENGTH:
                continue
            distance = Levenshtein.distance(token, key, score_cutoff=MatchingConstants.FUZZY_MAX_DISTANCE)
            if distance <= MatchingConstants.FUZZY_MAX_DISTANCE and (best is None or distance < best[1]):
                best = (key, distance)
        if best is not None:
            corrections.append((token, best[0]))
    return corrections


def has_fuzzy_vocabulary_hit(tokens: Sequence[str], store: KnownTermStore) -> bool:
    return bool(find_fuzzy_corrections(tokens, store))


def correct_retrieval_query(query: NormalizedQuery, store: KnownTermStore, route: DocRoute) -> Tuple[NormalizedQuery, bool]:
    """
    Replace typo tokens with the known terms they are close to before retrieval.
    A bare noun becomes its first corrected term; other queries are corrected
    word by word.
    """
    corrections = find_fuzzy_corrections(query.full_tokens, store)
    if not corrections:
        return query, False
    if route == DocRoute.BARE_NOUN:
        return normalize(corrections[0][1]), True
    replacements = dict(corrections)
    return normalize(" ".join(replacements.get(word, word) for word in query.words)), True


def is_doc_style(raw: str, query: NormalizedQuery, phrase: str, store: KnownTermStore, ui_context: Optional[UIContext]) -> bool:
    if is_action_noun(phrase, store) or matches_visible_widget_title(phrase, ui_context):
        return False
    if patterns.is_command_like(raw):
        return False
    if patterns.has_doc_instruction_cue(raw) or patterns.has_question_intent(raw):
        return True
    return patterns.has_doc_verb(query.words)


def is_bare_noun(query: NormalizedQuery, phrase: str, store: KnownTermStore, ui_context: Optional[UIContext]) -> bool:
    """
    One to three words, no action verb or digit, and every significant word is a
    known term. A generic noun inside an unrelated sentence does not qualify.
    """
    if not query.words or len(query.words) > 3:
        return False
    if patterns.has_action_verb(query.raw) or re.search(r"\d", phrase):
        return False
    if not query.full_tokens:
        return False
    if not all(store.is_known_word(token) for token in query.full_tokens) and not store.lookup(phrase):
        return False
    if is_action_noun(phrase, store) or matches_visible_widget_title(phrase, ui_context):
        return False
    return True


def doc_style_pattern(raw: str) -> RoutingPatternId:
    normalized = patterns.clean(raw)
    if normalized.startswith(("what is ", "what's ", "whats ")):
        return RoutingPatternId.DEF_WHAT_IS
    if normalized.startswith("what are "):
        return RoutingPatternId.DEF_WHAT_ARE
    if normalized.startswith("explain "):
        return RoutingPatternId.DEF_EXPLAIN
    if patterns.strip_conversational_prefix(raw) != normalized:
        return RoutingPatternId.DEF_CONVERSATIONAL
    return RoutingPatternId.ROUTE_DOC_STYLE


def classify_route(
    raw: str,
    query: NormalizedQuery,
    store: KnownTermStore,
    ui_context: Optional[UIContext] = None,
    strict_app_relevance: bool = True,
    fuzzy_enabled: bool = True,
) -> Tuple[DocRoute, RoutingPatternId]:
    """
    Decide how document retrieval should treat the turn.

    App relevance comes first: with no known word (exact or fuzzy) the turn goes
    to the llm route. Then, in order: visible widget or panel name -> action;
    command-like -> action; doc-style question -> doc; bare noun -> bare_noun
    (clarify_ambiguous when it only names high-ambiguity words); any other
    app-relevant input with an explicit intent cue -> doc; otherwise llm.
    """
    phrase = " ".join(query.words)
    significant = list(query.full_tokens)

    has_known = (
        any(store.is_known_word(token) for token in significant)
        or bool(store.lookup(phrase))
        or matches_visible_widget_title(phrase, ui_context)
    )
    if not has_known and not (fuzzy_enabled and has_fuzzy_vocabulary_hit(significant, store)):
        return DocRoute.LLM, RoutingPatternId.ROUTE_LLM_FALLBACK

    if matches_visible_widget_title(phrase, ui_context):
        return DocRoute.ACTION, RoutingPatternId.ACTION_WIDGET
    if is_action_noun(phrase, store) or is_action_noun(query.text, store):
        return DocRoute.ACTION, RoutingPatternId.ACTION_COMMAND
    if patterns.is_command_like(raw):
        return DocRoute.ACTION, RoutingPatternId.ACTION_COMMAND

    if is_doc_style(raw, query, phrase, store, ui_context):
        return DocRoute.DOC, doc_style_pattern(raw)

    ambiguous_term = patterns.get_high_ambiguity_only_match(significant, store.vocabulary) if strict_app_relevance else None

    if is_bare_noun(query, phrase, store, ui_context):
        if ambiguous_term:
            return DocRoute.CLARIFY_AMBIGUOUS, RoutingPatternId.CLARIFY_HIGH_AMBIGUITY
        return DocRoute.BARE_NOUN, RoutingPatternId.ROUTE_BARE_NOUN

    if has_known and patterns.has_explicit_intent_cue(raw):
        if ambiguous_term:
            return DocRoute.CLARIFY_AMBIGUOUS, RoutingPatternId.CLARIFY_HIGH_AMBIGUITY
        return DocRoute.DOC, RoutingPatternId.ROUTE_APP_RELEVANT

    return DocRoute.LLM, RoutingPatternId.ROUTE_LLM_FALLBACK
