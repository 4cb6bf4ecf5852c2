"""
Known-noun matcher: resolves a normalized turn against the known-term store.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict
from rapidfuzz.distance import Levenshtein

from app.core.constants import MatchingConstants, VocabularyConstants
from app.core.errors import BadgeNotFoundError
from app.core.logging import get_logger
from app.services.chat import patterns
from app.services.chat.known_terms import KnownTerm, KnownTermStore
from app.services.chat.normalizer import NormalizedQuery
from app.services.chat.telemetry import FuzzyMatchEvent, TelemetrySink, get_telemetry_sink

logger = get_logger("services.chat.known_noun")


class MatchKind(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    NONE = "none"


class MatchResult(BaseModel):
    """Outcome of a known-noun match. badge_error is set when a badge was asked for and not found."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: MatchKind = MatchKind.NONE
    candidates: Tuple[KnownTerm, ...] = ()
    badge: Optional[str] = None
    badge_error: Optional[BadgeNotFoundError] = None
    open_or_explain: bool = False
    fuzzy_input: Optional[str] = None
    fuzzy_distance: Optional[int] = None

    @property
    def is_disambiguation(self) -> bool:
        return self.kind == MatchKind.EXACT and len(self.candidates) > 1


@dataclass(frozen=True)
class MatchContext:
    """Per-turn inputs to the matcher besides the query itself."""

    fuzzy_enabled: bool = True
    telemetry: Optional[TelemetrySink] = None


NO_MATCH = MatchResult()


def _split_badge(words: Tuple[str, ...], phrase_tokens: List[str]) -> Tuple[List[str], Optional[str]]:
    """
    Detect a trailing single-letter badge ("links panel d").

    The raw word list is checked because "a" is a stopword and would already be
    gone from the tokens.
    """
    if len(words) >= 2 and len(words[-1]) == 1 and words[-1].isalpha():
        badge = words[-1]
        tokens = list(phrase_tokens)
        if tokens and tokens[-1] == badge:
            tokens = tokens[:-1]
        return tokens, badge.upper()
    return list(phrase_tokens), None


def _phrase_variants(tokens: List[str]) -> List[str]:
    """The phrase itself, then with a trailing structural word dropped ("recent widget")."""
    variants = []
    if tokens:
        variants.append(" ".join(tokens))
    if len(tokens) > 1 and tokens[-1] in MatchingConstants.STRUCTURAL_SUFFIXES:
        variants.append(" ".join(tokens[:-1]))
    return variants


def _exact_candidates(store: KnownTermStore, token_lists: List[List[str]]) -> Tuple[List[KnownTerm], str]:
    for tokens in token_lists:
        for phrase in _phrase_variants(tokens):
            found = store.lookup(phrase)
            if found:
                return found, phrase
    return [], ""


def _fuzzy_candidate(store: KnownTermStore, tokens: List[str]) -> Tuple[Optional[KnownTerm], str, int]:
    """
    Closest known term within the edit-distance budget.

    Only phrases of at least FUZZY_MIN_TOKEN_LENGTH characters are considered and
    only against known-term keys. Ties keep snapshot order.
    """
    phrase = " ".join(tokens)
    probes = [phrase] if phrase else []
    if 1 < len(tokens) <= 3:
        probes.extend(tokens)

    best: Optional[KnownTerm] = None
    best_probe = ""
    best_distance = MatchingConstants.FUZZY_MAX_DISTANCE + 1
    for probe in probes:
        if len(probe) < MatchingConstants.FUZZY_MIN_TOKEN_LENGTH:
            continue
        for key in store.keys:
            if len(key) < MatchingConstants.FUZZY_MIN_TOKEN_LENGTH:
                continue
            distance = Levenshtein.distance(probe, key, score_cutoff=MatchingConstants.FUZZY_MAX_DISTANCE)
            if 0 < distance < best_distance:
                best = store.lookup(key)[0]
                best_probe = probe
                best_distance = distance
    if best is None:
        return None, "", 0
    return best, best_probe, best_distance


def match(
    query: NormalizedQuery,
    store: KnownTermStore,
    context: Optional[MatchContext] = None,
) -> MatchResult:
    """
    Resolve a turn against the known terms.

    Order: full-question framing yields no match so retrieval answers it; exact
    match (all same-name instances when no badge is given); badge filter; fuzzy
    match when allowed. A bare trailing '?' on an exact match asks open-or-explain.
    """
    context = context or MatchContext()

    if not query.tokens or patterns.is_full_question(query.raw):
        return NO_MATCH

    # Unstripped phrase first so verb-bearing names ("launch settings") still resolve
    full_tokens, badge = _split_badge(query.words, list(query.full_tokens))
    stripped_tokens, _ = _split_badge(query.words, list(query.tokens))
    token_lists = [full_tokens]
    # "open launch settings": drop only the leading verb before dropping them all
    if len(full_tokens) > 1 and full_tokens[0] in VocabularyConstants.ACTION_VERBS:
        token_lists.append(full_tokens[1:])
    if stripped_tokens not in token_lists:
        token_lists.append(stripped_tokens)

    candidates, matched_phrase = _exact_candidates(store, token_lists)

    if not candidates and badge:
        # The trailing letter may be part of the name itself
        candidates, matched_phrase = _exact_candidates(
            store, [list(query.full_tokens), list(query.tokens)]
        )
        if candidates:
            badge = None

    if candidates:
        if badge:
            badged = [c for c in candidates if (c.badge or "").upper() == badge]
            if not badged:
                error = BadgeNotFoundError(candidates[0].term, badge)
                logger.info(f"[KnownNoun] {error}")
                return MatchResult(kind=MatchKind.NONE, badge=badge, badge_error=error)
            candidates = badged

        open_or_explain = patterns.has_trailing_question_only(query.raw) and len(candidates) == 1
        logger.debug(f"[KnownNoun] exact '{matched_phrase}' -> {len(candidates)} candidate(s)")
        return MatchResult(
            kind=MatchKind.EXACT,
            candidates=tuple(candidates),
            badge=badge,
            open_or_explain=open_or_explain,
        )

    if not context.fuzzy_enabled:
        return NO_MATCH

    term, probe, distance = _fuzzy_candidate(store, stripped_tokens)
    if term is None:
        return NO_MATCH

    logger.info(f"[KnownNoun] fuzzy '{probe}' -> '{term.term}' (distance {distance})")
    sink = context.telemetry or get_telemetry_sink()
    sink.emit(FuzzyMatchEvent(
        input_token=probe,
        matched_term=term.term,
        distance=distance,
        known_terms_version=store.version,
    ))
    return MatchResult(
        kind=MatchKind.FUZZY,
        candidates=(term,),
        fuzzy_input=probe,
        fuzzy_distance=distance,
    )
