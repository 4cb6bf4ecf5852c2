"""
Query pattern predicates used by the routing tiers.

Every predicate takes the raw user text and is case/whitespace insensitive.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Sequence

from app.core.constants import VocabularyConstants

AFFIRMATION_PATTERN = re.compile(
    r"^(yes|yeah|yep|yup|sure|ok|okay|k|ya|yea|mhm|uh\s*huh|go ahead|do it|proceed|"
    r"correct|right|exactly|confirm|confirmed|that one|sounds good)(\s+please)?$"
)
REJECTION_PATTERN = re.compile(
    r"^(no|nope|nah|negative|not now|wrong|incorrect|not that|not that one|"
    r"neither|none of those|no thanks|no thank you)$"
)
EXIT_PATTERN = re.compile(
    r"^(cancel|never\s*mind|stop|forget it|none of these|start over|exit|quit|"
    r"abort|skip|something else|that's all|thats all)(\s+please)?$"
)
RETURN_CUE_PATTERN = re.compile(
    r"\b(back|return|resume|previous|earlier|again)\b.*\b(options|list|choices|ones)\b|"
    r"^(go back|back|resume|return|continue where we left off)$"
)
RESHOW_PATTERNS = [
    re.compile(r"^show\s*(me\s*)?(the\s*)?options$"),
    re.compile(r"^(what\s*were\s*those|what\s*were\s*they)$"),
    re.compile(r"^i'?m\s*confused$"),
    re.compile(r"^(can\s*you\s*)?show\s*(me\s*)?(again|them)$"),
    re.compile(r"^remind\s*me$"),
    re.compile(r"^options$"),
    re.compile(r"^what\s+are\s+(my\s+)?options$"),
]
QUESTION_INTENT_PATTERN = re.compile(
    r"^(what|how|where|when|why|who|which|can|could|would|should|tell|explain|help|is|are|do|does)\b"
)
ACTION_VERB_PATTERN = re.compile(
    r"\b(open|close|show|list|go|view|launch|start|create|rename|delete|remove|add|navigate|"
    r"edit|modify|change|update)\b"
)
EXPLICIT_COMMAND_VERBS = re.compile(r"\b(open|show|view|go|launch|close|start)\b")
ORDINAL_PATTERN = re.compile(r"\b(first|second|third|fourth|fifth|last|[1-9])\b")
DOC_INSTRUCTION_PATTERN = re.compile(r"\b(how to|how do i|tell me how|show me how|walk me through)\b")
INDEX_REFERENCE_PATTERN = re.compile(r"\b(workspace|note|page|entry)\s+\d+\b")
FULL_QUESTION_PATTERN = re.compile(
    r"^(what is|what are|what's|whats|how does|how do|how to|tell me about|explain|describe|define)\b"
)
CONVERSATIONAL_PREFIXES = [
    re.compile(r"^(can|could|would|will) you (please |pls )?(tell me|explain|help me understand) "),
    re.compile(r"^(please |pls )?(tell me|explain) "),
    re.compile(r"^i('d| would) (like to|want to) (know|understand) "),
    re.compile(r"^(do you know|can you help me understand) "),
]
POLITE_COMMAND_PREFIXES = ("can you", "could you", "would you", "will you", "please", "pls")
SELECTION_PATTERN = re.compile(
    r"^(first|second|third|fourth|fifth|last|[1-9]|option\s*[1-9]|"
    r"(the\s+)?(first|second|third|fourth|fifth|last)\s+(one|option)|[a-e])$"
)
WIDGET_REFERENCE_PATTERN = re.compile(
    r"\b(this|that|the|my)\s+(widget|panel)\b|\bon (the )?screen\b|\bin (this|that|my)\b"
)

DOC_VERBS = frozenset({"explain", "describe", "define", "clarify", "tell", "about"})
FOLLOWUP_PHRASES = (
    "tell me more",
    "more details",
    "explain more",
    "more",
    "how does it work",
    "how does that work",
    "what else",
    "continue",
    "go on",
    "expand",
    "elaborate",
    "keep going",
)
CORRECTION_PHRASES = (
    "no",
    "nope",
    "wrong",
    "incorrect",
    "not that",
    "not what i meant",
    "not what i asked",
    "that's wrong",
    "thats wrong",
    "wrong one",
    "different one",
    "try again",
)
ORDINAL_INDEX = {
    "first": 0, "1": 0, "option 1": 0, "a": 0,
    "second": 1, "2": 1, "option 2": 1, "b": 1,
    "third": 2, "3": 2, "option 3": 2, "c": 2,
    "fourth": 3, "4": 3, "option 4": 3, "d": 3,
    "fifth": 4, "5": 4, "option 5": 4, "e": 4,
}


def clean(text: str) -> str:
    """Lowercase, trim, drop trailing punctuation and collapse whitespace."""
    text = (text or "").lower().strip()
    text = re.sub(r"[?!.]+$", "", text)
    return re.sub(r"\s+", " ", text).strip()


def is_affirmation(text: str) -> bool:
    return bool(AFFIRMATION_PATTERN.match(clean(text)))


def is_rejection(text: str) -> bool:
    return bool(REJECTION_PATTERN.match(clean(text)))


def is_exit(text: str) -> bool:
    return bool(EXIT_PATTERN.match(clean(text)))


def has_return_cue(text: str) -> bool:
    return bool(RETURN_CUE_PATTERN.search(clean(text)))


def is_reshow(text: str) -> bool:
    normalized = clean(text)
    return any(pattern.match(normalized) for pattern in RESHOW_PATTERNS)


def is_followup(text: str) -> bool:
    """Pronoun-style continuation such as "tell me more"."""
    normalized = re.sub(r"^(can|could) you\s+(please\s+)?|^please\s+", "", clean(text))
    return any(normalized == phrase or normalized.startswith(phrase + " ") for phrase in FOLLOWUP_PHRASES)


def is_correction(text: str) -> bool:
    normalized = clean(text)
    return any(normalized == phrase or normalized.startswith(phrase + " ") for phrase in CORRECTION_PHRASES)


def has_question_intent(text: str) -> bool:
    stripped = (text or "").strip().lower()
    return bool(QUESTION_INTENT_PATTERN.match(clean(text))) or stripped.endswith("?")


def has_action_verb(text: str) -> bool:
    return bool(ACTION_VERB_PATTERN.search(clean(text)))


def has_doc_instruction_cue(text: str) -> bool:
    return bool(DOC_INSTRUCTION_PATTERN.search(clean(text)))


def has_doc_verb(tokens: Iterable[str]) -> bool:
    return any(token in DOC_VERBS for token in tokens)


def looks_index_like(text: str) -> bool:
    return bool(INDEX_REFERENCE_PATTERN.search(clean(text)))


def is_command_like(text: str) -> bool:
    """Imperative with an action verb, or an index-like reference such as "note 2"."""
    normalized = clean(text)
    if looks_index_like(normalized):
        return True
    if has_action_verb(normalized) and not has_question_intent(text):
        return True
    has_polite_prefix = normalized.startswith(POLITE_COMMAND_PREFIXES)
    return has_polite_prefix and has_action_verb(normalized) and not has_doc_instruction_cue(normalized)


def is_explicit_command(text: str) -> bool:
    """An action verb and no ordinal, so it cannot be a list selection."""
    normalized = clean(text)
    if ORDINAL_PATTERN.search(normalized):
        return False
    return bool(EXPLICIT_COMMAND_VERBS.search(normalized))


def strip_conversational_prefix(text: str) -> str:
    result = clean(text)
    for prefix in CONVERSATIONAL_PREFIXES:
        result = prefix.sub("", result)
    return result


def is_full_question(text: str) -> bool:
    """
    Question framing around a noun ("what is X", "how does X work").
    A trailing question mark alone does not count.
    """
    normalized = strip_conversational_prefix(text)
    if FULL_QUESTION_PATTERN.match(normalized) or FULL_QUESTION_PATTERN.match(clean(text)):
        return True
    stripped = (text or "").strip().lower()
    return stripped.endswith("?") and bool(
        re.match(r"^(what|how|where|when|why|who|which)\b", clean(text))
    )


def has_trailing_question_only(text: str) -> bool:
    """Input ends with '?' but carries no question framing ("links panel?")."""
    stripped = (text or "").strip()
    return stripped.endswith("?") and not is_full_question(text)


def has_explicit_intent_cue(text: str) -> bool:
    return has_question_intent(text) or has_doc_instruction_cue(text) or has_action_verb(text)


def parse_selection(text: str, option_count: int, option_labels: Sequence[str] = ()) -> Optional[int]:
    """
    Map an ordinal, "option N" or a single badge letter to an option index.

    Letters first look for an option whose label ends with that badge, then fall
    back to positional lettering (a = first).
    """
    normalized = clean(text)
    normalized = re.sub(r"^(open|show|pick|select|choose|go with)\s+", "", normalized)
    normalized = re.sub(r"^the\s+", "", normalized)
    normalized = re.sub(r"\s+(one|option)$", "", normalized) if not normalized.startswith("option") else normalized

    if not SELECTION_PATTERN.match(normalized):
        return None

    if normalized == "last":
        return option_count - 1 if option_count > 0 else None

    if re.fullmatch(r"[a-e]", normalized):
        letter = normalized.upper()
        for index, label in enumerate(option_labels):
            if label.upper().endswith(f" {letter}"):
                return index

    index = ORDINAL_INDEX.get(re.sub(r"option\s*", "option ", normalized))
    if index is not None and index < option_count:
        return index
    return None


def looks_like_selection(text: str) -> bool:
    """Selection-shaped reply regardless of whether it resolves."""
    normalized = re.sub(r"^the\s+", "", clean(text))
    return bool(SELECTION_PATTERN.match(normalized)) or bool(ORDINAL_PATTERN.fullmatch(normalized))


def extract_doc_query_term(text: str) -> str:
    """
    Drop question framing from a doc-style query.
    e.g. "how do I add a widget" -> "add a widget"
    """
    normalized = strip_conversational_prefix(text)
    for pattern in (
        r"^what (is|are)\s+(a\s+|an\s+|the\s+)?",
        r"^how (do i|to|can i)\s+",
        r"^tell me (about\s+)?(a\s+|an\s+|the\s+)?",
        r"^tell me how (to\s+)?",
        r"^explain\s+(a\s+|an\s+|the\s+)?",
        r"^what does\s+(a\s+|an\s+|the\s+)?",
        r"^where can i\s+(find\s+|see\s+)?",
        r"^show me how (to\s+)?",
        r"^walk me through\s+(how to\s+)?",
        r"^(describe|clarify|define)\s+(the\s+|a\s+|an\s+)?",
    ):
        normalized = re.sub(pattern, "", normalized)
    return normalized.strip() or clean(text)


def is_widget_reference_question(text: str, widget_titles: Sequence[str] = ()) -> bool:
    """
    A question about something on screen: "what's in this widget?",
    "what does my recent panel show?".
    """
    normalized = clean(text)
    if not (has_question_intent(text) or re.match(r"^(summarize|describe)\b", normalized)):
        return False
    if WIDGET_REFERENCE_PATTERN.search(normalized):
        return True
    return any(title and re.search(rf"\b{re.escape(title.lower())}\b", normalized) for title in widget_titles)


def get_high_ambiguity_only_match(tokens: Sequence[str], vocabulary: Iterable[str]) -> Optional[str]:
    """
    Return the matched term when every known term in the input is a high-ambiguity
    word ("notes", "home"), otherwise None.
    """
    vocab = set(vocabulary)
    phrase = " ".join(tokens)
    matched: List[str] = []
    for term in list(tokens) + [phrase]:
        if term in vocab and term not in matched:
            matched.append(term)
    if not matched:
        return None
    if all(term in VocabularyConstants.HIGH_AMBIGUITY_TERMS for term in matched):
        return matched[0]
    return None
