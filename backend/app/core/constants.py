"""
Application-wide constants.
Centralizes routing thresholds and vocabularies so every tier reads the same values.
"""
from typing import Dict, FrozenSet, List, Tuple


class RetrievalConstants:
    """Scoring weights and status thresholds for keyword document retrieval."""

    # Scoring weights
    SCORE_TITLE_EXACT: float = 5.0
    SCORE_TITLE_TOKEN: float = 3.0
    SCORE_HEADER_TOKEN: float = 3.0
    SCORE_KEYWORD: float = 2.0
    SCORE_CONTENT: float = 1.0

    # Fixed boost for the target document of an alias substitution
    ALIAS_BOOST: float = 2.0

    # Length normalization: score / sqrt(max(tokens / divisor, 1))
    LENGTH_NORM_DIVISOR: float = 100.0

    # Status thresholds
    MATCH_FLOOR: float = 0.5
    MIN_SCORE: float = 3.0
    WEAK_SCORE_MIN: float = 2.0
    MIN_GAP: float = 2.0

    # Result shaping
    MAX_ALT_SLUGS: int = 4
    SNIPPET_WORDS: int = 30
    MIN_BODY_CHARS: int = 80


class MatchingConstants:
    """Known-noun matching limits."""

    FUZZY_MIN_TOKEN_LENGTH: int = 5
    FUZZY_MAX_DISTANCE: int = 2

    # Structural words that may trail or lead a panel name ("recent widget")
    STRUCTURAL_SUFFIXES: Tuple[str, ...] = ("panel", "widget")


class KnownTermConstants:
    """Known-term snapshot lifetime and the bootstrap set used when no snapshot loads."""

    DEFAULT_TTL_DAYS: int = 7
    BOOTSTRAP_VERSION: str = "bootstrap"

    BOOTSTRAP_TERMS: List[Dict[str, str]] = [
        {"term": "workspace", "kind": "concept"},
        {"term": "notes", "kind": "concept"},
        {"term": "dashboard", "kind": "concept"},
        {"term": "widget", "kind": "concept"},
        {"term": "recent", "kind": "panel", "panel_id": "recent"},
        {"term": "navigator", "kind": "panel", "panel_id": "navigator"},
    ]


class VocabularyConstants:
    """Word lists shared by the normalizer and the query patterns."""

    STOPWORDS: FrozenSet[str] = frozenset({
        "a", "an", "the", "is", "are", "was", "were", "be", "been", "being",
        "what", "how", "why", "when", "where", "which", "who", "whom",
        "my", "your", "our", "their", "its", "do", "does", "did", "can", "could",
        "will", "would", "should", "may", "might", "must", "shall",
        "to", "of", "in", "for", "on", "with", "at", "by", "from", "as",
        "and", "or", "but", "if", "then", "so", "than", "that", "this",
        "i", "me", "you", "he", "she", "it", "we", "they",
        "have", "has", "had", "get", "got", "going", "went",
        "tell", "about", "please", "pls", "just", "know",
    })

    # Stripped from input tokens only, and only for command-shaped input
    ACTION_VERBS: FrozenSet[str] = frozenset({
        "open", "show", "go", "view", "close", "launch", "start",
    })

    HIGH_AMBIGUITY_TERMS: FrozenSet[str] = frozenset({
        "home", "notes", "note", "action", "actions",
    })


class MessageTemplates:
    """User-facing message templates."""

    REPHRASE = "I'm not sure what you mean. Could you try rephrasing?"
    WHICH_PART = "Which part would you like me to explain?"
    NO_DOC_MATCH = "I couldn't find anything about that. Which part would you like me to explain?"
    STOPPED_WITH_LIST = "Okay, I've closed that list. Say 'back to the options' to reopen it."
    STOPPED = "All set. What would you like to do?"
    NOTHING_TO_RETURN = "There's no earlier list to go back to. What would you like to do?"
    WHICH_OPTION = "Which option did you mean? You can pick one of: {labels}."
    PANEL_NOT_VISIBLE = "The {title} panel isn't available on the current dashboard."
    OPEN_OR_EXPLAIN = "Open {title}, or read docs about it?"
    DID_YOU_MEAN = 'Did you mean "{label}"?'
    WHICH_PANEL = "Which {term} panel do you mean?"
    WHICH_ONE = "Which one?"
    REJECTED = "Okay, what would you like instead?"
    REJECTED_WITH_ALTERNATIVES = "Okay, what would you like instead?\nYou can try: {alternatives}."
    AMBIGUOUS_DOCS = 'Do you mean "{first}" or "{second}"?'
    WEAK_DOC = 'I think you mean "{title}". Is that right?'
    HIGH_AMBIGUITY = "Are you asking about {term} in this app?"
    NO_MORE_CONTENT = "That's everything I have on {title}. Anything else?"


# Export all constants for easy import
__all__ = [
    'RetrievalConstants',
    'MatchingConstants',
    'KnownTermConstants',
    'VocabularyConstants',
    'MessageTemplates',
]
