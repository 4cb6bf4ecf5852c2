"""Query normalization shared by every matcher."""

from __future__ import annotations

import re
from typing import List, Tuple

from pydantic import BaseModel, ConfigDict

from app.core.constants import VocabularyConstants

_PUNCTUATION_RE = re.compile(r"[^\w\s'-]")
_APOSTROPHE_RE = re.compile(r"'s\b|'")


class NormalizedQuery(BaseModel):
    """
    Canonical form of a user turn.

    words: every lowercase word, punctuation stripped, stopwords kept.
    full_tokens: words without stopwords, action verbs kept.
    tokens: full_tokens with action verbs removed when the input is command-shaped.
    """

    model_config = ConfigDict(frozen=True)

    raw: str
    words: Tuple[str, ...] = ()
    full_tokens: Tuple[str, ...] = ()
    tokens: Tuple[str, ...] = ()
    verb_stripped: bool = False

    @property
    def text(self) -> str:
        return " ".join(self.tokens)

    @property
    def full_text(self) -> str:
        return " ".join(self.full_tokens)

    @property
    def is_empty(self) -> bool:
        return not self.tokens


def split_words(text: str) -> List[str]:
    """Lowercase, strip punctuation and split on whitespace."""
    lowered = _APOSTROPHE_RE.sub("", text.lower())
    cleaned = _PUNCTUATION_RE.sub(" ", lowered).replace("_", " ")
    words = []
    for word in cleaned.split():
        word = word.strip("-")
        if word:
            words.append(word)
    return words


def normalize_label(label: str) -> str:
    """
    Normalize a candidate or option label for comparison.
    Labels never have verbs stripped: a panel can be literally named "Launch Settings".
    """
    return " ".join(split_words(label))


def is_command_shaped(tokens: List[str]) -> bool:
    """A verb token sitting alongside at least one non-verb token."""
    verbs = VocabularyConstants.ACTION_VERBS
    has_verb = any(token in verbs for token in tokens)
    has_other = any(token not in verbs for token in tokens)
    return has_verb and has_other


def normalize(text: str) -> NormalizedQuery:
    """
    Canonicalize raw input.

    Lowercases, strips punctuation and removes stopwords. Action verbs are removed
    only from command-shaped input, and stripping never empties the token list.
    """
    raw = text or ""
    words = split_words(raw)
    full_tokens = [w for w in words if w not in VocabularyConstants.STOPWORDS]

    tokens = full_tokens
    stripped = False
    if is_command_shaped(full_tokens):
        without_verbs = [t for t in full_tokens if t not in VocabularyConstants.ACTION_VERBS]
        if without_verbs:
            tokens = without_verbs
            stripped = True

    return NormalizedQuery(
        raw=raw,
        words=tuple(words),
        full_tokens=tuple(full_tokens),
        tokens=tuple(tokens),
        verb_stripped=stripped,
    )


def stem(token: str) -> str:
    """
    Conservative plural stemming.
    Only tokens of four or more characters are touched.
    """
    if len(token) < 4:
        return token
    if token.endswith("ies"):
        return token[:-3] + "y"
    if token.endswith(("ches", "shes", "xes", "zes", "oes")):
        return token[:-2]
    if token.endswith("s") and not token.endswith("ss"):
        return token[:-1]
    return token
