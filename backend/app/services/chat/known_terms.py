"""
Known-term snapshot: the application vocabulary the matchers resolve against.

A snapshot is loaded whole or not at all. When no valid snapshot is available the
router runs on a small bootstrap set. Refreshing swaps the registry's reference to a
new immutable store, so turns already holding the previous store are unaffected.
"""

from __future__ import annotations

import hashlib
import json
import threading
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, PrivateAttr, ValidationError

from app.core.constants import KnownTermConstants, VocabularyConstants
from app.core.errors import InfrastructureError, StaleKnownTermsError
from app.core.logging import get_logger
from app.services.chat.normalizer import normalize_label, split_words, stem

logger = get_logger("services.chat.known_terms")


class TermKind(str, Enum):
    PANEL = "panel"
    CONCEPT = "concept"
    ACTION = "action"


class KnownTerm(BaseModel):
    """One vocabulary entry. Panels may carry a badge to tell instances apart."""

    model_config = ConfigDict(frozen=True)

    term: str
    kind: TermKind
    panel_id: Optional[str] = None
    badge: Optional[str] = None

    @property
    def key(self) -> str:
        return normalize_label(self.term)

    @property
    def label(self) -> str:
        """Display label, e.g. "Links Panel D"."""
        base = self.term.title()
        return f"{base} {self.badge.upper()}" if self.badge else base


class KnownTermStore(BaseModel):
    """Immutable snapshot of known terms for a session."""

    model_config = ConfigDict(frozen=True)

    terms: Tuple[KnownTerm, ...]
    version: str
    hash: str
    generated_at: datetime
    ttl_days: int = KnownTermConstants.DEFAULT_TTL_DAYS
    is_bootstrap: bool = False

    _index: Dict[str, List[KnownTerm]] = PrivateAttr(default_factory=dict)
    _vocabulary: frozenset = PrivateAttr(default_factory=frozenset)

    def model_post_init(self, __context) -> None:
        index: Dict[str, List[KnownTerm]] = {}
        vocabulary = set()
        for term in self.terms:
            index.setdefault(term.key, []).append(term)
            vocabulary.add(term.key)
            for word in split_words(term.term):
                if len(word) >= 3 and word not in VocabularyConstants.STOPWORDS:
                    vocabulary.add(word)
                    vocabulary.add(stem(word))
        self._index = index
        self._vocabulary = frozenset(vocabulary)

    def lookup(self, phrase: str) -> List[KnownTerm]:
        """Exact lookup by normalized term, in snapshot order."""
        return list(self._index.get(normalize_label(phrase), []))

    @property
    def vocabulary(self) -> frozenset:
        """Every term plus its significant words and their stems."""
        return self._vocabulary

    @property
    def keys(self) -> List[str]:
        return list(self._index.keys())

    def is_known_word(self, word: str) -> bool:
        return word in self._vocabulary or stem(word) in self._vocabulary

    def __len__(self) -> int:
        return len(self.terms)


def compute_terms_hash(terms: Iterable[KnownTerm]) -> str:
    """sha256 over the canonical JSON form of the terms."""
    payload = [term.model_dump(mode="json") for term in terms]
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def load(snapshot: Dict, ttl_days: Optional[int] = None) -> KnownTermStore:
    """
    Build a store from a snapshot dictionary.

    Raises:
        ValueError: If the snapshot is malformed or its embedded hash does not
            match its terms. Nothing is partially loaded.
    """
    try:
        terms = tuple(KnownTerm.model_validate(entry) for entry in snapshot["terms"])
        generated_at = _as_utc(datetime.fromisoformat(str(snapshot["generated_at"]).replace("Z", "+00:00")))
        version = str(snapshot["version"])
    except (KeyError, TypeError, ValidationError) as e:
        raise ValueError(f"Invalid known-term snapshot: {e}") from e

    if not terms:
        raise ValueError("Known-term snapshot has no terms")

    computed = compute_terms_hash(terms)
    declared = snapshot.get("hash")
    if declared and declared != computed:
        raise ValueError(f"Known-term snapshot {version} hash mismatch")

    return KnownTermStore(
        terms=terms,
        version=version,
        hash=computed,
        generated_at=generated_at,
        ttl_days=ttl_days if ttl_days is not None else int(snapshot.get("ttl_days", KnownTermConstants.DEFAULT_TTL_DAYS)),
    )


def bootstrap_store(now: Optional[datetime] = None) -> KnownTermStore:
    """Minimal store used when no snapshot can be loaded."""
    terms = tuple(KnownTerm.model_validate(entry) for entry in KnownTermConstants.BOOTSTRAP_TERMS)
    return KnownTermStore(
        terms=terms,
        version=KnownTermConstants.BOOTSTRAP_VERSION,
        hash=compute_terms_hash(terms),
        generated_at=_as_utc(now or datetime.now(timezone.utc)),
        is_bootstrap=True,
    )


def load_file(path: str, ttl_days: Optional[int] = None) -> KnownTermStore:
    """Load a snapshot file, falling back to the bootstrap set on any failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        store = load(data, ttl_days=ttl_days)
        logger.info(f"Loaded known-term snapshot {store.version} ({len(store)} terms)")
        return store
    except (OSError, json.JSONDecodeError, ValueError) as e:
        logger.warning(f"Known-term snapshot unavailable ({e}); using bootstrap set")
        return bootstrap_store()


def stale_reason(store: KnownTermStore, now: datetime, expected_hash: Optional[str] = None) -> Optional[str]:
    """Why the store is stale, or None when it is fresh."""
    if _as_utc(now) - store.generated_at > timedelta(days=store.ttl_days):
        return "expired"
    if expected_hash and store.hash != expected_hash:
        return "hash mismatch"
    return None


def is_stale(store: KnownTermStore, now: datetime, expected_hash: Optional[str] = None) -> bool:
    return stale_reason(store, now, expected_hash) is not None


def build_snapshot(
    version: str,
    terms: Iterable[KnownTerm],
    generated_at: Optional[datetime] = None,
    ttl_days: int = KnownTermConstants.DEFAULT_TTL_DAYS,
) -> Dict:
    """
    Produce a snapshot dictionary ready to be written to disk.
    Duplicate (term, badge) pairs keep their first occurrence.
    """
    seen = set()
    unique: List[KnownTerm] = []
    for term in terms:
        key = (term.key, (term.badge or "").upper())
        if key in seen:
            continue
        seen.add(key)
        unique.append(term)

    stamp = _as_utc(generated_at or datetime.now(timezone.utc))
    return {
        "version": version,
        "generated_at": stamp.isoformat(),
        "ttl_days": ttl_days,
        "hash": compute_terms_hash(unique),
        "terms": [term.model_dump(mode="json", exclude_none=True) for term in unique],
    }


class KnownTermRegistry:
    """
    Process-wide holder of the current store.

    Readers take a reference to the current store for the whole turn. A refresh
    builds a new store and swaps the reference.
    """

    def __init__(
        self,
        store: KnownTermStore,
        loader: Optional[Callable[[], KnownTermStore]] = None,
        expected_hash: Optional[str] = None,
    ):
        self._store = store
        self._loader = loader
        self._expected_hash = expected_hash
        self._lock = threading.Lock()

    @property
    def current(self) -> KnownTermStore:
        return self._store

    def acquire(self, now: Optional[datetime] = None) -> KnownTermStore:
        """
        Return a store fit for fuzzy matching, refreshing it first when stale.

        Raises:
            StaleKnownTermsError: If the store is stale and could not be refreshed.
        """
        now = now or datetime.now(timezone.utc)
        store = self._store
        reason = stale_reason(store, now, self._expected_hash)
        if reason is None:
            return store

        refreshed = self.refresh(now)
        if refreshed is not None and stale_reason(refreshed, now, self._expected_hash) is None:
            return refreshed
        raise StaleKnownTermsError(store.version, reason)

    def refresh(self, now: Optional[datetime] = None) -> Optional[KnownTermStore]:
        """Run the loader and swap in its store. Returns None if there is no loader or it failed."""
        if self._loader is None:
            return None
        with self._lock:
            try:
                fresh = self._loader()
            except (OSError, ValueError, InfrastructureError) as e:
                logger.warning(f"Known-term refresh failed: {e}")
                return None
            if fresh.is_bootstrap and not self._store.is_bootstrap:
                logger.warning("Known-term refresh produced only the bootstrap set; keeping current store")
                return None
            self._store = fresh
            logger.info(f"Known-term store refreshed to {fresh.version}")
            return fresh


_registry: Optional[KnownTermRegistry] = None


def get_known_term_registry() -> KnownTermRegistry:
    """Get or create the global registry from the configured snapshot file."""
    global _registry
    if _registry is None:
        from app.core.config import get_settings

        settings = get_settings()
        path = settings.known_terms_snapshot_path
        ttl_days = settings.known_terms_ttl_days
        _registry = KnownTermRegistry(
            load_file(path, ttl_days=ttl_days),
            loader=lambda: load_file(path, ttl_days=ttl_days),
            expected_hash=settings.known_terms_expected_hash,
        )
    return _registry


def set_known_term_registry(registry: Optional[KnownTermRegistry]) -> None:
    """Replace the global registry (used at startup and in tests)."""
    global _registry
    _registry = registry
