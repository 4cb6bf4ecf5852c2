"""
Tests for the known-term snapshot, registry and known-noun matcher.
"""
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from app.core.errors import StaleKnownTermsError
from app.services.chat import known_noun
from app.services.chat.known_noun import MatchContext, MatchKind
from app.services.chat.known_terms import (
    KnownTermRegistry,
    build_snapshot,
    load,
    load_file,
    stale_reason,
)
from app.services.chat.normalizer import normalize
from app.services.chat.telemetry import FuzzyMatchEvent

from conftest import TERMS, make_store

DATA_DIR = Path(__file__).resolve().parents[1] / "data"


def test_snapshot_roundtrip_keeps_order_and_hash():
    snapshot = build_snapshot("v1", TERMS)
    store = load(snapshot)
    assert store.version == "v1"
    assert store.hash == snapshot["hash"]
    assert [t.panel_id for t in store.lookup("links panel")] == ["links-panel-d", "links-panel-e"]


def test_snapshot_with_wrong_hash_is_rejected():
    snapshot = build_snapshot("v1", TERMS)
    snapshot["hash"] = "0" * 64
    with pytest.raises(ValueError):
        load(snapshot)


def test_snapshot_without_terms_is_rejected():
    with pytest.raises(ValueError):
        load({"version": "v1", "generated_at": "2026-01-01T00:00:00Z", "terms": []})


def test_missing_file_falls_back_to_bootstrap(tmp_path):
    store = load_file(str(tmp_path / "missing.json"))
    assert store.is_bootstrap
    assert store.lookup("recent")


def test_bundled_snapshot_loads():
    store = load_file(str(DATA_DIR / "known_terms.json"))
    assert not store.is_bootstrap
    assert len(store.lookup("links panel")) == 2
    assert store.lookup("launch settings")


def test_stale_reasons():
    now = datetime.now(timezone.utc)
    old = make_store(generated_at=now - timedelta(days=30))
    assert stale_reason(old, now) == "expired"

    fresh = make_store(generated_at=now)
    assert stale_reason(fresh, now) is None
    assert stale_reason(fresh, now, expected_hash="abc") == "hash mismatch"


def test_registry_refreshes_stale_store():
    now = datetime.now(timezone.utc)
    old = make_store(generated_at=now - timedelta(days=30), version="old")
    registry = KnownTermRegistry(old, loader=lambda: make_store(version="new"))

    store = registry.acquire(now)
    assert store.version == "new"
    assert registry.current.version == "new"


def test_registry_raises_when_refresh_impossible():
    now = datetime.now(timezone.utc)
    old = make_store(generated_at=now - timedelta(days=30), version="old")
    registry = KnownTermRegistry(old)

    with pytest.raises(StaleKnownTermsError):
        registry.acquire(now)
    assert registry.current.version == "old"


def test_registry_keeps_store_when_loader_fails():
    def broken():
        raise OSError("disk gone")

    store = make_store(version="keep")
    registry = KnownTermRegistry(store, loader=broken)
    assert registry.refresh() is None
    assert registry.current is store


def test_exact_match_returns_every_instance(store):
    result = known_noun.match(normalize("open links panel"), store)
    assert result.kind == MatchKind.EXACT
    assert result.is_disambiguation
    assert [c.badge for c in result.candidates] == ["D", "E"]


def test_badge_filters_instances(store):
    result = known_noun.match(normalize("open links panel d"), store)
    assert result.kind == MatchKind.EXACT
    assert [c.panel_id for c in result.candidates] == ["links-panel-d"]


def test_unknown_badge_is_an_error(store):
    result = known_noun.match(normalize("links panel z"), store)
    assert result.kind == MatchKind.NONE
    assert result.badge_error is not None
    assert result.badge_error.user_message == "No Links panel with badge 'Z' found."


def test_verb_in_panel_name_survives(store):
    result = known_noun.match(normalize("open launch settings"), store)
    assert [c.panel_id for c in result.candidates] == ["launch-settings"]


def test_structural_suffix_is_dropped(store):
    result = known_noun.match(normalize("recent widget"), store)
    assert [c.panel_id for c in result.candidates] == ["recent"]


def test_full_question_is_left_to_retrieval(store):
    assert known_noun.match(normalize("what is recent"), store).kind == MatchKind.NONE


def test_trailing_question_mark_asks_open_or_explain(store):
    result = known_noun.match(normalize("recent?"), store)
    assert result.kind == MatchKind.EXACT
    assert result.open_or_explain


def test_fuzzy_match_emits_event(store, sink):
    result = known_noun.match(normalize("navigater"), store, MatchContext(telemetry=sink))
    assert result.kind == MatchKind.FUZZY
    assert result.candidates[0].term == "navigator"
    assert result.fuzzy_distance == 1

    events = sink.of_type(FuzzyMatchEvent)
    assert len(events) == 1
    assert events[0].matched_term == "navigator"


def test_fuzzy_skips_short_tokens_and_can_be_disabled(store):
    assert known_noun.match(normalize("nav"), store).kind == MatchKind.NONE
    disabled = MatchContext(fuzzy_enabled=False)
    assert known_noun.match(normalize("navigater"), store, disabled).kind == MatchKind.NONE


def test_singular_of_a_known_plural_is_too_short_to_correct(store):
    assert known_noun.match(normalize("note"), store).kind == MatchKind.NONE


@pytest.mark.parametrize("typo", ["workspac", "wrkspace"])
def test_workspace_typos_resolve_fuzzily(store, typo):
    result = known_noun.match(normalize(typo), store)
    assert result.kind == MatchKind.FUZZY
    assert result.candidates[0].term == "workspace"
    assert result.fuzzy_distance == 1
