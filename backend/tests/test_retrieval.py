"""
Tests for keyword document retrieval and its status rules.
"""
from app.services.chat.normalizer import normalize
from app.services.retrieval import (
    DocumentCorpus,
    RetrievalStatus,
    next_chunk,
    prepare_terms,
    retrieve,
)


def test_title_match_is_found(corpus):
    result = retrieve(normalize("workspace"), corpus)
    assert result.status == RetrievalStatus.FOUND
    assert result.top_slug == "workspace"
    assert result.answer.chunk_index == 0
    assert "sharing-workspaces" in result.alt_slugs


def test_chunks_of_one_document_are_not_ambiguous(corpus):
    # Both workspace chunks score the same; only distinct documents compete
    result = retrieve(normalize("workspace"), corpus)
    top_two = [hit.slug for hit in result.hits[:2]]
    assert top_two == ["workspace", "workspace"]
    assert result.status == RetrievalStatus.FOUND


def test_close_documents_are_ambiguous(corpus):
    result = retrieve(normalize("sharing"), corpus)
    assert result.status == RetrievalStatus.AMBIGUOUS
    assert result.top_slug == "sharing-notes"
    assert result.alt_slugs == ("sharing-workspaces",)
    assert result.clarification == 'Do you mean "Sharing Notes" or "Sharing Workspaces"?'


def test_content_only_match_is_weak(corpus):
    result = retrieve(normalize("rearrange resize"), corpus)
    assert result.status == RetrievalStatus.WEAK
    assert result.top_slug == "dashboard"
    assert result.score == 2.0


def test_weak_below_floor_has_no_top(corpus):
    result = retrieve(normalize("rearrange"), corpus)
    assert result.status == RetrievalStatus.WEAK
    assert result.top_slug is None
    assert not result.has_usable_top


def test_thin_chunk_is_weak(corpus):
    result = retrieve(normalize("tiny"), corpus)
    assert result.status == RetrievalStatus.WEAK
    assert result.top_slug == "tiny"


def test_alias_substitution_and_boost(corpus, aliases):
    terms, boosted = prepare_terms(["home", "screen"], aliases)
    assert terms == ["dashboard"]
    assert boosted == {"dashboard"}

    result = retrieve(normalize("home screen"), corpus, aliases)
    assert result.status == RetrievalStatus.FOUND
    assert result.top_slug == "dashboard"
    assert result.score == 10.0


def test_unknown_terms_do_not_match(corpus):
    result = retrieve(normalize("quantum entanglement"), corpus)
    assert result.status == RetrievalStatus.NO_MATCH
    assert result.top_slug is None


def test_empty_inputs_never_raise(corpus):
    assert retrieve(normalize(""), corpus).status == RetrievalStatus.NO_MATCH
    assert retrieve(normalize("what is the"), corpus).status == RetrievalStatus.NO_MATCH
    assert retrieve(normalize("workspace"), DocumentCorpus()).status == RetrievalStatus.NO_MATCH


def test_next_chunk_walks_the_document(corpus):
    chunk = next_chunk(corpus, "workspace", 0)
    assert chunk.chunk_index == 1
    assert chunk.header_path == "Workspace > Creating a workspace"
    assert next_chunk(corpus, "workspace", 1) is None


def test_corpus_order_is_deterministic(corpus):
    assert corpus.slugs == sorted(corpus.slugs)
    assert corpus.title_for("sharing-notes") == "Sharing Notes"
