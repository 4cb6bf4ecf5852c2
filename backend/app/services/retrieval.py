"""
Keyword document retrieval.

Scores chunks of the document corpus against a normalized query and classifies
the outcome as found, weak, ambiguous or no_match. Pure and in-memory: the
corpus and alias table are loaded elsewhere.
"""
import hashlib
import math
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from app.core.constants import MessageTemplates, RetrievalConstants, VocabularyConstants
from app.core.logging import get_logger
from app.services.chat.normalizer import NormalizedQuery, normalize_label, split_words, stem
from app.utils.text_cleaning import is_low_quality_body, make_snippet

logger = get_logger("services.retrieval")


class RetrievalStatus(str, Enum):
    FOUND = "found"
    WEAK = "weak"
    AMBIGUOUS = "ambiguous"
    NO_MATCH = "no_match"


def _significant_stems(text: str) -> List[str]:
    return [stem(w) for w in split_words(text) if w not in VocabularyConstants.STOPWORDS]


@dataclass(frozen=True)
class DocumentChunk:
    """One scored unit of the corpus. Token sets are precomputed at build time."""

    slug: str
    chunk_index: int
    category: str
    title: str
    header_path: str
    content: str
    keywords: Tuple[str, ...] = ()
    title_terms: FrozenSet[str] = frozenset()
    header_terms: FrozenSet[str] = frozenset()
    keyword_terms: FrozenSet[str] = frozenset()
    content_terms: FrozenSet[str] = frozenset()
    content_token_count: int = 0
    title_phrase: str = ""
    header_phrases: Tuple[str, ...] = ()

    @classmethod
    def build(
        cls,
        slug: str,
        chunk_index: int,
        category: str,
        title: str,
        header_path: str,
        content: str,
        keywords: Sequence[str] = (),
    ) -> "DocumentChunk":
        content_stems = _significant_stems(content)
        keyword_stems: Set[str] = set()
        for keyword in keywords:
            keyword_stems.update(_significant_stems(keyword))
        header_parts = [part.strip() for part in header_path.split(">") if part.strip()]
        return cls(
            slug=slug,
            chunk_index=chunk_index,
            category=category,
            title=title,
            header_path=header_path,
            content=content,
            keywords=tuple(keywords),
            title_terms=frozenset(_significant_stems(title)),
            header_terms=frozenset(_significant_stems(" ".join(header_parts[1:]))),
            keyword_terms=frozenset(keyword_stems),
            content_terms=frozenset(content_stems),
            content_token_count=len(split_words(content)),
            title_phrase=" ".join(_significant_stems(title)),
            header_phrases=tuple(" ".join(_significant_stems(part)) for part in header_parts),
        )


@dataclass(frozen=True)
class DocumentCorpus:
    """Immutable, ordered snapshot of chunks: slug order, then chunk index."""

    chunks: Tuple[DocumentChunk, ...] = ()
    content_hash: str = ""
    titles: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_chunks(cls, chunks: Iterable[DocumentChunk], content_hash: str = "") -> "DocumentCorpus":
        ordered = tuple(sorted(chunks, key=lambda c: (c.slug, c.chunk_index)))
        titles: Dict[str, str] = {}
        for chunk in ordered:
            titles.setdefault(chunk.slug, chunk.title)
        if not content_hash:
            digest = hashlib.sha256()
            for chunk in ordered:
                digest.update(f"{chunk.slug}:{chunk.chunk_index}:{chunk.header_path}:{chunk.content}".encode("utf-8"))
            content_hash = digest.hexdigest()
        return cls(chunks=ordered, content_hash=content_hash, titles=titles)

    @property
    def is_empty(self) -> bool:
        return not self.chunks

    @property
    def slugs(self) -> List[str]:
        return list(self.titles.keys())

    def title_for(self, slug: str) -> Optional[str]:
        return self.titles.get(slug)

    def chunks_for(self, slug: str) -> List[DocumentChunk]:
        return [c for c in self.chunks if c.slug == slug]


@dataclass(frozen=True)
class AliasEntry:
    """A vague term mapped to the canonical wording of a specific document."""

    canonical: str
    target_slug: Optional[str] = None


AliasTable = Dict[str, AliasEntry]


def load_alias_table(data: Dict) -> AliasTable:
    """Build an alias table from {"aliases": {term: {"canonical": ..., "target_slug": ...}}}."""
    table: AliasTable = {}
    for term, entry in (data.get("aliases") or {}).items():
        if isinstance(entry, str):
            table[normalize_label(term)] = AliasEntry(canonical=entry)
        else:
            table[normalize_label(term)] = AliasEntry(
                canonical=entry["canonical"],
                target_slug=entry.get("target_slug"),
            )
    return table


@dataclass(frozen=True)
class ChunkHit:
    slug: str
    chunk_index: int
    title: str
    header_path: str
    score: float
    snippet: str
    matched_terms: Tuple[str, ...]
    strong: bool
    low_quality: bool


@dataclass(frozen=True)
class RetrievalResult:
    status: RetrievalStatus
    top_slug: Optional[str] = None
    alt_slugs: Tuple[str, ...] = ()
    score: float = 0.0
    confidence: float = 0.0
    matched_terms: Tuple[str, ...] = ()
    hits: Tuple[ChunkHit, ...] = ()
    answer: Optional[ChunkHit] = None
    clarification: Optional[str] = None

    @property
    def has_usable_top(self) -> bool:
        return self.top_slug is not None


def prepare_terms(tokens: Sequence[str], aliases: Optional[AliasTable] = None) -> Tuple[List[str], Set[str]]:
    """
    Apply alias substitution, then stem.

    Two-word aliases are tried before single words. Returns the stemmed terms in
    order without duplicates, plus the slugs that earn the alias boost.
    """
    aliases = aliases or {}
    words: List[str] = []
    boosted: Set[str] = set()
    i = 0
    while i < len(tokens):
        entry = None
        width = 1
        if i + 1 < len(tokens):
            entry = aliases.get(f"{tokens[i]} {tokens[i + 1]}")
            width = 2
        if entry is None:
            entry = aliases.get(tokens[i]) or aliases.get(stem(tokens[i]))
            width = 1
        if entry is not None:
            words.extend(split_words(entry.canonical))
            if entry.target_slug:
                boosted.add(entry.target_slug)
        else:
            words.append(tokens[i])
        i += width

    terms: List[str] = []
    for word in words:
        if word in VocabularyConstants.STOPWORDS:
            continue
        term = stem(word)
        if term not in terms:
            terms.append(term)
    return terms, boosted


def score_chunk(chunk: DocumentChunk, terms: Sequence[str]) -> Tuple[float, Tuple[str, ...], bool]:
    """
    Score one chunk.

    Each term counts once at its best weight: title or header path, then keywords,
    then content. The exact phrase bonus applies when the query phrase appears in
    the title or a header (multi-term) or equals the whole title (single term).

    Returns:
        (normalized score, matched terms, whether any title/header/keyword hit occurred)
    """
    raw = 0.0
    matched: List[str] = []
    strong = False
    for term in terms:
        if term in chunk.title_terms:
            raw += RetrievalConstants.SCORE_TITLE_TOKEN
            strong = True
        elif term in chunk.header_terms:
            raw += RetrievalConstants.SCORE_HEADER_TOKEN
            strong = True
        elif term in chunk.keyword_terms:
            raw += RetrievalConstants.SCORE_KEYWORD
            strong = True
        elif term in chunk.content_terms:
            raw += RetrievalConstants.SCORE_CONTENT
        else:
            continue
        matched.append(term)

    phrase = " ".join(terms)
    if phrase:
        if len(terms) == 1:
            exact = phrase == chunk.title_phrase or phrase in chunk.header_phrases[1:]
        else:
            exact = f" {phrase} " in f" {chunk.title_phrase} " or any(
                f" {phrase} " in f" {header} " for header in chunk.header_phrases
            )
        if exact:
            raw += RetrievalConstants.SCORE_TITLE_EXACT
            strong = True

    if raw == 0:
        return 0.0, (), False

    norm = math.sqrt(max(chunk.content_token_count / RetrievalConstants.LENGTH_NORM_DIVISOR, 1.0))
    return round(raw / norm, 2), tuple(matched), strong


def _to_hit(chunk: DocumentChunk, score: float, matched: Tuple[str, ...], strong: bool) -> ChunkHit:
    return ChunkHit(
        slug=chunk.slug,
        chunk_index=chunk.chunk_index,
        title=chunk.title,
        header_path=chunk.header_path,
        score=score,
        snippet=make_snippet(chunk.content, RetrievalConstants.SNIPPET_WORDS),
        matched_terms=matched,
        strong=strong,
        low_quality=is_low_quality_body(chunk.content, RetrievalConstants.MIN_BODY_CHARS),
    )


def _no_match(clarification: Optional[str] = MessageTemplates.NO_DOC_MATCH) -> RetrievalResult:
    return RetrievalResult(status=RetrievalStatus.NO_MATCH, clarification=clarification)


def retrieve(
    query: NormalizedQuery,
    corpus: DocumentCorpus,
    aliases: Optional[AliasTable] = None,
) -> RetrievalResult:
    """
    Score the corpus and derive a status.

    Rule order: nothing scored or best below MATCH_FLOOR -> no_match; best below
    MIN_SCORE or lacking any title/header/keyword hit -> weak; the two best distinct
    documents within MIN_GAP -> ambiguous; a thin best chunk with no better chunk
    of the same document -> weak; otherwise found. A weak result under
    WEAK_SCORE_MIN carries no top slug.

    Never raises on an empty corpus or empty query.
    """
    if corpus is None or corpus.is_empty or query is None or query.is_empty:
        return _no_match()

    terms, boosted = prepare_terms(list(query.tokens), aliases)
    if not terms:
        return _no_match()

    scored: List[Tuple[float, int, ChunkHit]] = []
    for position, chunk in enumerate(corpus.chunks):
        score, matched, strong = score_chunk(chunk, terms)
        if score > 0:
            scored.append((score, position, _to_hit(chunk, score, matched, strong)))

    # Alias boost lands before ranking so it also feeds the gap check
    for slug in boosted:
        doc_hits = [i for i, (_, _, hit) in enumerate(scored) if hit.slug == slug]
        if not doc_hits:
            first = next(((p, c) for p, c in enumerate(corpus.chunks) if c.slug == slug), None)
            if first is None:
                continue
            position, chunk = first
            scored.append((0.0, position, _to_hit(chunk, 0.0, (), True)))
            doc_hits = [len(scored) - 1]
        for i in doc_hits:
            score, position, hit = scored[i]
            boosted_score = round(score + RetrievalConstants.ALIAS_BOOST, 2)
            scored[i] = (boosted_score, position, replace(hit, score=boosted_score, strong=True))

    if not scored:
        return _no_match()

    scored.sort(key=lambda item: (-item[0], item[1]))
    hits = tuple(hit for _, _, hit in scored)
    top = hits[0]

    if top.score < RetrievalConstants.MATCH_FLOOR:
        return _no_match()

    # Best chunk per document, taken before any same-document collapse
    distinct: List[ChunkHit] = []
    seen: Set[str] = set()
    for hit in hits:
        if hit.slug not in seen:
            seen.add(hit.slug)
            distinct.append(hit)

    second_score = distinct[1].score if len(distinct) > 1 else 0.0
    confidence = round((top.score - second_score) / top.score, 3) if top.score else 0.0
    alt_slugs = tuple(h.slug for h in distinct[1:1 + RetrievalConstants.MAX_ALT_SLUGS])
    matched_terms = top.matched_terms

    common = dict(
        alt_slugs=alt_slugs,
        score=top.score,
        confidence=confidence,
        matched_terms=matched_terms,
        hits=hits,
    )

    if top.score < RetrievalConstants.MIN_SCORE or not top.strong:
        if top.score < RetrievalConstants.WEAK_SCORE_MIN:
            logger.debug(f"[Retrieval] weak without usable top (score {top.score})")
            return RetrievalResult(
                status=RetrievalStatus.WEAK,
                clarification=MessageTemplates.WHICH_PART,
                **common,
            )
        return RetrievalResult(
            status=RetrievalStatus.WEAK,
            top_slug=top.slug,
            answer=top,
            clarification=MessageTemplates.WEAK_DOC.format(title=top.title),
            **common,
        )

    if len(distinct) > 1 and top.score - distinct[1].score < RetrievalConstants.MIN_GAP:
        logger.debug(f"[Retrieval] ambiguous {top.slug} vs {distinct[1].slug}")
        return RetrievalResult(
            status=RetrievalStatus.AMBIGUOUS,
            top_slug=top.slug,
            clarification=MessageTemplates.AMBIGUOUS_DOCS.format(first=top.title, second=distinct[1].title),
            **common,
        )

    answer = top
    if top.low_quality:
        better = next((h for h in hits[1:] if h.slug == top.slug and not h.low_quality), None)
        if better is None:
            return RetrievalResult(
                status=RetrievalStatus.WEAK,
                top_slug=top.slug,
                answer=top,
                clarification=MessageTemplates.WEAK_DOC.format(title=top.title),
                **common,
            )
        answer = better

    return RetrievalResult(
        status=RetrievalStatus.FOUND,
        top_slug=top.slug,
        answer=answer,
        **common,
    )


def next_chunk(corpus: DocumentCorpus, slug: str, after_index: int) -> Optional[DocumentChunk]:
    """The next readable chunk of a document after the given index."""
    for chunk in corpus.chunks_for(slug):
        if chunk.chunk_index > after_index and not is_low_quality_body(chunk.content, RetrievalConstants.MIN_BODY_CHARS):
            return chunk
    return None


def chunk_to_hit(chunk: DocumentChunk) -> ChunkHit:
    """Wrap a chunk served outside of scoring (follow-ups, confirmations)."""
    return _to_hit(chunk, 0.0, (), True)
