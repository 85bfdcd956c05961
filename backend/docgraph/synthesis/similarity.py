"""Similarity collaborators used to detect duplicate entities across chunks."""

from __future__ import annotations

import hashlib
import math
import re
from typing import Protocol

from rapidfuzz import fuzz

from docgraph.core.errors import ConfigError
from docgraph.utils.text import normalize, normalize_title

_TOKEN_RE = re.compile(r"\w+")

TITLE_WEIGHT = 0.7


class Titled(Protocol):
    title: str
    summary: str


class SimilarityScorer(Protocol):
    def score(self, left: Titled, right: Titled) -> float:
        """Return a similarity in ``[0, 1]``."""
        ...


def _blend(title_score: float, summary_score: float | None) -> float:
    if summary_score is None:
        return title_score
    return TITLE_WEIGHT * title_score + (1 - TITLE_WEIGHT) * summary_score


class SequenceRatioScorer:
    """Indel ratio (rapidfuzz ``fuzz.ratio``) on normalized titles, blended with summaries."""

    def score(self, left: Titled, right: Titled) -> float:
        title_score = fuzz.ratio(normalize_title(left.title), normalize_title(right.title)) / 100.0
        summary_score = None
        if left.summary and right.summary:
            summary_score = fuzz.ratio(normalize(left.summary).casefold(), normalize(right.summary).casefold()) / 100.0
        return _blend(title_score, summary_score)


class TokenSetScorer:
    """rapidfuzz token-set ratio; word order and extra qualifiers do not count against a match."""

    def score(self, left: Titled, right: Titled) -> float:
        title_score = fuzz.token_set_ratio(normalize_title(left.title), normalize_title(right.title)) / 100.0
        summary_score = None
        if left.summary and right.summary:
            summary_score = fuzz.token_set_ratio(left.summary, right.summary) / 100.0
        return _blend(title_score, summary_score)


class HashedEmbeddingScorer:
    """Cosine similarity of deterministic hashed bag-of-words vectors."""

    def __init__(self, dim: int = 384) -> None:
        self.dim = dim

    def embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dim
        for token in _TOKEN_RE.findall(text.lower()):
            digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
            vector[int.from_bytes(digest, "big") % self.dim] += 1.0
        norm = math.sqrt(sum(value * value for value in vector))
        if norm:
            vector = [value / norm for value in vector]
        return vector

    def score(self, left: Titled, right: Titled) -> float:
        title_score = _cosine(self.embed(left.title), self.embed(right.title))
        summary_score = None
        if left.summary and right.summary:
            summary_score = _cosine(self.embed(left.summary), self.embed(right.summary))
        return _blend(title_score, summary_score)


def _cosine(left: list[float], right: list[float]) -> float:
    return max(0.0, min(1.0, sum(a * b for a, b in zip(left, right))))


def get_scorer(name: str) -> SimilarityScorer:
    """Resolve the configured scorer name."""
    if name == "sequence":
        return SequenceRatioScorer()
    if name == "token_set":
        return TokenSetScorer()
    if name == "hashed":
        return HashedEmbeddingScorer()
    raise ConfigError(f"Unknown similarity scorer: {name}", details={"known": ["hashed", "sequence", "token_set"]})


__all__ = ["HashedEmbeddingScorer", "SequenceRatioScorer", "SimilarityScorer", "TokenSetScorer", "get_scorer"]
