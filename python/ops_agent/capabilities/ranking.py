"""
Ranking functions for capability search.

A ranking function receives the raw query text and the similarity-search
candidates (record + cosine similarity) and returns scored matches, best
first. The index takes the function as a constructor argument.
"""

import re
from typing import Callable, List, Set, Tuple

from .. import config
from .models import CapabilityMatch, CapabilityRecord

Candidate = Tuple[CapabilityRecord, float]
RankingFunction = Callable[[str, List[Candidate]], List[CapabilityMatch]]

_TOKEN_SPLIT = re.compile(r"[^A-Za-z0-9_.-]+")


def tokenize(text: str) -> Set[str]:
    # Keeps K8s jargon like "cert-manager.io" or "v1beta1" intact
    return {t.lower() for t in _TOKEN_SPLIT.split(text) if t}


def keyword_scores(query: str, documents: List[str]) -> List[float]:
    """Token-overlap score per document, normalised to [0, 1] by the best one."""
    query_tokens = tokenize(query)
    raw = []
    for doc in documents:
        doc_tokens = tokenize(doc)
        if not doc_tokens or not query_tokens:
            raw.append(0.0)
            continue
        overlap = len(doc_tokens & query_tokens)
        score = float(overlap)
        if overlap:
            # Boost closer matches
            score += 0.5 * (overlap / len(query_tokens))
        raw.append(score)

    best = max(raw, default=0.0)
    if best <= 0:
        return [0.0 for _ in raw]
    return [s / best for s in raw]


def _sorted(matches: List[CapabilityMatch]) -> List[CapabilityMatch]:
    # Ties resolve by name so equal scores come back in a stable order
    return sorted(matches, key=lambda m: (-m.score, m.record.resource_name))


def hybrid_rank(
    query: str,
    candidates: List[Candidate],
    semantic_weight: float = config.SEMANTIC_WEIGHT,
    keyword_weight: float = config.KEYWORD_WEIGHT,
    min_similarity: float = config.CAPABILITY_MIN_SCORE,
) -> List[CapabilityMatch]:
    """Weighted fusion of cosine similarity and keyword overlap.

    A candidate is kept if it is semantically close enough, or if it is a
    strong keyword hit (> 0.6) even when the embedding disagrees.
    """
    keywords = keyword_scores(query, [record.search_text() for record, _ in candidates])
    matches = []
    for (record, similarity), keyword in zip(candidates, keywords):
        if similarity < min_similarity and keyword <= 0.6:
            continue
        matches.append(CapabilityMatch(
            record=record,
            score=semantic_weight * similarity + keyword_weight * keyword,
            semantic_score=similarity,
            keyword_score=keyword,
        ))
    return _sorted(matches)


def semantic_rank(query: str, candidates: List[Candidate]) -> List[CapabilityMatch]:
    """Pure embedding similarity; the query text is not used."""
    return _sorted([
        CapabilityMatch(record=record, score=similarity, semantic_score=similarity)
        for record, similarity in candidates
    ])
