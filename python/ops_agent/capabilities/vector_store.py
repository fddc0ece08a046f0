"""
Vector store collaborator.

The index only needs upsert / similarity search / point lookup / delete.
InMemoryVectorStore is the process-local implementation used by default and
in tests; a networked store would raise TransientServiceError on hiccups so
the index's retry policy applies.
"""

import math
import threading
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel


class StoredPoint(BaseModel):
    id: str
    vector: List[float]
    payload: Dict[str, Any] = {}


class VectorHit(BaseModel):
    point: StoredPoint
    score: float


class VectorStore(Protocol):
    async def upsert(self, point_id: str, vector: List[float], payload: Dict[str, Any]) -> None:
        ...

    async def search(self, vector: List[float], limit: int, filters: Optional[Dict[str, Any]] = None) -> List[VectorHit]:
        ...

    async def get(self, point_id: str) -> Optional[StoredPoint]:
        ...

    async def scroll(self) -> List[StoredPoint]:
        ...

    async def delete(self, point_id: str) -> bool:
        ...

    async def delete_all(self) -> None:
        ...


def cosine_similarity(a: List[float], b: List[float]) -> float:
    """0.0 for zero vectors."""
    norms = math.hypot(*a) * math.hypot(*b)
    if not norms:
        return 0.0
    return math.fsum(x * y for x, y in zip(a, b)) / norms


def payload_matches(payload: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    """Exact (case-insensitive) match; list-valued fields match on membership."""
    for key, wanted in (filters or {}).items():
        value = payload.get(key)
        wanted_norm = str(wanted).lower()
        if isinstance(value, list):
            if wanted_norm not in (str(v).lower() for v in value):
                return False
        elif value is None or str(value).lower() != wanted_norm:
            return False
    return True


class InMemoryVectorStore:
    """Thread-safe dict-backed store with brute-force cosine search."""

    def __init__(self):
        self._points: Dict[str, StoredPoint] = {}
        self._lock = threading.RLock()

    async def upsert(self, point_id: str, vector: List[float], payload: Dict[str, Any]) -> None:
        with self._lock:
            self._points[point_id] = StoredPoint(id=point_id, vector=list(vector), payload=dict(payload))

    async def search(self, vector: List[float], limit: int, filters: Optional[Dict[str, Any]] = None) -> List[VectorHit]:
        with self._lock:
            points = list(self._points.values())
        hits = [
            VectorHit(point=p, score=cosine_similarity(vector, p.vector))
            for p in points
            if payload_matches(p.payload, filters)
        ]
        hits.sort(key=lambda h: h.score, reverse=True)
        return hits[:limit]

    async def get(self, point_id: str) -> Optional[StoredPoint]:
        with self._lock:
            return self._points.get(point_id)

    async def scroll(self) -> List[StoredPoint]:
        with self._lock:
            return list(self._points.values())

    async def delete(self, point_id: str) -> bool:
        with self._lock:
            return self._points.pop(point_id, None) is not None

    async def delete_all(self) -> None:
        with self._lock:
            self._points.clear()

    def __len__(self) -> int:
        return len(self._points)
