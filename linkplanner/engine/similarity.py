"""Exact cosine-similarity index over page and block embeddings."""

from __future__ import annotations

import math
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

Vector = Sequence[float]
Filter = Callable[[str], bool]


class VectorStore(Protocol):
    """Nearest-neighbour contract; an external vector store may stand in."""

    def nearest(self, vector: Vector, k: int, filter: Filter | None = None) -> List[Tuple[str, float]]:
        ...


def cosine(vector_a: Vector, vector_b: Vector) -> float:
    """dot(a, b) / (|a| |b|), 0.0 when either vector is zero."""

    if len(vector_a) != len(vector_b):
        raise ValueError(f"Vector dimensions differ: {len(vector_a)} != {len(vector_b)}")
    dot = sum(a * b for a, b in zip(vector_a, vector_b))
    norm_a = math.sqrt(sum(a * a for a in vector_a))
    norm_b = math.sqrt(sum(b * b for b in vector_b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


class SimilarityIndex:
    """In-memory index answering top-k cosine queries with an O(n) scan."""

    def __init__(self) -> None:
        self._vectors: Dict[str, List[float]] = {}
        self._norms: Dict[str, float] = {}
        self._dimension: Optional[int] = None
        self._pair_cache: Dict[Tuple[str, str], float] = {}

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._vectors

    def add(self, item_id: str, vector: Vector) -> None:
        values = [float(value) for value in vector]
        if self._dimension is None:
            self._dimension = len(values)
        elif len(values) != self._dimension:
            raise ValueError(
                f"Embedding for {item_id} has dimension {len(values)}, expected {self._dimension}"
            )
        self._vectors[item_id] = values
        self._norms[item_id] = math.sqrt(sum(value * value for value in values))
        self._pair_cache.clear()

    def vector(self, item_id: str) -> Optional[List[float]]:
        return self._vectors.get(item_id)

    def nearest(self, vector: Vector, k: int, filter: Filter | None = None) -> List[Tuple[str, float]]:
        """Return up to ``k`` ``(id, cosine)`` pairs, best first, ties by smaller id."""

        if k <= 0 or not self._vectors:
            return []
        if self._dimension is not None and len(vector) != self._dimension:
            raise ValueError(f"Query dimension {len(vector)} != index dimension {self._dimension}")
        query_norm = math.sqrt(sum(value * value for value in vector))
        if query_norm == 0.0:
            return []

        scored: List[Tuple[str, float]] = []
        for item_id, values in self._vectors.items():
            if filter is not None and not filter(item_id):
                continue
            norm = self._norms[item_id]
            if norm == 0.0:
                continue
            dot = sum(a * b for a, b in zip(vector, values))
            scored.append((item_id, dot / (query_norm * norm)))

        scored.sort(key=lambda item: (-item[1], item[0]))
        return scored[:k]

    def similarity(self, id_a: str, id_b: str) -> float:
        """Cosine similarity between two indexed items, 0.0 if either is missing."""

        key = (id_a, id_b) if id_a <= id_b else (id_b, id_a)
        cached = self._pair_cache.get(key)
        if cached is not None:
            return cached
        vector_a = self._vectors.get(id_a)
        vector_b = self._vectors.get(id_b)
        if vector_a is None or vector_b is None:
            return 0.0
        value = cosine(vector_a, vector_b)
        self._pair_cache[key] = value
        return value


def build_page_index(page_vectors: Dict[str, Optional[Vector]]) -> SimilarityIndex:
    """Index every page that has (or inherits) an embedding."""

    index = SimilarityIndex()
    for page_id in sorted(page_vectors):
        vector = page_vectors[page_id]
        if vector:
            index.add(page_id, vector)
    return index
