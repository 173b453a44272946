"""In-memory vector store with a fixed embedding dimension and cosine search."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import numpy as np


class DimensionMismatchError(ValueError):
    """An embedding or query vector does not have the store's dimension."""


class DuplicateDocumentError(ValueError):
    """`add` was called with an id that is already stored."""


@dataclass
class VectorDocument:
    id: str
    embedding: Sequence[float]
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SearchResult:
    doc: VectorDocument
    similarity: float


class VectorStore:
    def __init__(self, dimensions: int) -> None:
        if dimensions < 1:
            raise ValueError("dimensions must be positive")
        self.dimensions = dimensions
        self._docs: Dict[str, VectorDocument] = {}
        self._vectors: Dict[str, np.ndarray] = {}

    def add(self, doc: VectorDocument) -> None:
        if doc.id in self._docs:
            raise DuplicateDocumentError(f"Document with ID {doc.id} already exists")
        self._store(doc)

    def add_many(self, docs: Iterable[VectorDocument]) -> None:
        """All-or-nothing: every document is validated before any is stored."""
        batch = list(docs)
        seen = set()
        for doc in batch:
            if doc.id in self._docs or doc.id in seen:
                raise DuplicateDocumentError(f"Document with ID {doc.id} already exists")
            seen.add(doc.id)
            self._as_vector(doc.embedding)
        for doc in batch:
            self._store(doc)

    def update(self, doc: VectorDocument) -> None:
        """Insert or replace."""
        self._store(doc)

    def delete(self, doc_id: str) -> bool:
        if doc_id not in self._docs:
            return False
        del self._docs[doc_id]
        del self._vectors[doc_id]
        return True

    def get(self, doc_id: str) -> Optional[VectorDocument]:
        return self._docs.get(doc_id)

    def has(self, doc_id: str) -> bool:
        return doc_id in self._docs

    def all(self) -> List[VectorDocument]:
        return list(self._docs.values())

    def search(
        self,
        query: Sequence[float],
        k: int = 5,
        min_score: Optional[float] = None,
        filter: Optional[Callable[[VectorDocument], bool]] = None,
    ) -> List[SearchResult]:
        """Top `k` documents by cosine similarity, best first."""
        q = self._as_vector(query)
        if not self._docs:
            return []
        q_norm = float(np.linalg.norm(q))

        results: List[SearchResult] = []
        for doc_id, vec in self._vectors.items():
            doc = self._docs[doc_id]
            if filter is not None and not filter(doc):
                continue
            v_norm = float(np.linalg.norm(vec))
            if q_norm == 0 or v_norm == 0:
                score = 0.0
            else:
                score = float(np.dot(q, vec) / (q_norm * v_norm))
            if min_score is not None and score < min_score:
                continue
            results.append(SearchResult(doc=doc, similarity=score))

        results.sort(key=lambda r: r.similarity, reverse=True)
        return results[: max(0, int(k))]

    def clear(self) -> None:
        self._docs.clear()
        self._vectors.clear()

    def stats(self) -> Dict[str, int]:
        return {"totalDocuments": len(self._docs), "dimensions": self.dimensions}

    def _store(self, doc: VectorDocument) -> None:
        self._vectors[doc.id] = self._as_vector(doc.embedding)
        self._docs[doc.id] = doc

    def _as_vector(self, values: Sequence[float]) -> np.ndarray:
        vec = np.asarray(values, dtype=np.float32).reshape(-1)
        if vec.shape[0] != self.dimensions:
            raise DimensionMismatchError(
                f"Embedding dimensions ({vec.shape[0]}) don't match store dimensions ({self.dimensions})"
            )
        return vec


__all__ = [
    "DimensionMismatchError",
    "DuplicateDocumentError",
    "VectorDocument",
    "SearchResult",
    "VectorStore",
]
