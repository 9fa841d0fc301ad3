"""Euclidean nearest-neighbor matcher over enrolled descriptors."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np
from scipy.spatial.distance import cdist

from geoface.types import UNKNOWN_LABEL, Store, as_descriptor

LOGGER = logging.getLogger("geoface.recognition.matcher")

DEFAULT_MATCH_THRESHOLD = 0.6


@dataclass(frozen=True)
class MatchResult:
    label: str
    distance: float

    @property
    def is_unknown(self) -> bool:
        return self.label == UNKNOWN_LABEL

    def __str__(self) -> str:
        return f"{self.label} ({self.distance:.2f})"


class MatcherIndex:
    """Read-only snapshot of every stored descriptor.

    Rows are laid out in store order (labels in insertion order, descriptors
    in append order), and ties on the minimum distance resolve to the first
    row. Build a new index when the store changes; never mutate one.
    """

    def __init__(self, labels: Sequence[str], matrix: np.ndarray, threshold: float = DEFAULT_MATCH_THRESHOLD) -> None:
        if matrix.ndim != 2 or matrix.shape[0] != len(labels):
            raise ValueError("labels and descriptor matrix rows must align")
        self._labels: Tuple[str, ...] = tuple(labels)
        self._matrix = np.array(matrix, dtype=np.float64, copy=True)
        self._matrix.flags.writeable = False
        self.threshold = threshold

    @classmethod
    def empty(cls, threshold: float = DEFAULT_MATCH_THRESHOLD) -> "MatcherIndex":
        return cls((), np.zeros((0, 0), dtype=np.float64), threshold)

    @classmethod
    def rebuild(cls, store: Store, threshold: float = DEFAULT_MATCH_THRESHOLD) -> "MatcherIndex":
        labels: List[str] = []
        rows: List[np.ndarray] = []
        for label, entry in store.items():
            for descriptor in entry.descriptors:
                labels.append(label)
                rows.append(descriptor)
        if not rows:
            return cls.empty(threshold)
        dims = {row.shape[0] for row in rows}
        if len(dims) != 1:
            raise ValueError(f"Stored descriptors have mixed dimensionality: {sorted(dims)}")
        index = cls(labels, np.stack(rows, axis=0), threshold)
        LOGGER.debug("Rebuilt matcher: %d descriptors across %d labels", len(labels), len(store))
        return index

    def __len__(self) -> int:
        return len(self._labels)

    @property
    def is_empty(self) -> bool:
        return not self._labels

    @property
    def dimension(self) -> int:
        return int(self._matrix.shape[1]) if self._labels else 0

    @property
    def labels(self) -> List[str]:
        return list(dict.fromkeys(self._labels))

    def match_all(self, descriptors: Sequence[np.ndarray]) -> List[MatchResult]:
        if len(descriptors) == 0:
            return []
        queries = np.stack([as_descriptor(d) for d in descriptors], axis=0).astype(np.float64)
        if self.is_empty:
            return [MatchResult(UNKNOWN_LABEL, float("inf")) for _ in range(len(queries))]
        if queries.shape[1] != self.dimension:
            raise ValueError(f"Query descriptor has {queries.shape[1]} dims, index has {self.dimension}")
        distances = cdist(queries, self._matrix, metric="euclidean")
        nearest = np.argmin(distances, axis=1)
        results: List[MatchResult] = []
        for row, col in enumerate(nearest):
            distance = float(distances[row, col])
            label = self._labels[col] if distance <= self.threshold else UNKNOWN_LABEL
            results.append(MatchResult(label, distance))
        return results

    def match(self, descriptor: np.ndarray) -> MatchResult:
        return self.match_all([descriptor])[0]
