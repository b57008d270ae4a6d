"""Embedding partitioner: k-means with k-means++ seeding.

Groups a skill's request embeddings into at most ``k`` partitions. The
operation is total on valid input: when there are no more points than
requested partitions every point becomes its own singleton partition.

Also provides the two geometric helpers that surround a clustering run:
matching new centroids to existing partitions so arm pools survive a
recompute, and routing a single embedding to its nearest partition.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from skillopt.core.exceptions import PartitionInputError
from skillopt.core.logging import get_logger

if TYPE_CHECKING:
    from skillopt.store.models import Partition

_logger = get_logger("partitioner")

DEFAULT_MAX_ITERATIONS = 100


@dataclass
class PartitionResult:
    """Outcome of one partitioning run.

    Attributes:
        assignments: Partition index for each input point, in input order.
        centroids: One centroid per partition.
        iterations: Assignment passes run; 0 for the singleton shortcut.
        inertia: Total squared distance from points to their centroids.
    """

    assignments: list[int]
    centroids: list[list[float]]
    iterations: int
    inertia: float

    @property
    def partition_count(self) -> int:
        return len(self.centroids)


def _as_matrix(embeddings: Sequence[Sequence[float]]) -> np.ndarray:
    if len(embeddings) == 0:
        raise PartitionInputError("Cannot partition an empty embedding set")

    dims = {len(e) for e in embeddings}
    if len(dims) != 1:
        raise PartitionInputError(
            f"Embeddings have inconsistent dimensionality: {sorted(dims)}"
        )
    if 0 in dims:
        raise PartitionInputError("Embeddings must have at least one dimension")

    points = np.asarray(embeddings, dtype=np.float64)
    if not np.all(np.isfinite(points)):
        raise PartitionInputError("Embeddings contain NaN or infinite values")
    return points


def _squared_distances(points: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    """(n, k) matrix of squared Euclidean distances."""
    diff = points[:, None, :] - centroids[None, :, :]
    return np.einsum("nkd,nkd->nk", diff, diff)


def _seed_centroids(points: np.ndarray, k: int, rng: np.random.Generator) -> np.ndarray:
    """k-means++ seeding.

    The first centroid is uniform; each further one is drawn with probability
    proportional to its squared distance to the closest centroid chosen so
    far. If every remaining point coincides with a chosen centroid the draw
    has no mass, and the point at ``c % n`` is taken instead.
    """
    n = points.shape[0]
    centroids = np.empty((k, points.shape[1]), dtype=np.float64)
    centroids[0] = points[rng.integers(n)]
    closest = np.sum((points - centroids[0]) ** 2, axis=1)

    for c in range(1, k):
        total = float(closest.sum())
        if total <= 0.0:
            idx = c % n
        else:
            r = rng.random() * total
            idx = min(int(np.searchsorted(np.cumsum(closest), r, side="right")), n - 1)
        centroids[c] = points[idx]
        closest = np.minimum(closest, np.sum((points - centroids[c]) ** 2, axis=1))

    return centroids


def partition_embeddings(
    embeddings: Sequence[Sequence[float]],
    k: int,
    *,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    seed: int | None = None,
    rng: np.random.Generator | None = None,
) -> PartitionResult:
    """Cluster embeddings into at most ``k`` partitions.

    Args:
        embeddings: Points to cluster, all of one dimensionality.
        k: Target partition count.
        max_iterations: Cap on assignment passes.
        seed: Seed for a fresh generator; ignored when ``rng`` is given.
        rng: Generator to draw seeding randomness from.

    Returns:
        ``k`` partitions when ``k < n``; otherwise ``n`` singletons with
        ``iterations == 0``.

    Raises:
        PartitionInputError: Empty input, non-positive ``k``, mixed
            dimensionality, or non-finite values.
    """
    if k <= 0:
        raise PartitionInputError(f"Number of partitions must be positive, got {k}")
    if max_iterations <= 0:
        raise ValueError(f"max_iterations must be positive, got {max_iterations}")

    points = _as_matrix(embeddings)
    n = points.shape[0]

    if k >= n:
        return PartitionResult(
            assignments=list(range(n)),
            centroids=points.tolist(),
            iterations=0,
            inertia=0.0,
        )

    if rng is None:
        rng = np.random.default_rng(seed)

    centroids = _seed_centroids(points, k, rng)
    labels = np.zeros(n, dtype=np.intp)
    iterations = max_iterations

    for iteration in range(max_iterations):
        # argmin resolves ties toward the lowest centroid index
        new_labels = _squared_distances(points, centroids).argmin(axis=1)
        if np.array_equal(new_labels, labels):
            iterations = iteration + 1
            break
        labels = new_labels
        for idx in range(k):
            members = points[labels == idx]
            # empty partitions keep their previous centroid
            if len(members) > 0:
                centroids[idx] = members.mean(axis=0)

    inertia = float(np.sum((points - centroids[labels]) ** 2))
    _logger.debug(
        "partitioning_complete",
        points=n,
        partitions=k,
        iterations=iterations,
        inertia=inertia,
    )
    return PartitionResult(
        assignments=[int(x) for x in labels],
        centroids=centroids.tolist(),
        iterations=iterations,
        inertia=inertia,
    )


def match_partitions(
    old_centroids: Sequence[Sequence[float]],
    new_centroids: Sequence[Sequence[float]],
) -> dict[int, int]:
    """Greedily pair existing partitions with freshly computed centroids.

    Each old centroid, in order, claims the closest new centroid not yet
    claimed. Returns ``{old_index: new_index}``; old partitions left over
    when there are fewer new centroids are absent from the mapping. Nothing
    matches when the two sets differ in dimensionality.
    """
    if not old_centroids or not new_centroids:
        return {}
    old = np.asarray(old_centroids, dtype=np.float64)
    new = np.asarray(new_centroids, dtype=np.float64)
    if old.shape[1] != new.shape[1]:
        return {}

    distances = _squared_distances(old, new)
    used: set[int] = set()
    mapping: dict[int, int] = {}
    for i in range(old.shape[0]):
        for j in np.argsort(distances[i], kind="stable"):
            if int(j) not in used:
                used.add(int(j))
                mapping[i] = int(j)
                break
    return mapping


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 if either has zero norm."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"Vectors differ in dimensionality: {va.shape} vs {vb.shape}")
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def nearest_partition(
    embedding: Sequence[float],
    partitions: Sequence[Partition],
) -> Partition | None:
    """Partition whose centroid is most cosine-similar to ``embedding``.

    Partitions of a different dimensionality are ignored. Returns None when
    no partition qualifies.
    """
    best: Partition | None = None
    best_similarity = -np.inf
    for partition in partitions:
        if len(partition.centroid) != len(embedding):
            continue
        similarity = cosine_similarity(embedding, partition.centroid)
        if similarity > best_similarity:
            best, best_similarity = partition, similarity
    return best
