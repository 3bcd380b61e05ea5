import warnings
from dataclasses import dataclass
from typing import Protocol

import numpy as np

RANDOM_SEED = 42

_UMAP = None
_GaussianMixture = None
_import_error: ImportError | None = None

try:
    from sklearn.mixture import GaussianMixture as _GaussianMixture

    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", category=ImportWarning)
        from umap import UMAP as _UMAP
except ImportError as e:
    _import_error = e


def _check_dependencies() -> None:
    """Check if RAPTOR clustering dependencies are installed."""
    if _import_error is not None:
        raise ImportError(
            "RAPTOR clustering requires additional dependencies. "
            "Install them with: pip install 'trellis-retrieval[raptor]'"
        ) from _import_error


@dataclass
class SoftClusters:
    """Soft cluster assignments for a set of items.

    Attributes:
        memberships: For each item, every cluster id it belongs to
        primary: For each item, its highest-probability cluster id. Always
            contained in the item's memberships.
    """

    memberships: list[np.ndarray]
    primary: list[int]

    @classmethod
    def single(cls, n_items: int) -> "SoftClusters":
        return cls(
            memberships=[np.array([0]) for _ in range(n_items)],
            primary=[0] * n_items,
        )

    @property
    def cluster_ids(self) -> list[int]:
        ids: set[int] = set()
        for assignments in self.memberships:
            ids.update(int(c) for c in assignments)
        return sorted(ids)


class Clusterer(Protocol):
    def cluster(self, embeddings: np.ndarray) -> SoftClusters: ...


def reduce_embeddings(
    embeddings: np.ndarray,
    n_components: int,
    n_neighbors: int | None = None,
    min_dist: float = 0.0,
    metric: str = "cosine",
) -> np.ndarray:
    """Reduce embedding dimensionality using UMAP.

    Args:
        embeddings: High-dimensional embeddings (n_samples, n_features)
        n_components: Target dimensionality
        n_neighbors: UMAP neighborhood size. If None, uses sqrt(n_samples)
        min_dist: UMAP minimum distance parameter
        metric: Distance metric for UMAP

    Returns:
        Reduced embeddings (n_samples, n_components)
    """
    _check_dependencies()
    assert _UMAP is not None

    if n_neighbors is None:
        n_neighbors = max(2, int((len(embeddings) - 1) ** 0.5))

    n_neighbors = max(2, min(n_neighbors, len(embeddings) - 1))

    reducer = _UMAP(
        n_neighbors=n_neighbors,
        n_components=n_components,
        min_dist=min_dist,
        metric=metric,
        random_state=RANDOM_SEED,
    )
    return reducer.fit_transform(embeddings)  # type: ignore[return-value]


def get_optimal_cluster_count(
    embeddings: np.ndarray,
    max_clusters: int = 50,
) -> int:
    """Find optimal number of clusters using BIC."""
    _check_dependencies()
    assert _GaussianMixture is not None

    max_clusters = min(max_clusters, len(embeddings))
    if max_clusters <= 1:
        return 1

    bics = []
    for n in range(1, max_clusters):
        gm = _GaussianMixture(n_components=n, random_state=RANDOM_SEED)
        gm.fit(embeddings)
        bics.append(gm.bic(embeddings))

    return int(np.argmin(bics) + 1)


def gmm_cluster(
    embeddings: np.ndarray,
    threshold: float = 0.1,
) -> tuple[list[np.ndarray], np.ndarray, int]:
    """Perform soft clustering using GMM.

    An item belongs to every component whose posterior probability exceeds
    the threshold, and always to its most probable component.

    Returns:
        Tuple of (cluster_labels_per_item, probabilities, n_clusters)
    """
    _check_dependencies()
    assert _GaussianMixture is not None

    n_clusters = get_optimal_cluster_count(embeddings)
    gm = _GaussianMixture(n_components=n_clusters, random_state=RANDOM_SEED)
    gm.fit(embeddings)
    probs = gm.predict_proba(embeddings)
    labels = [
        np.union1d(np.where(prob > threshold)[0], [int(np.argmax(prob))])
        for prob in probs
    ]
    return labels, probs, n_clusters


def cluster_embeddings(
    embeddings: np.ndarray,
    reduction_dim: int = 10,
    threshold: float = 0.1,
    n_neighbors: int = 10,
    min_dist: float = 0.0,
) -> SoftClusters:
    """Cluster embeddings using UMAP dimensionality reduction + GMM.

    This implements the global + local clustering approach from RAPTOR:
    1. Reduce dimensions globally
    2. Perform global GMM clustering
    3. For each global cluster, perform local clustering

    An item's primary cluster is the one maximising
    P(global) * P(local | global).
    """
    n_samples = len(embeddings)

    if n_samples <= 2:
        return SoftClusters.single(n_samples)

    effective_dim = max(1, min(reduction_dim, n_samples - 2))

    reduced = reduce_embeddings(
        embeddings,
        n_components=effective_dim,
        n_neighbors=min(n_neighbors, n_samples - 1),
        min_dist=min_dist,
    )
    global_labels, global_probs, n_global = gmm_cluster(reduced, threshold)

    memberships: list[list[int]] = [[] for _ in range(n_samples)]
    best: list[tuple[float, int]] = [(-1.0, 0) for _ in range(n_samples)]
    total_clusters = 0

    def assign(idx: int, cluster_id: int, score: float) -> None:
        memberships[idx].append(cluster_id)
        if score > best[idx][0]:
            best[idx] = (score, cluster_id)

    for global_cluster_id in range(n_global):
        in_cluster = [
            i for i, labels in enumerate(global_labels) if global_cluster_id in labels
        ]
        if not in_cluster:
            continue

        # Small clusters are not subdivided
        if len(in_cluster) <= effective_dim + 1:
            for idx in in_cluster:
                assign(idx, total_clusters, float(global_probs[idx][global_cluster_id]))
            total_clusters += 1
            continue

        local_reduced = reduce_embeddings(
            embeddings[in_cluster],
            n_components=effective_dim,
            n_neighbors=min(n_neighbors, len(in_cluster) - 1),
            min_dist=min_dist,
        )
        local_labels, local_probs, n_local = gmm_cluster(local_reduced, threshold)

        for local_idx, global_idx in enumerate(in_cluster):
            for local_cluster_id in local_labels[local_idx]:
                score = float(
                    global_probs[global_idx][global_cluster_id]
                    * local_probs[local_idx][local_cluster_id]
                )
                assign(global_idx, total_clusters + int(local_cluster_id), score)

        total_clusters += n_local

    for i, clusters in enumerate(memberships):
        if not clusters:
            assign(i, 0, 0.0)

    return SoftClusters(
        memberships=[np.array(sorted(set(c)), dtype=int) for c in memberships],
        primary=[cluster_id for _, cluster_id in best],
    )


class GMMClusterer:
    """Default RAPTOR clusterer: UMAP reduction followed by soft GMM."""

    def __init__(
        self,
        reduction_dim: int = 10,
        threshold: float = 0.1,
        n_neighbors: int = 10,
        min_dist: float = 0.0,
    ):
        self.reduction_dim = reduction_dim
        self.threshold = threshold
        self.n_neighbors = n_neighbors
        self.min_dist = min_dist

    def cluster(self, embeddings: np.ndarray) -> SoftClusters:
        return cluster_embeddings(
            embeddings,
            reduction_dim=self.reduction_dim,
            threshold=self.threshold,
            n_neighbors=self.n_neighbors,
            min_dist=self.min_dist,
        )
