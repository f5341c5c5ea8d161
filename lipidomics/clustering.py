"""
K-means Clustering of Samples
=============================

Reshapes the long table to sample x analyte, z-scores every analyte and
partitions the samples with scikit-learn's Lloyd k-means, started from random
distinct rows and restarted several times. The random generator is always
seeded explicitly.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd
from sklearn.cluster import KMeans
from sklearn.decomposition import PCA
from sklearn.metrics import silhouette_score

from lipidomics.data_processing import ANALYTE, CONCENTRATION, GROUP, SAMPLE
from lipidomics.exceptions import ClusteringError

logger = logging.getLogger(__name__)


@dataclass
class KMeansRun:
    """Outcome of a single k-means start."""
    labels: np.ndarray
    centers: np.ndarray
    withinss: np.ndarray
    iterations: int
    converged: bool

    @property
    def tot_withinss(self) -> float:
        return float(self.withinss.sum())

    @property
    def sizes(self) -> np.ndarray:
        return np.bincount(self.labels, minlength=len(self.centers))


@dataclass
class ClusteringResult:
    """Best k-means partition of the standardized samples."""
    assignments: pd.Series        # sample -> cluster index (0..k-1)
    centroids: pd.DataFrame       # cluster x analyte, standardized units
    sizes: pd.Series
    withinss: pd.Series
    tot_withinss: float
    totss: float
    betweenss: float
    iterations: int
    converged: bool
    n_init: int
    seed: Optional[int]
    standardized: pd.DataFrame
    groups: Optional[pd.Series] = None  # sample -> group label, for cross-tabulation
    dropped_columns: List[str] = field(default_factory=list)
    n_discarded_starts: int = 0         # starts that ended with an empty cluster
    silhouette: Optional[float] = None

    @property
    def n_clusters(self) -> int:
        return len(self.sizes)

    @property
    def between_ratio(self) -> float:
        """between_SS / total_SS."""
        return self.betweenss / self.totss if self.totss > 0 else 0.0

    def crosstab(self) -> Optional[pd.DataFrame]:
        """Cluster membership by group label."""
        if self.groups is None:
            return None
        return pd.crosstab(self.assignments, self.groups.loc[self.assignments.index])

    def summary_frame(self) -> pd.DataFrame:
        return pd.DataFrame({'size': self.sizes, 'withinss': self.withinss})


def to_wide(long: pd.DataFrame) -> pd.DataFrame:
    """Pivot the long table to one row per sample and one column per analyte."""
    duplicated = long.duplicated([SAMPLE, ANALYTE])
    if duplicated.any():
        example = long.loc[duplicated, [SAMPLE, ANALYTE]].iloc[0].tolist()
        raise ClusteringError(
            f"{int(duplicated.sum())} duplicate (sample, analyte) rows, e.g. {example}"
        )
    wide = long.pivot(index=SAMPLE, columns=ANALYTE, values=CONCENTRATION)
    wide = wide[long[ANALYTE].unique()]
    if wide.isna().any().any():
        raise ClusteringError("Wide table has missing (sample, analyte) combinations")
    wide.columns.name = None
    return wide


def standardize(
    wide: pd.DataFrame,
    drop_constant: bool = True
) -> Tuple[pd.DataFrame, List[str]]:
    """
    Z-score every column with the sample standard deviation (ddof=1).

    Constant columns have no defined z-score; they are dropped with a warning,
    or rejected when ``drop_constant`` is False.

    Returns:
        Tuple of (standardized DataFrame, dropped column names)
    """
    if len(wide) < 2:
        raise ClusteringError(f"At least 2 samples are required to standardize, got {len(wide)}")

    std = wide.std(ddof=1)
    constant = std.index[~(std > 0)].tolist()
    if constant:
        if not drop_constant:
            raise ClusteringError(f"Cannot standardize constant column(s): {constant[:10]}")
        logger.warning(f"Dropping {len(constant)} constant column(s) before clustering: "
                       f"{constant[:10]}")
        wide = wide.drop(columns=constant)
        std = std.drop(index=constant)
    if wide.shape[1] == 0:
        raise ClusteringError("No non-constant columns left to cluster")

    return (wide - wide.mean()) / std, constant


class KMeansClusterer:
    """
    Lloyd's k-means with random distinct-row initialization and restarts.

    Each start runs scikit-learn's ``KMeans`` from ``n_clusters`` distinct rows
    drawn with ``numpy.random.default_rng(seed)``. A start whose partition has
    an empty cluster is discarded; the best of the remaining starts is the one
    with the lowest total within-cluster sum of squares (first found wins ties).

    Usage:
        clusterer = KMeansClusterer(n_clusters=2, n_init=25, max_iter=10, seed=42)
        best = clusterer.fit(matrix)
    """

    def __init__(
        self,
        n_clusters: int = 2,
        n_init: int = 25,
        max_iter: int = 10,
        seed: Optional[int] = None
    ):
        if n_clusters < 1:
            raise ClusteringError(f"n_clusters must be >= 1, got {n_clusters}")
        if n_init < 1 or max_iter < 1:
            raise ClusteringError("n_init and max_iter must be >= 1")
        self.n_clusters = n_clusters
        self.n_init = n_init
        self.max_iter = max_iter
        self.seed = seed
        self.n_discarded_starts_ = 0

    def _single_run(self, X: np.ndarray, init: np.ndarray) -> KMeansRun:
        """One Lloyd run from the given initial centers."""
        kmeans = KMeans(n_clusters=len(init), init=init, n_init=1,
                        max_iter=self.max_iter, tol=0, algorithm="lloyd")
        labels = kmeans.fit_predict(X)
        logger.debug(f"k-means start: inertia={kmeans.inertia_:.4f}, "
                     f"{kmeans.n_iter_} iteration(s)")

        # Centroids are member means: within SS + between SS == total SS
        centers = kmeans.cluster_centers_.copy()
        for j in range(len(centers)):
            members = X[labels == j]
            if len(members):
                centers[j] = members.mean(axis=0)
        withinss = np.array([
            ((X[labels == j] - centers[j]) ** 2).sum() for j in range(len(centers))
        ])
        return KMeansRun(labels=labels, centers=centers, withinss=withinss,
                         iterations=int(kmeans.n_iter_),
                         converged=kmeans.n_iter_ < self.max_iter)

    def fit(self, X: np.ndarray) -> KMeansRun:
        """
        Run ``n_init`` starts and keep the lowest total within-cluster SS.

        Raises:
            ClusteringError: if X has fewer distinct rows than ``n_clusters``,
                or every start ended with an empty cluster.
        """
        X = np.asarray(X, dtype=float)
        if X.ndim != 2 or not np.all(np.isfinite(X)):
            raise ClusteringError("Input must be a finite 2-D matrix")
        distinct = np.unique(X, axis=0)
        if len(distinct) < self.n_clusters:
            raise ClusteringError(
                f"Cannot form {self.n_clusters} clusters from {len(distinct)} distinct row(s)"
            )

        rng = np.random.default_rng(self.seed)
        self.n_discarded_starts_ = 0
        best = None
        for start in range(self.n_init):
            init = distinct[rng.choice(len(distinct), size=self.n_clusters, replace=False)]
            run = self._single_run(X, init)

            empty = np.flatnonzero(run.sizes == 0)
            if len(empty):
                self.n_discarded_starts_ += 1
                logger.warning(f"k-means start {start + 1} left cluster(s) {empty.tolist()} "
                               f"empty; start discarded")
                continue
            if best is None or run.tot_withinss < best.tot_withinss:
                best = run

        if best is None:
            raise ClusteringError(
                f"All {self.n_init} k-means start(s) left a cluster empty"
            )
        if not best.converged:
            logger.warning(f"Best k-means run did not converge within {self.max_iter} iterations")
        return best


def cluster_samples(
    long: pd.DataFrame,
    n_clusters: int = 2,
    n_init: int = 25,
    max_iter: int = 10,
    seed: Optional[int] = None,
    drop_constant: bool = True
) -> ClusteringResult:
    """
    Cluster samples of a long-form table on their standardized analyte profiles.
    """
    wide = to_wide(long)
    scaled, dropped = standardize(wide, drop_constant=drop_constant)
    X = scaled.to_numpy()

    clusterer = KMeansClusterer(n_clusters=n_clusters, n_init=n_init,
                                max_iter=max_iter, seed=seed)
    best = clusterer.fit(X)

    totss = float(((X - X.mean(axis=0)) ** 2).sum())
    tot_withinss = best.tot_withinss
    cluster_ids = pd.Index(range(n_clusters), name='cluster')

    silhouette = None
    if 1 < n_clusters < len(X):
        silhouette = float(silhouette_score(X, best.labels))

    groups = None
    if GROUP in long.columns:
        groups = long.drop_duplicates(SAMPLE).set_index(SAMPLE)[GROUP]

    logger.info(f"k-means (k={n_clusters}, {n_init} starts, seed={seed}): "
                f"tot.withinss={tot_withinss:.3f}, totss={totss:.3f}")

    return ClusteringResult(
        assignments=pd.Series(best.labels, index=scaled.index, name='cluster'),
        centroids=pd.DataFrame(best.centers, index=cluster_ids, columns=scaled.columns),
        sizes=pd.Series(best.sizes, index=cluster_ids, name='size'),
        withinss=pd.Series(best.withinss, index=cluster_ids, name='withinss'),
        tot_withinss=tot_withinss,
        totss=totss,
        betweenss=totss - tot_withinss,
        iterations=best.iterations,
        converged=best.converged,
        n_init=n_init,
        seed=seed,
        standardized=scaled,
        groups=groups,
        dropped_columns=dropped,
        n_discarded_starts=clusterer.n_discarded_starts_,
        silhouette=silhouette,
    )


def project_pca(
    standardized: pd.DataFrame,
    n_components: int = 2
) -> Tuple[pd.DataFrame, np.ndarray]:
    """
    Project standardized samples onto their first principal components.

    Returns:
        Tuple of (scores DataFrame with PC1.. columns, explained variance ratios)
    """
    n_comp = min(n_components, *standardized.shape)
    pca = PCA(n_components=n_comp)
    scores = pca.fit_transform(standardized.to_numpy())
    columns = [f"PC{i + 1}" for i in range(n_comp)]
    return (pd.DataFrame(scores, index=standardized.index, columns=columns),
            pca.explained_variance_ratio_)
