"""
Clustering Engine - Seed-Greedy Similarity Grouping.

Groups nodes whose similarity to a cluster seed exceeds a threshold. The
heuristic is single-pass and deterministic for a given snapshot: seeds are
taken in canonical snapshot order (first occurrence in the input entities).
"""

from collections.abc import Iterable

import numpy as np

from semgraph.knowledge.graph_store import GraphSnapshot
from semgraph.utils.logger import get_logger

logger = get_logger(__name__)


CLUSTER_PREFIX = "cluster-"


class ClusteringEngine:
    """
    Threshold clustering over one snapshot's similarity index.

    For each unassigned node (in snapshot order) a new cluster is started and
    every other unassigned node whose similarity to that seed is strictly
    greater than the threshold joins it. Every node ends up in exactly one
    cluster; a node similar to nothing forms a singleton.

    Usage:
        engine = ClusteringEngine(store.snapshot)
        clusters = engine.cluster(0.65)
        # {"cluster-0": ["fvg", "imbalance"], "cluster-1": ["turtle-soup"], ...}
    """

    def __init__(self, snapshot: GraphSnapshot) -> None:
        """
        Initialize the clustering engine.

        Args:
            snapshot: Graph generation to cluster
        """
        self.snapshot = snapshot

    def cluster(
        self,
        threshold: float,
        node_ids: Iterable[str] | None = None,
    ) -> dict[str, list[str]]:
        """
        Group nodes by similarity to a seed.

        Args:
            threshold: Similarity a node must exceed to join a seed's cluster.
                Values outside [0, 1] are clamped.
            node_ids: Restrict clustering to these nodes (None = all nodes).
                Unknown ids are ignored.

        Returns:
            Mapping of "cluster-<n>" to member ids (seed first, then snapshot order)
        """
        threshold = _clamp_threshold(threshold)
        members = self._members(node_ids)
        if not members:
            return {}

        index = self.snapshot.index
        assigned = np.zeros(len(members), dtype=bool)
        clusters: dict[str, list[str]] = {}

        for i, seed in enumerate(members):
            if assigned[i]:
                continue
            assigned[i] = True
            group = [seed]

            rest = np.flatnonzero(~assigned)
            if rest.size:
                candidates = [members[j] for j in rest]
                scores = index.similarities_from(seed, candidates)
                joined = rest[scores > threshold]
                assigned[joined] = True
                group.extend(members[j] for j in joined)

            clusters[f"{CLUSTER_PREFIX}{len(clusters)}"] = group

        logger.info(
            f"Clustered {len(members)} nodes into {len(clusters)} clusters "
            f"(threshold={threshold:.2f}, generation={self.snapshot.generation})"
        )
        return clusters

    def _members(self, node_ids: Iterable[str] | None) -> list[str]:
        if node_ids is None:
            return self.snapshot.node_ids
        wanted = {nid for nid in node_ids if nid in self.snapshot}
        return [nid for nid in self.snapshot.node_ids if nid in wanted]


def _clamp_threshold(threshold: float) -> float:
    if 0.0 <= threshold <= 1.0:
        return float(threshold)
    clamped = min(max(float(threshold), 0.0), 1.0)
    logger.warning(f"Clustering threshold {threshold} outside [0, 1], using {clamped}")
    return clamped


def average_cluster_size(clusters: dict[str, list[str]]) -> float:
    """Mean number of members per cluster (0.0 for no clusters)."""
    if not clusters:
        return 0.0
    return sum(len(m) for m in clusters.values()) / len(clusters)
