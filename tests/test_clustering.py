"""
Tests for Threshold Clustering.
"""

import networkx as nx
import numpy as np
import pytest
from scipy import sparse
from sklearn.preprocessing import normalize

from semgraph.knowledge.clustering import ClusteringEngine, average_cluster_size
from semgraph.knowledge.graph_store import GraphNode, GraphSnapshot, GraphStore
from semgraph.knowledge.schemas import Entity, EntityType
from semgraph.knowledge.similarity_index import SimilarityIndex

THRESHOLDS = [0.0, 0.05, 0.1, 0.2, 0.3, 0.5, 0.7, 0.9, 0.99, 1.0]
COS30 = np.sqrt(3) / 2


def _snapshot_from_vectors(vectors: dict[str, list[float]]) -> GraphSnapshot:
    """A bare snapshot whose similarity index holds the given unit vectors."""
    ids = list(vectors)
    nodes = tuple(
        GraphNode(Entity(id=node_id, kind=EntityType.CONCEPT, name=node_id), position=i)
        for i, node_id in enumerate(ids)
    )
    matrix = sparse.csr_matrix(normalize(np.array([vectors[i] for i in ids])))
    return GraphSnapshot(
        generation=1,
        nodes=nodes,
        edges=(),
        graph=nx.MultiDiGraph(),
        features=None,
        index=SimilarityIndex(ids, matrix),
        _by_id={node.id: node for node in nodes},
    )


class TestClusteringEngine:
    """Tests for ClusteringEngine."""

    @pytest.mark.parametrize("threshold", THRESHOLDS)
    def test_every_node_in_exactly_one_cluster(self, corpus_store: GraphStore, threshold: float) -> None:
        """Test cluster coverage for any threshold in [0, 1]."""
        clusters = ClusteringEngine(corpus_store.snapshot).cluster(threshold)

        members = [m for group in clusters.values() for m in group]
        assert sorted(members) == sorted(corpus_store.snapshot.node_ids)
        assert len(members) == len(set(members))

    def test_near_impossible_threshold_gives_singletons(self, scenario_store: GraphStore) -> None:
        clusters = ClusteringEngine(scenario_store.snapshot).cluster(0.99)

        assert clusters == {"cluster-0": ["A"], "cluster-1": ["B"], "cluster-2": ["C"]}

    def test_identical_texts_cluster_together(self) -> None:
        """Test nodes with the same text share a cluster even at a high threshold."""
        store = GraphStore()
        store.rebuild(
            [
                {"id": "a", "kind": "concept", "name": "Breaker Block", "description": "failed order block"},
                {"id": "b", "kind": "concept", "name": "Kill Zone", "description": "session time window"},
                {"id": "c", "kind": "concept", "name": "Breaker Block", "description": "failed order block"},
            ],
            [],
        )

        clusters = ClusteringEngine(store.snapshot).cluster(0.9)

        assert clusters == {"cluster-0": ["a", "c"], "cluster-1": ["b"]}

    def test_threshold_is_clamped(self, corpus_store: GraphStore) -> None:
        """Test out-of-range thresholds behave like the nearest bound."""
        engine = ClusteringEngine(corpus_store.snapshot)

        assert engine.cluster(1.5) == engine.cluster(1.0)
        assert engine.cluster(-0.5) == engine.cluster(0.0)

    def test_monotonic_average_size(self, scenario_store: GraphStore) -> None:
        """Test raising the threshold never grows the average cluster."""
        engine = ClusteringEngine(scenario_store.snapshot)

        sizes = [average_cluster_size(engine.cluster(t)) for t in THRESHOLDS]

        assert all(later <= earlier for earlier, later in zip(sizes, sizes[1:]))

    def test_average_size_can_grow_with_threshold(self) -> None:
        """
        Test seed-greedy clustering is not monotone in general.

        Similarities: a-b 0.70, a-c = a-d 0.61, b-c = b-d 0.87, c-d 0.50.
        At 0.65 seed a captures b and leaves c, d as singletons (4/3 per
        cluster); at 0.75 a stays alone and b captures c and d (2 per cluster).
        """
        snapshot = _snapshot_from_vectors(
            {
                "a": [0.7 * COS30, 0.7 * 0.5, np.sqrt(1 - 0.49)],
                "b": [COS30, 0.5, 0.0],
                "c": [1.0, 0.0, 0.0],
                "d": [0.5, COS30, 0.0],
            }
        )
        engine = ClusteringEngine(snapshot)

        low = engine.cluster(0.65)
        high = engine.cluster(0.75)

        assert low == {"cluster-0": ["a", "b"], "cluster-1": ["c"], "cluster-2": ["d"]}
        assert high == {"cluster-0": ["a"], "cluster-1": ["b", "c", "d"]}
        assert average_cluster_size(high) > average_cluster_size(low)

    def test_deterministic(self, corpus_store: GraphStore) -> None:
        engine = ClusteringEngine(corpus_store.snapshot)

        assert engine.cluster(0.2) == engine.cluster(0.2)

    def test_seed_first_then_snapshot_order(self, corpus_store: GraphStore) -> None:
        """Test cluster ids and member order follow the canonical order."""
        clusters = ClusteringEngine(corpus_store.snapshot).cluster(0.0)
        order = corpus_store.snapshot.node_ids

        assert list(clusters) == [f"cluster-{i}" for i in range(len(clusters))]
        for members in clusters.values():
            assert [order.index(m) for m in members] == sorted(order.index(m) for m in members)
        assert clusters["cluster-0"][0] == order[0]

    def test_restricted_node_set(self, corpus_store: GraphStore) -> None:
        """Test clustering a subset ignores unknown ids."""
        clusters = ClusteringEngine(corpus_store.snapshot).cluster(1.0, node_ids=["turtle", "fvg", "ghost"])

        assert clusters == {"cluster-0": ["fvg"], "cluster-1": ["turtle"]}

    def test_empty_snapshot(self) -> None:
        assert ClusteringEngine(GraphStore().snapshot).cluster(0.5) == {}


class TestAverageClusterSize:
    """Tests for average_cluster_size."""

    def test_average(self) -> None:
        assert average_cluster_size({"cluster-0": ["a", "b", "c"], "cluster-1": ["d"]}) == 2.0

    def test_empty(self) -> None:
        assert average_cluster_size({}) == 0.0
