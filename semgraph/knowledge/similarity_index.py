"""
Similarity Index - Cosine Nearest Neighbors over Feature Vectors.

Ranks any subset of snapshot nodes against a query vector. Ordering is fully
deterministic: descending score, ties broken by snapshot position.
"""

from collections.abc import Iterable, Sequence

import numpy as np
from scipy import sparse

from semgraph.utils.logger import get_logger

logger = get_logger(__name__)


SELF_SIMILARITY = 1.0


class SimilarityIndex:
    """
    Cosine similarity search over one snapshot's feature matrix.

    Rows are L2-normalised, so cosine similarity is a sparse dot product.
    Zero vectors score 0.0 against everything; a node compared with itself
    scores 1.0 by convention.

    Usage:
        index = SimilarityIndex(node_ids, space.matrix)
        hits = index.search(space.embed("liquidity"), k=5)
        similar = index.top_k("fvg", k=5)
    """

    def __init__(
        self,
        node_ids: Sequence[str],
        matrix: sparse.csr_matrix | None,
    ) -> None:
        """
        Initialize the index.

        Args:
            node_ids: Node ids in snapshot order (row i belongs to node_ids[i])
            matrix: Feature matrix, or None for an empty snapshot
        """
        self._ids = tuple(node_ids)
        self._positions = {node_id: i for i, node_id in enumerate(self._ids)}
        self._matrix = matrix

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._positions

    def position(self, node_id: str) -> int | None:
        return self._positions.get(node_id)

    def vector(self, node_id: str) -> sparse.csr_matrix | None:
        """The feature vector of a node, or None if unknown."""
        pos = self._positions.get(node_id)
        if pos is None or self._matrix is None:
            return None
        return self._matrix[pos]

    def similarity(self, node_a: str, node_b: str) -> float:
        """Cosine similarity between two nodes (0.0 if either is unknown)."""
        if node_a == node_b and node_a in self._positions:
            return SELF_SIMILARITY
        scores = self.similarities_from(node_a, [node_b])
        return float(scores[0]) if scores.size else 0.0

    def similarities_from(self, seed_id: str, candidate_ids: Sequence[str]) -> np.ndarray:
        """
        Similarity of a seed node to each candidate, in candidate order.

        Unknown candidates score 0.0; the seed itself scores 1.0.
        """
        result = np.zeros(len(candidate_ids), dtype=np.float64)
        seed = self.vector(seed_id)
        if seed is None:
            return result

        known = [(i, self._positions[c]) for i, c in enumerate(candidate_ids) if c in self._positions]
        if not known:
            return result

        slots = np.fromiter((i for i, _ in known), dtype=np.intp, count=len(known))
        positions = np.fromiter((p for _, p in known), dtype=np.intp, count=len(known))
        result[slots] = self._scores(seed, positions)

        for i, candidate in enumerate(candidate_ids):
            if candidate == seed_id:
                result[i] = SELF_SIMILARITY
        return result

    def search(
        self,
        query_vector: sparse.spmatrix | None,
        candidate_ids: Iterable[str] | None = None,
        k: int = 10,
    ) -> list[tuple[str, float]]:
        """
        Rank candidates by cosine similarity to a query vector.

        Args:
            query_vector: 1 x d vector produced by the same feature space
            candidate_ids: Restrict ranking to these ids (None = all nodes)
            k: Maximum number of results

        Returns:
            List of (node_id, score), best first, at most k entries
        """
        if k <= 0 or query_vector is None or self._matrix is None:
            return []

        positions = self._candidate_positions(candidate_ids)
        if positions.size == 0:
            return []

        scores = self._scores(query_vector, positions)
        return self._rank(positions, scores, k)

    def top_k(
        self,
        node_id: str,
        k: int = 10,
        exclude_self: bool = True,
        candidate_ids: Iterable[str] | None = None,
    ) -> list[tuple[str, float]]:
        """
        Nearest neighbors of an existing node, using its own vector as query.

        Args:
            node_id: Seed node
            k: Maximum number of results
            exclude_self: Drop the seed from the results
            candidate_ids: Restrict ranking to these ids (None = all nodes)

        Returns:
            List of (node_id, score), best first; empty for unknown seeds
        """
        seed_pos = self._positions.get(node_id)
        if k <= 0 or seed_pos is None or self._matrix is None:
            return []

        positions = self._candidate_positions(candidate_ids)
        if exclude_self:
            positions = positions[positions != seed_pos]
        if positions.size == 0:
            return []

        scores = self._scores(self._matrix[seed_pos], positions)
        scores[positions == seed_pos] = SELF_SIMILARITY
        return self._rank(positions, scores, k)

    def _candidate_positions(self, candidate_ids: Iterable[str] | None) -> np.ndarray:
        if candidate_ids is None:
            return np.arange(len(self._ids), dtype=np.intp)
        found = {self._positions[c] for c in candidate_ids if c in self._positions}
        return np.array(sorted(found), dtype=np.intp)

    def _scores(self, query_vector: sparse.spmatrix, positions: np.ndarray) -> np.ndarray:
        assert self._matrix is not None
        rows = self._matrix[positions]
        scores = np.asarray((rows @ query_vector.T).todense()).ravel()
        return np.clip(scores, -1.0, 1.0)

    def _rank(self, positions: np.ndarray, scores: np.ndarray, k: int) -> list[tuple[str, float]]:
        # positions are ascending, so a stable sort keeps snapshot order on ties
        order = np.argsort(-scores, kind="stable")[:k]
        results = [(self._ids[positions[i]], float(scores[i])) for i in order]
        logger.debug(f"Ranked {positions.size} candidates, returning {len(results)}")
        return results
