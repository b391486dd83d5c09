"""
Feature Extractor - Hashed N-gram TF-IDF Vectors.

Turns an entity's text (name, description, tags, labels, a window of content)
into a sparse, L2-normalised feature vector. Runs fully offline: features are
word 1-2 grams plus character 3-grams hashed with MurmurHash3, weighted by
inverse document frequency over the current snapshot's corpus.
"""

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from scipy import sparse
from sklearn.feature_extraction.text import HashingVectorizer, TfidfTransformer
from sklearn.preprocessing import normalize

from semgraph.knowledge.schemas import Entity
from semgraph.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class FeatureConfig:
    """Configuration for feature extraction."""

    hash_bits: int = 18  # each block has 2**hash_bits columns
    content_window: int = 600  # characters of content folded into node text
    word_weight: float = 0.6  # share of the norm given to word n-grams

    @classmethod
    def from_settings(cls, settings) -> "FeatureConfig":  # type: ignore[no-untyped-def]
        return cls(
            hash_bits=settings.feature_hash_bits,
            content_window=settings.feature_content_window,
            word_weight=settings.feature_word_weight,
        )

    @property
    def n_features(self) -> int:
        return 2**self.hash_bits


class FeatureExtractor:
    """
    Builds fitted feature spaces from a snapshot corpus.

    The hashing step is stateless; only the IDF weights depend on the corpus,
    so every rebuild produces a fresh FeatureSpace and old ones stay valid for
    readers still holding them.

    Usage:
        extractor = FeatureExtractor()
        space = extractor.fit([extractor.entity_text(e) for e in entities])
        query = space.embed("imbalance in price")
    """

    def __init__(self, config: FeatureConfig | None = None) -> None:
        """
        Initialize the extractor.

        Args:
            config: Feature configuration
        """
        self.config = config or FeatureConfig()

        self._word_vectorizer = HashingVectorizer(
            analyzer="word",
            ngram_range=(1, 2),
            stop_words="english",
            n_features=self.config.n_features,
            alternate_sign=False,
            norm=None,
        )
        self._char_vectorizer = HashingVectorizer(
            analyzer="char_wb",
            ngram_range=(3, 3),
            n_features=self.config.n_features,
            alternate_sign=False,
            norm=None,
        )

    def entity_text(self, entity: Entity) -> str:
        """Concatenate the text fields that describe an entity."""
        parts = [entity.name, entity.description, " ".join(entity.tags)]
        parts.append(entity.kind.value.replace("_", " "))
        if entity.domain:
            parts.append(entity.domain.replace("_", " "))
        if entity.content and self.config.content_window > 0:
            parts.append(entity.content[: self.config.content_window])
        return " ".join(p for p in parts if p).strip()

    def fit(self, texts: Sequence[str]) -> "FeatureSpace | None":
        """
        Fit IDF statistics on a corpus and vectorize it.

        Args:
            texts: One text per node, in snapshot order

        Returns:
            FeatureSpace, or None for an empty corpus
        """
        if not texts:
            return None

        docs = list(texts)
        word_counts = self._word_vectorizer.fit_transform(docs)
        char_counts = self._char_vectorizer.fit_transform(docs)

        word_idf = TfidfTransformer(sublinear_tf=True).fit(word_counts)
        char_idf = TfidfTransformer(sublinear_tf=True).fit(char_counts)

        matrix = self._blend(word_idf.transform(word_counts), char_idf.transform(char_counts))

        logger.debug(f"Fitted feature space: {matrix.shape[0]} docs, {matrix.nnz} non-zeros")
        return FeatureSpace(
            matrix=matrix,
            extractor=self,
            word_idf=word_idf,
            char_idf=char_idf,
        )

    def vectorize(
        self,
        texts: Sequence[str],
        word_idf: TfidfTransformer,
        char_idf: TfidfTransformer,
    ) -> sparse.csr_matrix:
        docs = list(texts)
        word = word_idf.transform(self._word_vectorizer.transform(docs))
        char = char_idf.transform(self._char_vectorizer.transform(docs))
        return self._blend(word, char)

    def _blend(self, word: sparse.spmatrix, char: sparse.spmatrix) -> sparse.csr_matrix:
        # Blocks arrive L2-normalised; zero rows stay zero through normalize()
        w = self.config.word_weight
        combined = sparse.hstack(
            [word * np.sqrt(w), char * np.sqrt(1.0 - w)],
            format="csr",
        )
        combined.eliminate_zeros()
        return normalize(combined, norm="l2", copy=False)


@dataclass(frozen=True, eq=False)
class FeatureSpace:
    """
    Feature vectors of one snapshot generation plus the IDF used to make them.

    Row i of ``matrix`` is the vector of the node at snapshot position i.
    """

    matrix: sparse.csr_matrix
    extractor: FeatureExtractor
    word_idf: TfidfTransformer
    char_idf: TfidfTransformer

    @property
    def size(self) -> int:
        return self.matrix.shape[0]

    def embed(self, text: str) -> sparse.csr_matrix:
        """Vectorize free text against this generation's IDF (1 x d)."""
        return self.extractor.vectorize([text or ""], self.word_idf, self.char_idf)

    def row(self, position: int) -> sparse.csr_matrix:
        return self.matrix[position]

    def is_zero(self, position: int) -> bool:
        return self.matrix.indptr[position] == self.matrix.indptr[position + 1]

    def sparse_features(self, position: int) -> dict[int, float]:
        """A node's vector as {hashed feature index: weight}."""
        start, end = self.matrix.indptr[position], self.matrix.indptr[position + 1]
        return {
            int(col): float(val)
            for col, val in zip(self.matrix.indices[start:end], self.matrix.data[start:end])
        }
