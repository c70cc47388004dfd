"""
Hybrid knowledge retriever.

Strategy:
1. Deterministic substring search over the knowledge base
2. Fallback to embeddings if nothing was found (optional, off by default)
3. Returns knowledge entries, best first
"""

import logging
from typing import List, Tuple

from .base import KnowledgeBase, KnowledgeEntry, SEARCH_LIMIT

logger = logging.getLogger(__name__)

EMBEDDING_MODEL = "sentence-transformers/all-MiniLM-L6-v2"
SEMANTIC_THRESHOLD = 0.4


class KnowledgeRetriever:
    """Keyword search with optional embedding fallback"""

    def __init__(self, kb: KnowledgeBase, use_embeddings: bool = False, model_name: str = EMBEDDING_MODEL):
        self.kb = kb
        self.use_embeddings = use_embeddings
        self.model_name = model_name
        self.embedder = None
        self.np = None
        self._index: List[Tuple[KnowledgeEntry, object]] = []

        if use_embeddings:
            self._init_embeddings()

    def _init_embeddings(self):
        """Load the embedding model and index every entry (optional)"""
        try:
            from sentence_transformers import SentenceTransformer
            import numpy as np
        except ImportError:
            logger.warning("sentence-transformers not installed, using keyword search only")
            self.use_embeddings = False
            return

        self.np = np
        self.embedder = SentenceTransformer(self.model_name)

        entries = list(self.kb.entries.values())
        texts = [f"{e.question}\n{e.answer}" for e in entries]
        embeddings = self.embedder.encode(texts)
        self._index = list(zip(entries, embeddings))

        logger.info("Indexed %d knowledge entries with embeddings", len(texts))

    def search(self, query: str) -> List[KnowledgeEntry]:
        """
        Find entries for a free-text query.

        Args:
            query: Raw user message

        Returns:
            Up to 5 entries, best first
        """
        results = self.kb.search(query)
        if results or not self.use_embeddings:
            return results

        return [entry for _, entry in self._semantic_search(query)]

    def _semantic_search(self, query: str) -> List[Tuple[float, KnowledgeEntry]]:
        """Cosine similarity against the indexed entries"""
        if not self.embedder or not self.np:
            return []

        query_emb = self.embedder.encode(query)
        results = []

        for entry, entry_emb in self._index:
            score = self.np.dot(query_emb, entry_emb) / (
                self.np.linalg.norm(query_emb) * self.np.linalg.norm(entry_emb)
            )
            if score > SEMANTIC_THRESHOLD:
                results.append((float(score), entry))

        return sorted(results, key=lambda x: x[0], reverse=True)[:SEARCH_LIMIT]
