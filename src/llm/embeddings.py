"""
Sentence embeddings for vector recall and vector backfill.
"""

from typing import List, Optional
from sklearn.preprocessing import normalize
from settings import EMBEDDING_MODEL


class SentenceTransformerEmbedder:
    """Text -> L2-normalized vector using a sentence-transformers model."""

    def __init__(self, model_name: Optional[str] = None):
        self.model_name = model_name or EMBEDDING_MODEL
        self._model = None

    def get_model(self):
        """Get or initialize the sentence transformer model."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            print(f"Loading sentence embedding model: {self.model_name}...")
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed(self, text: str) -> List[float]:
        """
        Embed a single text.

        Returns:
            List of floats with unit L2 norm
        """
        embs = self.get_model().encode([text], show_progress_bar=False, convert_to_numpy=True)
        embs = normalize(embs, norm='l2')
        return embs[0].tolist()
