"""
Local vector index: embeddings stored as JSON rows, queried by cosine
similarity.
"""

from datetime import datetime
from typing import Any, Dict, List
import numpy as np
from sklearn.metrics.pairwise import cosine_similarity
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from .database import Database
from .models import ChunkVector


class VectorIndex:
    """k-nearest-neighbour queries over chunk embeddings."""

    def __init__(self, database: Database):
        self.database = database

    def query(self, vector: List[float], top_k: int = 300, return_metadata: bool = True) -> List[Dict[str, Any]]:
        """
        Find the top_k stored vectors closest to the query vector.

        Args:
            vector: Query embedding
            top_k: Number of matches to return
            return_metadata: Include stored metadata in each match

        Returns:
            List of {'id', 'score', 'metadata'} sorted by descending similarity
        """
        session = self.database.get_session()
        try:
            rows = session.query(ChunkVector).filter(ChunkVector.dims == len(vector)).all()
        finally:
            session.close()

        if not rows:
            return []

        matrix = np.array([row.values for row in rows], dtype=float)
        scores = cosine_similarity(np.array([vector], dtype=float), matrix)[0]

        # Stable sort keeps insertion order among equal scores
        order = np.argsort(-scores, kind='stable')[:top_k]
        return [
            {
                'id': rows[i].vector_id,
                'score': float(scores[i]),
                'metadata': dict(rows[i].meta or {}) if return_metadata else None,
            }
            for i in order
        ]

    def upsert(self, vectors: List[Dict[str, Any]]) -> int:
        """
        Insert or replace vectors.

        Args:
            vectors: List of {'id', 'values', 'metadata'}

        Returns:
            Number of vectors written
        """
        if not vectors:
            return 0

        session = self.database.get_session()
        try:
            for item in vectors:
                values = [float(v) for v in item['values']]
                stmt = sqlite_insert(ChunkVector).values(
                    vector_id=item['id'],
                    dims=len(values),
                    values=values,
                    meta=item.get('metadata'),
                    updated_at=datetime.utcnow()
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=['vector_id'],
                    set_={
                        'dims': stmt.excluded.dims,
                        'values': stmt.excluded['values'],
                        'meta': stmt.excluded.meta,
                        'updated_at': stmt.excluded.updated_at,
                    }
                )
                session.execute(stmt)
            session.commit()
            return len(vectors)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def count(self) -> int:
        session = self.database.get_session()
        try:
            return session.query(ChunkVector).count()
        finally:
            session.close()
