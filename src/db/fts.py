"""
Lexical index over chunk content backed by SQLite FTS5.

When the SQLite build has no FTS5 support, queries raise and callers fall
back to the substring scan, which only needs the plain chunks table.
"""

from typing import Dict, List, Optional
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from .database import Database, FTS_TABLE


class LexicalIndexUnavailable(Exception):
    """Raised when the full-text index cannot serve a query."""


class LexicalIndex:
    """Boolean/term queries over chunk content."""

    def __init__(self, database: Database):
        self.database = database

    @property
    def available(self) -> bool:
        return self.database.fts_available

    def match(self, query: str, limit: int) -> List[Dict]:
        """
        Run an FTS5 MATCH query.

        Args:
            query: FTS5 boolean expression
            limit: Maximum rows

        Returns:
            List of row dicts ordered by relevance; 'relevance' is -bm25 so
            larger means more relevant

        Raises:
            LexicalIndexUnavailable: If FTS5 is missing or rejects the query
        """
        if not self.available:
            raise LexicalIndexUnavailable("full-text index not created")

        session = self.database.get_session()
        try:
            rows = session.execute(
                text(
                    f"""
                    SELECT {FTS_TABLE}.chunk_id AS chunk_id,
                           c.url_hash AS url_hash,
                           c.chunk_index AS chunk_index,
                           p.url AS url,
                           p.published_at AS published_at,
                           c.content AS content,
                           bm25({FTS_TABLE}) AS score
                    FROM {FTS_TABLE}
                    JOIN chunks c ON c.chunk_id = {FTS_TABLE}.chunk_id
                    JOIN pages p ON p.url_hash = c.url_hash
                    WHERE {FTS_TABLE} MATCH :query
                    ORDER BY score, c.id
                    LIMIT :limit
                    """
                ),
                {'query': query, 'limit': limit}
            ).mappings().all()
        except OperationalError as e:
            raise LexicalIndexUnavailable(str(e)) from e
        finally:
            session.close()

        results = []
        for row in rows:
            item = dict(row)
            score = item.pop('score')
            item['relevance'] = -score if score is not None else None
            results.append(item)
        return results

    def scan(self, terms: List[str], limit: int) -> List[Dict]:
        """
        Substring-containment scan over raw chunk text.

        Args:
            terms: Strings of which at least one must occur in the content
            limit: Maximum rows

        Returns:
            List of row dicts in insertion order
        """
        terms = [t for t in terms if t]
        if not terms:
            return []

        clauses = " OR ".join(f"c.content LIKE :term{i}" for i in range(len(terms)))
        params = {f"term{i}": f"%{t}%" for i, t in enumerate(terms)}
        params['limit'] = limit

        session = self.database.get_session()
        try:
            rows = session.execute(
                text(
                    f"""
                    SELECT c.chunk_id AS chunk_id,
                           c.url_hash AS url_hash,
                           c.chunk_index AS chunk_index,
                           p.url AS url,
                           p.published_at AS published_at,
                           c.content AS content
                    FROM chunks c
                    JOIN pages p ON p.url_hash = c.url_hash
                    WHERE {clauses}
                    ORDER BY c.id
                    LIMIT :limit
                    """
                ),
                params
            ).mappings().all()
            return [dict(row) for row in rows]
        finally:
            session.close()

    def search(self, q: str, limit: int = 20) -> List[Dict]:
        """
        Plain keyword search for operators.

        Returns url, url_hash, title and a highlighted snippet per hit, or a
        prefix of the chunk when the full-text index is unavailable.
        """
        session = self.database.get_session()
        try:
            if self.available:
                try:
                    rows = session.execute(
                        text(
                            f"""
                            SELECT {FTS_TABLE}.url AS url,
                                   {FTS_TABLE}.url_hash AS url_hash,
                                   COALESCE(p.title, '') AS title,
                                   snippet({FTS_TABLE}, 0, '[', ']', ' ... ', 24) AS snippet
                            FROM {FTS_TABLE}
                            LEFT JOIN pages p ON p.url_hash = {FTS_TABLE}.url_hash
                            WHERE {FTS_TABLE} MATCH :q
                            ORDER BY bm25({FTS_TABLE})
                            LIMIT :limit
                            """
                        ),
                        {'q': q, 'limit': limit}
                    ).mappings().all()
                    return [dict(row) for row in rows]
                except OperationalError:
                    # Malformed MATCH syntax; treat the query as a literal
                    session.rollback()

            rows = session.execute(
                text(
                    """
                    SELECT p.url AS url,
                           p.url_hash AS url_hash,
                           COALESCE(p.title, '') AS title,
                           substr(c.content, 1, 220) AS snippet
                    FROM chunks c
                    JOIN pages p ON p.url_hash = c.url_hash
                    WHERE c.content LIKE :like
                    ORDER BY c.id
                    LIMIT :limit
                    """
                ),
                {'like': f"%{q}%", 'limit': limit}
            ).mappings().all()
            return [dict(row) for row in rows]
        finally:
            session.close()


def map_relevance(relevance: Optional[float], floor: float = 0.1, ceiling: float = 5.0) -> float:
    """
    Map a raw relevance (-bm25) into [floor, ceiling).

    Monotone non-decreasing: stronger matches never score lower. Weak or
    missing relevance lands on the floor so every hit stays rankable.

    Examples:
        >>> map_relevance(None)
        0.1
        >>> map_relevance(1.0)
        2.5
    """
    if relevance is None or relevance != relevance or relevance <= 0:
        return floor
    return max(floor, ceiling * relevance / (relevance + 1.0))
