"""
Database connection and corpus operations.
"""

import hashlib
from pathlib import Path
from typing import List, Optional
from sqlalchemy import create_engine, event, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker, Session
from .models import Base, Page, Chunk


FTS_TABLE = 'chunks_fts'

FTS_DDL = f"""
CREATE VIRTUAL TABLE IF NOT EXISTS {FTS_TABLE} USING fts5(
  content,
  url UNINDEXED,
  url_hash UNINDEXED,
  chunk_id UNINDEXED,
  published_at UNINDEXED,
  tokenize='unicode61'
)
"""


def sha256_hex(value: str) -> str:
    """SHA-256 hex digest of a UTF-8 string."""
    return hashlib.sha256(value.encode('utf-8')).hexdigest()


class Database:
    """Database manager for the trace archive."""

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file (defaults to DATABASE_PATH)
        """
        if db_path is None:
            from settings import DATABASE_PATH
            db_path = DATABASE_PATH

        # Ensure data directory exists
        db_file = Path(db_path)
        db_file.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = db_path

        # Workers share the file across threads; sqlite waits up to 30s on locks
        self.engine = create_engine(
            f'sqlite:///{db_path}',
            echo=False,
            connect_args={'timeout': 30, 'check_same_thread': False}
        )
        event.listen(self.engine, 'connect', _set_sqlite_pragmas)
        self.SessionLocal = sessionmaker(bind=self.engine)

        # Create tables if they don't exist
        Base.metadata.create_all(self.engine)
        self.fts_available = self._create_fts_table()

    def _create_fts_table(self) -> bool:
        """Create the FTS5 table; False when this SQLite build has no FTS5."""
        try:
            with self.engine.begin() as conn:
                conn.execute(text(FTS_DDL))
            return True
        except OperationalError as e:
            import sys
            print(f"Warning: full-text index unavailable, using substring scan: {e}", file=sys.stderr)
            return False

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    def dispose(self):
        """Close pooled connections."""
        self.engine.dispose()

    def save_page(self, session: Session, url: str, title: str = None, published_at: str = None) -> Page:
        """
        Get or create a page row and refresh its metadata.

        Args:
            session: Database session
            url: Canonical page URL
            title: Page title (optional)
            published_at: Raw publication timestamp (optional)

        Returns:
            Page object
        """
        page = session.query(Page).filter_by(url=url).first()
        if not page:
            page = Page(url=url, url_hash=sha256_hex(url))
            session.add(page)

        if title is not None:
            page.title = title
        if published_at is not None:
            page.published_at = published_at
        page.status = 'stored'
        page.error = None
        session.flush()
        return page

    def replace_chunks(self, session: Session, page: Page, chunks: List[str]) -> int:
        """
        Replace all chunks (and their full-text rows) of a page.

        Args:
            session: Database session
            page: Page the chunks belong to
            chunks: Ordered chunk texts

        Returns:
            Number of chunks written
        """
        session.query(Chunk).filter_by(url_hash=page.url_hash).delete(synchronize_session=False)
        if self.fts_available:
            session.execute(
                text(f"DELETE FROM {FTS_TABLE} WHERE url_hash = :url_hash"),
                {'url_hash': page.url_hash}
            )

        for index, content in enumerate(chunks):
            chunk_id = f"{page.url_hash}:{index}"
            session.add(Chunk(
                chunk_id=chunk_id,
                url_hash=page.url_hash,
                chunk_index=index,
                content=content,
                content_sha256=sha256_hex(content)
            ))
            if self.fts_available:
                session.execute(
                    text(
                        f"INSERT INTO {FTS_TABLE} (content, url, url_hash, chunk_id, published_at) "
                        "VALUES (:content, :url, :url_hash, :chunk_id, :published_at)"
                    ),
                    {
                        'content': content,
                        'url': page.url,
                        'url_hash': page.url_hash,
                        'chunk_id': chunk_id,
                        'published_at': page.published_at,
                    }
                )

        page.content_sha256 = sha256_hex("\n\n".join(chunks))
        session.flush()
        return len(chunks)

    def get_page_by_url(self, session: Session, url: str) -> Optional[Page]:
        """Get page by URL."""
        return session.query(Page).filter_by(url=url).first()

    def get_chunk(self, session: Session, chunk_id: str) -> Optional[Chunk]:
        """Get chunk by its stable id."""
        return session.query(Chunk).filter_by(chunk_id=chunk_id).first()


def _set_sqlite_pragmas(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()
