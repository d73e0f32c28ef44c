"""Durable registry of knowledge bases and their file memberships."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from .config import Settings
from .schemas import FileRecord, KnowledgeBase, PendingCleanup
from .utils import new_id, remove_file_quietly, utc_now

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS knowledge_bases (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS files (
        id TEXT PRIMARY KEY,
        kb_id TEXT NOT NULL,
        filename TEXT NOT NULL,
        storage_path TEXT NOT NULL,
        type TEXT NOT NULL,
        uploaded_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_files_kb_id ON files (kb_id)",
    """
    CREATE TABLE IF NOT EXISTS pending_cleanups (
        collection_id TEXT NOT NULL,
        source_file_id TEXT NOT NULL DEFAULT '',
        attempts INTEGER NOT NULL DEFAULT 1,
        last_error TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL,
        PRIMARY KEY (collection_id, source_file_id)
    )
    """,
)


class MetadataRegistry:
    """
    SQLite-backed registry.

    Every mutating operation runs in its own ``BEGIN IMMEDIATE`` transaction,
    so concurrent writers serialize instead of overwriting each other.
    The registry does not enforce ``files.kb_id`` on read; callers verify the
    knowledge base before :meth:`add_file`.
    """

    def __init__(
        self,
        db_path: Union[str, Path],
        seed: Optional[KnowledgeBase] = None,
    ):
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema(seed)

    @classmethod
    def from_settings(cls, settings: Settings) -> "MetadataRegistry":
        seed = None
        if settings.seed_default_kb:
            seed = KnowledgeBase(
                id=settings.default_kb_id,
                name=settings.default_kb_name,
                description=settings.default_kb_description,
                created_at=utc_now(),
            )
        return cls(settings.registry_path, seed=seed)

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, isolation_level=None, timeout=30.0)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _read(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def _ensure_schema(self, seed: Optional[KnowledgeBase]) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    version INTEGER NOT NULL
                )
                """
            )
            for statement in _SCHEMA:
                conn.execute(statement)
            created = conn.execute(
                "INSERT OR IGNORE INTO schema_version (id, version) VALUES (1, ?)",
                (SCHEMA_VERSION,),
            ).rowcount
            # Seed only on first initialization, never after the seed was deleted.
            if created and seed is not None:
                self._insert_kb(conn, seed)
                logger.info("Initialized registry %s with knowledge base %s", self._db_path, seed.id)

    @staticmethod
    def _insert_kb(conn: sqlite3.Connection, kb: KnowledgeBase, ignore: bool = False) -> int:
        verb = "INSERT OR IGNORE" if ignore else "INSERT"
        return conn.execute(
            f"{verb} INTO knowledge_bases (id, name, description, created_at) VALUES (?, ?, ?, ?)",
            (kb.id, kb.name, kb.description, kb.created_at),
        ).rowcount

    @staticmethod
    def _insert_file(conn: sqlite3.Connection, record: FileRecord, ignore: bool = False) -> int:
        verb = "INSERT OR IGNORE" if ignore else "INSERT"
        return conn.execute(
            f"""
            {verb} INTO files (id, kb_id, filename, storage_path, type, uploaded_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.kb_id,
                record.filename,
                record.storage_path,
                record.type,
                record.uploaded_at,
            ),
        ).rowcount

    @staticmethod
    def _row_to_kb(row: sqlite3.Row) -> KnowledgeBase:
        return KnowledgeBase(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_file(row: sqlite3.Row) -> FileRecord:
        return FileRecord(
            id=row["id"],
            kb_id=row["kb_id"],
            filename=row["filename"],
            storage_path=row["storage_path"],
            type=row["type"],
            uploaded_at=row["uploaded_at"],
        )

    # Knowledge bases

    def list_knowledge_bases(self) -> List[KnowledgeBase]:
        """All knowledge bases in creation order."""
        with self._read() as conn:
            rows = conn.execute("SELECT * FROM knowledge_bases ORDER BY rowid").fetchall()
        return [self._row_to_kb(row) for row in rows]

    def get_knowledge_base(self, kb_id: str) -> Optional[KnowledgeBase]:
        """Return the knowledge base with ``kb_id``, or ``None``."""
        with self._read() as conn:
            row = conn.execute("SELECT * FROM knowledge_bases WHERE id = ?", (kb_id,)).fetchone()
        return self._row_to_kb(row) if row else None

    def create_knowledge_base(self, name: str, description: str = "") -> KnowledgeBase:
        """Create a knowledge base with a fresh id. Names need not be unique."""
        kb = KnowledgeBase(
            id=new_id(),
            name=name,
            description=description or "",
            created_at=utc_now(),
        )
        with self._transaction() as conn:
            self._insert_kb(conn, kb)
        logger.info("Created knowledge base %s (%s)", kb.id, kb.name)
        return kb

    def delete_knowledge_base(self, kb_id: str) -> List[FileRecord]:
        """
        Remove a knowledge base and every file record that references it.

        Staged raw files are unlinked after the commit on a best-effort basis.

        Returns:
            The removed file records.
        """
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM files WHERE kb_id = ? ORDER BY rowid", (kb_id,)
            ).fetchall()
            removed = [self._row_to_file(row) for row in rows]
            conn.execute("DELETE FROM files WHERE kb_id = ?", (kb_id,))
            conn.execute("DELETE FROM knowledge_bases WHERE id = ?", (kb_id,))

        logger.info("Deleted knowledge base %s with %d file record(s)", kb_id, len(removed))
        for record in removed:
            remove_file_quietly(record.storage_path)
        return removed

    # Files

    def list_files(self, kb_id: str) -> List[FileRecord]:
        """File records of one knowledge base in upload order; empty for an unknown id."""
        with self._read() as conn:
            rows = conn.execute(
                "SELECT * FROM files WHERE kb_id = ? ORDER BY rowid", (kb_id,)
            ).fetchall()
        return [self._row_to_file(row) for row in rows]

    def get_file(self, kb_id: str, file_id: str) -> Optional[FileRecord]:
        """Return the file record matching both ids, or ``None``."""
        with self._read() as conn:
            row = conn.execute(
                "SELECT * FROM files WHERE id = ? AND kb_id = ?", (file_id, kb_id)
            ).fetchone()
        return self._row_to_file(row) if row else None

    def add_file(self, kb_id: str, filename: str, storage_path: str, file_type: str = "text") -> FileRecord:
        """Record a staged file. The caller has already checked that ``kb_id`` exists."""
        record = FileRecord(
            id=new_id(),
            kb_id=kb_id,
            filename=filename,
            storage_path=storage_path,
            type=file_type,
            uploaded_at=utc_now(),
        )
        with self._transaction() as conn:
            self._insert_file(conn, record)
        logger.info("Added file %s (%s) to knowledge base %s", record.id, filename, kb_id)
        return record

    def delete_file(self, kb_id: str, file_id: str) -> Optional[FileRecord]:
        """Remove the record matching both ids; ``None`` when there is none."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM files WHERE id = ? AND kb_id = ?", (file_id, kb_id)
            ).fetchone()
            if row is None:
                return None
            conn.execute("DELETE FROM files WHERE id = ? AND kb_id = ?", (file_id, kb_id))
        record = self._row_to_file(row)
        logger.info("Deleted file record %s from knowledge base %s", file_id, kb_id)
        remove_file_quietly(record.storage_path)
        return record

    # Pending vector cleanups

    def add_pending_cleanup(self, collection_id: str, source_file_id: Optional[str], error: str) -> None:
        """
        Queue a failed vector cleanup.

        A cleanup already queued for the same collection and file has its
        attempt count increased and its error replaced.
        """
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO pending_cleanups (collection_id, source_file_id, last_error, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (collection_id, source_file_id)
                DO UPDATE SET attempts = attempts + 1, last_error = excluded.last_error
                """,
                (collection_id, source_file_id or "", error, utc_now()),
            )

    def list_pending_cleanups(self) -> List[PendingCleanup]:
        """Queued cleanups, oldest first."""
        with self._read() as conn:
            rows = conn.execute("SELECT * FROM pending_cleanups ORDER BY rowid").fetchall()
        return [
            PendingCleanup(
                collection_id=row["collection_id"],
                source_file_id=row["source_file_id"] or None,
                attempts=row["attempts"],
                last_error=row["last_error"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def remove_pending_cleanup(self, collection_id: str, source_file_id: Optional[str]) -> None:
        with self._transaction() as conn:
            conn.execute(
                "DELETE FROM pending_cleanups WHERE collection_id = ? AND source_file_id = ?",
                (collection_id, source_file_id or ""),
            )

    # Logical document form

    def snapshot(self) -> Dict[str, List[Dict[str, Any]]]:
        """The registry as ``{knowledgeBases: [...], files: [...]}``."""
        with self._read() as conn:
            kb_rows = conn.execute("SELECT * FROM knowledge_bases ORDER BY rowid").fetchall()
            file_rows = conn.execute("SELECT * FROM files ORDER BY rowid").fetchall()
        return {
            "knowledgeBases": [self._row_to_kb(row).model_dump(by_alias=True) for row in kb_rows],
            "files": [self._row_to_file(row).model_dump(by_alias=True) for row in file_rows],
        }

    def import_snapshot(self, document: Dict[str, Any]) -> int:
        """
        Load a ``{knowledgeBases, files}`` document, e.g. a legacy ``db.json``.

        Entries whose id already exists are left untouched.

        Returns:
            Number of rows inserted.
        """
        knowledge_bases = [KnowledgeBase.model_validate(item) for item in document.get("knowledgeBases", [])]
        files = [FileRecord.model_validate(item) for item in document.get("files", [])]
        inserted = 0
        with self._transaction() as conn:
            for kb in knowledge_bases:
                inserted += self._insert_kb(conn, kb, ignore=True)
            for record in files:
                inserted += self._insert_file(conn, record, ignore=True)
        logger.info("Imported %d registry row(s)", inserted)
        return inserted
