"""
SQLite database for papers, documents, contacts and the action log.

This module provides a simple SQLite-based persistence layer. Callers that
need several writes to land together open one connection with
``connection()`` and pass it to the write helpers; everything commits or
rolls back as a unit.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional

logger = logging.getLogger(__name__)

# Default database path
DEFAULT_DB_PATH = Path("data/confpaper.db")

TABLES = ["action_log", "paper_documents", "documents", "papers", "api_keys", "contacts", "topics"]


def _ensure_db_dir(db_path: Path) -> None:
    """Ensure the database directory exists."""
    db_path.parent.mkdir(parents=True, exist_ok=True)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class PaperDatabase:
    """
    SQLite database for conference state.

    Thread-safe: SQLite handles concurrent access with WAL mode.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = Path(db_path)
        _ensure_db_dir(self.db_path)
        self._init_db()

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection that commits on success."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self.connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS contacts (
                    contact_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    email TEXT UNIQUE NOT NULL COLLATE NOCASE,
                    first_name TEXT NOT NULL DEFAULT '',
                    last_name TEXT NOT NULL DEFAULT '',
                    affiliation TEXT NOT NULL DEFAULT '',
                    priv_chair INTEGER NOT NULL DEFAULT 0,
                    disabled INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS api_keys (
                    id TEXT PRIMARY KEY,
                    key_hash TEXT UNIQUE NOT NULL,
                    prefix TEXT NOT NULL,
                    contact_id INTEGER NOT NULL REFERENCES contacts(contact_id),
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS papers (
                    paper_id INTEGER PRIMARY KEY,
                    title TEXT NOT NULL DEFAULT '',
                    abstract TEXT NOT NULL DEFAULT '',
                    authors TEXT NOT NULL DEFAULT '[]',
                    topics TEXT NOT NULL DEFAULT '[]',
                    submission_class TEXT,
                    owner_id INTEGER,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    submitted_at TEXT,
                    withdrawn_at TEXT
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_papers_title
                ON papers(title)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    doc_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    paper_id INTEGER NOT NULL,
                    option_name TEXT NOT NULL,
                    filename TEXT,
                    mimetype TEXT NOT NULL,
                    size INTEGER NOT NULL,
                    sha256 TEXT NOT NULL,
                    storage_key TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS paper_documents (
                    paper_id INTEGER NOT NULL REFERENCES papers(paper_id),
                    option_name TEXT NOT NULL,
                    doc_id INTEGER NOT NULL REFERENCES documents(doc_id),
                    PRIMARY KEY (paper_id, option_name)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS topics (
                    topic_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT UNIQUE NOT NULL COLLATE NOCASE
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS action_log (
                    log_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    contact_id INTEGER,
                    paper_id INTEGER,
                    action TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """)

    def reset(self) -> None:
        """Drop every table and recreate an empty schema."""
        logger.info(f"Resetting database {self.db_path}")
        with self.connection() as conn:
            conn.execute("PRAGMA foreign_keys=OFF")
            for table in TABLES:
                conn.execute(f"DROP TABLE IF EXISTS {table}")
        self._init_db()

    # Papers

    def get_paper(self, paper_id: int) -> Optional[Dict[str, Any]]:
        """
        Retrieve a paper row by ID, including its current documents.

        Returns:
            Paper data dictionary or None if not found
        """
        with self.connection() as conn:
            row = conn.execute("SELECT * FROM papers WHERE paper_id = ?", (paper_id,)).fetchone()
            if not row:
                return None
            paper = self._paper_row_to_dict(row)
            paper["documents"] = self._paper_documents(conn, [paper_id]).get(paper_id, {})
            return paper

    def get_papers(self, paper_ids: Optional[Iterable[int]] = None) -> Dict[int, Dict[str, Any]]:
        """Retrieve several papers keyed by ID; all papers when no IDs are given."""
        with self.connection() as conn:
            if paper_ids is None:
                rows = conn.execute("SELECT * FROM papers ORDER BY paper_id").fetchall()
            else:
                ids = list(paper_ids)
                if not ids:
                    return {}
                marks = ", ".join("?" for _ in ids)
                rows = conn.execute(
                    f"SELECT * FROM papers WHERE paper_id IN ({marks}) ORDER BY paper_id", ids
                ).fetchall()
            papers = {row["paper_id"]: self._paper_row_to_dict(row) for row in rows}
            documents = self._paper_documents(conn, list(papers))
            for paper_id, paper in papers.items():
                paper["documents"] = documents.get(paper_id, {})
            return papers

    def paper_ids_by_title(self, title: str) -> List[int]:
        with self.connection() as conn:
            rows = conn.execute("SELECT paper_id FROM papers WHERE title = ?", (title,)).fetchall()
            return [row["paper_id"] for row in rows]

    def insert_paper(self, conn: sqlite3.Connection, fields: Dict[str, Any], paper_id: Optional[int] = None) -> int:
        """
        Insert a paper; an explicit ``paper_id`` is kept, otherwise SQLite assigns one.

        Raises:
            sqlite3.IntegrityError: If ``paper_id`` is already taken
        """
        now = utcnow_iso()
        columns = ["created_at", "updated_at"]
        values: List[Any] = [now, now]
        if paper_id is not None:
            columns.append("paper_id")
            values.append(paper_id)
        for key, value in self._encode_paper_fields(fields).items():
            columns.append(key)
            values.append(value)
        marks = ", ".join("?" for _ in columns)
        cursor = conn.execute(f"INSERT INTO papers ({', '.join(columns)}) VALUES ({marks})", values)
        return paper_id if paper_id is not None else int(cursor.lastrowid)

    def update_paper(self, conn: sqlite3.Connection, paper_id: int, fields: Dict[str, Any]) -> None:
        encoded = self._encode_paper_fields(fields)
        updates = [f"{key} = ?" for key in encoded] + ["updated_at = ?"]
        values = list(encoded.values()) + [utcnow_iso(), paper_id]
        conn.execute(f"UPDATE papers SET {', '.join(updates)} WHERE paper_id = ?", values)

    def _encode_paper_fields(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        encoded = {}
        for key, value in fields.items():
            if key in ("authors", "topics"):
                value = json.dumps(value)
            encoded[key] = value
        return encoded

    def _paper_row_to_dict(self, row: sqlite3.Row) -> Dict[str, Any]:
        """Convert a database row to a paper data dictionary."""
        return {
            "paper_id": row["paper_id"],
            "title": row["title"],
            "abstract": row["abstract"],
            "authors": json.loads(row["authors"] or "[]"),
            "topics": json.loads(row["topics"] or "[]"),
            "submission_class": row["submission_class"],
            "owner_id": row["owner_id"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
            "submitted_at": row["submitted_at"],
            "withdrawn_at": row["withdrawn_at"],
        }

    # Documents

    def insert_document(self, conn: sqlite3.Connection, document: Dict[str, Any]) -> int:
        cursor = conn.execute("""
            INSERT INTO documents (
                paper_id, option_name, filename, mimetype, size, sha256, storage_key, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            document["paper_id"],
            document["option_name"],
            document.get("filename"),
            document["mimetype"],
            document["size"],
            document["sha256"],
            document["storage_key"],
            utcnow_iso(),
        ))
        return int(cursor.lastrowid)

    def set_paper_document(self, conn: sqlite3.Connection, paper_id: int, option_name: str, doc_id: Optional[int]) -> None:
        """Point a paper's document option at ``doc_id``, or clear it when None."""
        if doc_id is None:
            conn.execute(
                "DELETE FROM paper_documents WHERE paper_id = ? AND option_name = ?",
                (paper_id, option_name),
            )
        else:
            conn.execute(
                "INSERT OR REPLACE INTO paper_documents (paper_id, option_name, doc_id) VALUES (?, ?, ?)",
                (paper_id, option_name, doc_id),
            )

    def _paper_documents(self, conn: sqlite3.Connection, paper_ids: List[int]) -> Dict[int, Dict[str, Dict[str, Any]]]:
        if not paper_ids:
            return {}
        marks = ", ".join("?" for _ in paper_ids)
        rows = conn.execute(f"""
            SELECT pd.paper_id AS owner_paper_id, pd.option_name AS slot, d.*
            FROM paper_documents pd JOIN documents d ON d.doc_id = pd.doc_id
            WHERE pd.paper_id IN ({marks})
        """, paper_ids).fetchall()
        result: Dict[int, Dict[str, Dict[str, Any]]] = {}
        for row in rows:
            result.setdefault(row["owner_paper_id"], {})[row["slot"]] = {
                "doc_id": row["doc_id"],
                "paper_id": row["paper_id"],
                "option_name": row["option_name"],
                "filename": row["filename"],
                "mimetype": row["mimetype"],
                "size": row["size"],
                "sha256": row["sha256"],
                "storage_key": row["storage_key"],
                "created_at": row["created_at"],
            }
        return result

    # Topics

    def list_topics(self) -> List[str]:
        with self.connection() as conn:
            rows = conn.execute("SELECT name FROM topics ORDER BY topic_id").fetchall()
            return [row["name"] for row in rows]

    def add_topics(self, names: Iterable[str], conn: Optional[sqlite3.Connection] = None) -> None:
        if conn is None:
            with self.connection() as own_conn:
                self.add_topics(names, own_conn)
            return
        conn.executemany("INSERT OR IGNORE INTO topics (name) VALUES (?)", [(name,) for name in names])

    # Action log

    def add_log(self, conn: sqlite3.Connection, contact_id: Optional[int], paper_id: Optional[int], action: str) -> None:
        conn.execute(
            "INSERT INTO action_log (contact_id, paper_id, action, created_at) VALUES (?, ?, ?, ?)",
            (contact_id, paper_id, action, utcnow_iso()),
        )

    def list_log(self, paper_id: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        List action log entries, oldest first.

        Args:
            paper_id: Restrict to entries about this paper
        """
        with self.connection() as conn:
            if paper_id is None:
                rows = conn.execute("SELECT * FROM action_log ORDER BY log_id").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM action_log WHERE paper_id = ? ORDER BY log_id", (paper_id,)
                ).fetchall()
            return [dict(row) for row in rows]
