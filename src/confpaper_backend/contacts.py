import hashlib
import logging
import secrets
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple
from uuid import uuid4

from .database import PaperDatabase, utcnow_iso
from .utils import simplify_whitespace

logger = logging.getLogger(__name__)


@dataclass
class Contact:
    """
    A user account.

    Chairs administer every paper they are not an author of; the conflict
    override extends that to their own papers. Everyone else can only see
    and edit papers that list them as an author.
    """

    contact_id: int
    email: str
    first_name: str = ""
    last_name: str = ""
    affiliation: str = ""
    priv_chair: bool = False
    disabled: bool = False
    conf: Any = field(default=None, repr=False, compare=False)
    _overrides: int = field(default=0, repr=False)

    OVERRIDE_CONFLICT = 1

    @property
    def name(self) -> str:
        return simplify_whitespace(f"{self.first_name} {self.last_name}")

    def overrides(self) -> int:
        return self._overrides

    def add_overrides(self, flags: int) -> None:
        self._overrides |= flags

    def set_overrides(self, flags: int) -> None:
        self._overrides = flags

    def is_author(self, prow) -> bool:
        if prow.owner_id is not None and prow.owner_id == self.contact_id:
            return True
        email = self.email.lower()
        return any((author.get("email") or "").lower() == email for author in prow.authors)

    def can_administer(self, prow) -> bool:
        if not self.priv_chair:
            return False
        return not self.is_author(prow) or bool(self._overrides & self.OVERRIDE_CONFLICT)

    def can_view_paper(self, prow) -> bool:
        return self.can_administer(prow) or self.is_author(prow)

    def perm_edit_paper(self, prow) -> Optional[str]:
        """Return None if the user may edit ``prow``, otherwise the reason they can't."""
        if prow.is_new:
            if self.priv_chair or prow.conf.submissions_open():
                return None
            return "The submission deadline has passed."
        if self.can_administer(prow):
            return None
        if not self.is_author(prow):
            return f"You aren’t allowed to edit #{prow.paper_id}."
        return None


class ContactManager:
    """
    Manages user accounts and their API keys in the conference database.
    """

    def __init__(self, db: PaperDatabase, conf: Any = None):
        self.db = db
        self.conf = conf

    def _hash_key(self, key: str) -> str:
        """SHA-256 hash of the API key."""
        return hashlib.sha256(key.encode()).hexdigest()

    def _row_to_contact(self, row: sqlite3.Row) -> Contact:
        return Contact(
            contact_id=row["contact_id"],
            email=row["email"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            affiliation=row["affiliation"],
            priv_chair=bool(row["priv_chair"]),
            disabled=bool(row["disabled"]),
            conf=self.conf,
        )

    def create_contact(
        self,
        email: str,
        first_name: str = "",
        last_name: str = "",
        affiliation: str = "",
        priv_chair: bool = False,
        disabled: bool = False,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Contact:
        if conn is None:
            with self.db.connection() as own_conn:
                return self.create_contact(email, first_name, last_name, affiliation, priv_chair, disabled, own_conn)
        cursor = conn.execute("""
            INSERT INTO contacts (email, first_name, last_name, affiliation, priv_chair, disabled, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (email, first_name, last_name, affiliation, int(priv_chair), int(disabled), utcnow_iso()))
        logger.info(f"Created contact {email} (chair={priv_chair}, disabled={disabled})")
        return Contact(
            contact_id=int(cursor.lastrowid),
            email=email,
            first_name=first_name,
            last_name=last_name,
            affiliation=affiliation,
            priv_chair=priv_chair,
            disabled=disabled,
            conf=self.conf,
        )

    def by_email(self, email: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Contact]:
        if conn is None:
            with self.db.connection() as own_conn:
                return self.by_email(email, own_conn)
        row = conn.execute("SELECT * FROM contacts WHERE email = ?", (email,)).fetchone()
        return self._row_to_contact(row) if row else None

    def ensure_author_contact(self, author: Dict[str, Any], disabled: bool, conn: sqlite3.Connection) -> Tuple[Contact, bool]:
        """
        Find the account for a paper author, creating it if needed.

        Returns:
            (contact, created)
        """
        existing = self.by_email(author["email"], conn)
        if existing:
            return existing, False
        contact = self.create_contact(
            author["email"],
            first_name=author.get("first", ""),
            last_name=author.get("last", ""),
            affiliation=author.get("affiliation", ""),
            disabled=disabled,
            conn=conn,
        )
        return contact, True

    def create_api_key(self, contact_id: int) -> Tuple[str, dict]:
        """
        Generate a new API key for a contact.

        Returns:
            Tuple[str, dict]: (raw_api_key, key_record_dict)
            WARNING: raw_api_key is shown ONLY ONCE here.
        """
        raw_key = f"cpb_{secrets.token_urlsafe(32)}"
        key_hash = self._hash_key(raw_key)
        prefix = raw_key[:8]
        key_id = str(uuid4())
        created_at = utcnow_iso()

        with self.db.connection() as conn:
            conn.execute("""
                INSERT INTO api_keys (id, key_hash, prefix, contact_id, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (key_id, key_hash, prefix, contact_id, created_at))

        record = {
            "id": key_id,
            "prefix": prefix,
            "contact_id": contact_id,
            "is_active": True,
            "created_at": created_at,
        }
        return raw_key, record

    def validate_key(self, key: str) -> Optional[Contact]:
        """
        Return the enabled contact owning an active API key, or None.
        """
        if not key:
            return None

        with self.db.connection() as conn:
            row = conn.execute("""
                SELECT c.* FROM api_keys k JOIN contacts c ON c.contact_id = k.contact_id
                WHERE k.key_hash = ? AND k.is_active = 1 AND c.disabled = 0
            """, (self._hash_key(key),)).fetchone()
            return self._row_to_contact(row) if row else None

    def revoke_key(self, key_id: str) -> bool:
        """Revoke a key by ID."""
        with self.db.connection() as conn:
            cursor = conn.execute("UPDATE api_keys SET is_active = 0 WHERE id = ?", (key_id,))
            return cursor.rowcount > 0
