"""SQLite access to encrypted database credentials on domains and subdomains."""

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional

CREDENTIAL_TABLES = ("domains", "subdomains")

_SCHEMA = {
    "domains": """
        CREATE TABLE IF NOT EXISTS domains (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            url TEXT,
            db_password_enc TEXT,
            created_at TEXT,
            updated_at TEXT
        )
    """,
    "subdomains": """
        CREATE TABLE IF NOT EXISTS subdomains (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            domain_id INTEGER NOT NULL REFERENCES domains(id) ON DELETE CASCADE,
            name TEXT NOT NULL,
            url TEXT,
            db_password_enc TEXT,
            created_at TEXT,
            updated_at TEXT
        )
    """,
}


@dataclass(frozen=True)
class EncryptedRecord:
    """One stored ciphertext, identified by table and row id."""

    table: str
    id: int
    value: str

    @property
    def label(self) -> str:
        return f"{self.table} id={self.id}"


class CredentialRepository:
    """Reads and writes ``db_password_enc`` columns.

    Each write commits on its own, so an interrupted batch leaves every row
    either fully old or fully new.
    """

    def __init__(self, database_path: Path):
        self.logger = logging.getLogger("domain_tracker.credentials")
        self.database_path = Path(database_path)

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.database_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        """Create missing tables and add ``db_password_enc`` to older ones."""
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        with self.connect() as conn:
            for table in CREDENTIAL_TABLES:
                conn.execute(_SCHEMA[table])
                columns = {row["name"] for row in conn.execute(f"PRAGMA table_info({table})")}
                if "db_password_enc" not in columns:
                    conn.execute(f"ALTER TABLE {table} ADD COLUMN db_password_enc TEXT")
                    self.logger.info(f"Added db_password_enc column to {table}")
            conn.commit()

    def iter_encrypted(self) -> Iterator[EncryptedRecord]:
        """Yield every row holding a non-empty ciphertext."""
        for table in CREDENTIAL_TABLES:
            with self.connect() as conn:
                rows = conn.execute(
                    f"SELECT id, db_password_enc FROM {table} "
                    "WHERE db_password_enc IS NOT NULL AND db_password_enc != '' "
                    "ORDER BY id"
                ).fetchall()
            for row in rows:
                yield EncryptedRecord(table=table, id=row["id"], value=row["db_password_enc"])

    def save(self, record: EncryptedRecord, value: str) -> None:
        self._check_table(record.table)
        with self.connect() as conn:
            conn.execute(
                f"UPDATE {record.table} SET db_password_enc = ? WHERE id = ?",
                (value, record.id),
            )
            conn.commit()
        self.logger.debug(f"Saved ciphertext for {record.label}")

    def get(self, table: str, record_id: int) -> Optional[str]:
        """Stored ciphertext for one row, or None if the row does not exist."""
        self._check_table(table)
        with self.connect() as conn:
            row = conn.execute(
                f"SELECT db_password_enc FROM {table} WHERE id = ?", (record_id,)
            ).fetchone()
        if row is None:
            return None
        return row["db_password_enc"] or ""

    def _check_table(self, table: str) -> None:
        if table not in CREDENTIAL_TABLES:
            raise ValueError(f"Unknown credential table: {table}")
