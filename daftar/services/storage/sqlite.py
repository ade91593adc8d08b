"""
SQLite Storage Implementation

DESIGN DECISION: SQLite is the durable backend because:
1. It ships with Python and needs no server
2. It gives real atomic, crash-consistent commits (WAL journal)
3. A single file is easy to back up or move between devices

Amounts and balances are stored as TEXT and read back as Decimal so
no float rounding ever touches a balance.

Change sets run inside BEGIN IMMEDIATE so the revision check and the
writes happen under one write lock. Any failure rolls the whole set back.
"""

import sqlite3
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from daftar.errors import ConcurrentModificationError, NotFoundError
from daftar.models.audit import AuditEvent
from daftar.models.ledger import (
    Account,
    AppSettings,
    Category,
    Transaction,
    TransactionType,
)
from daftar.services.storage.interface import (
    AccountState,
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerChangeSet,
    LedgerStorageInterface,
    StorageError,
)


logger = structlog.get_logger(__name__)

SCHEMA_VERSION = 2

TRANSACTION_COLUMNS = (
    "id, account_id, sequence_number, amount, type, description, details, "
    "currency, transaction_date, balance, created_at"
)

AUDIT_COLUMNS = (
    "event_id, timestamp, event_type, severity, entity_type, entity_id, "
    "correlation_id, description, details_json, error_code, error_message, "
    "is_user_action"
)


def _is_locked_error(exc: BaseException) -> bool:
    """Only a busy/locked database is worth retrying."""
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    message = str(exc).lower()
    return "locked" in message or "busy" in message


_retry_when_locked = retry(
    retry=retry_if_exception(_is_locked_error),
    stop=stop_after_attempt(5),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
    reraise=True,
)


class SqliteConnection:
    """
    Low-level SQLite connection wrapper.

    Owns the connection, applies pragmas and schema migrations.
    Shared by the ledger and audit storages so both live in one file.
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise ConnectionError("SQLite connection is not open")
        return self._conn

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
        reraise=True,
    )
    def connect(self) -> sqlite3.Connection:
        """Open the database and bring the schema up to date."""
        if self._conn is None:
            try:
                # Autocommit mode: transactions are opened explicitly
                conn = sqlite3.connect(self._db_path, isolation_level=None)
            except sqlite3.Error as e:
                raise ConnectionError(f"Failed to open database {self._db_path}: {e}")
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA busy_timeout = 5000")
            self._conn = conn
            self._init_db()
            logger.info("database_opened", path=self._db_path)
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("database_closed", path=self._db_path)

    def _init_db(self) -> None:
        """Create or migrate the schema."""
        cursor = self.conn.cursor()
        cursor.execute("BEGIN IMMEDIATE")
        try:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """)
            cursor.execute("SELECT version FROM schema_version")
            row = cursor.fetchone()
            current_version = row[0] if row else 0

            if current_version < 1:
                self._migrate_v1(cursor)
            if current_version < 2:
                self._migrate_v2(cursor)

            if current_version < SCHEMA_VERSION:
                cursor.execute("DELETE FROM schema_version")
                cursor.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            cursor.execute("COMMIT")
        except sqlite3.Error:
            cursor.execute("ROLLBACK")
            raise

    def _migrate_v1(self, cursor: sqlite3.Cursor) -> None:
        """V1: categories, accounts, transactions, sequence counter, settings."""
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS categories (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                currency TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS accounts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                category_id INTEGER NOT NULL REFERENCES categories(id) ON DELETE RESTRICT,
                name TEXT NOT NULL,
                phone_number TEXT NOT NULL,
                notes TEXT,
                created_at TEXT NOT NULL,
                balance TEXT NOT NULL DEFAULT '0',
                revision INTEGER NOT NULL DEFAULT 0
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS transactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                account_id INTEGER NOT NULL REFERENCES accounts(id) ON DELETE RESTRICT,
                sequence_number INTEGER NOT NULL UNIQUE,
                amount TEXT NOT NULL,
                type TEXT NOT NULL CHECK (type IN ('credit', 'debit')),
                description TEXT NOT NULL,
                details TEXT,
                currency TEXT NOT NULL,
                transaction_date TEXT NOT NULL,
                balance TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_transactions_account_order
            ON transactions(account_id, transaction_date, sequence_number)
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_accounts_category ON accounts(category_id)")
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS ledger_meta (
                key TEXT PRIMARY KEY,
                value INTEGER NOT NULL
            )
        """)
        cursor.execute(
            "INSERT OR IGNORE INTO ledger_meta (key, value) VALUES ('sequence_high_water', 0)"
        )
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS app_settings (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                company_name_ar TEXT NOT NULL,
                company_name_en TEXT NOT NULL,
                phone_number TEXT,
                address TEXT,
                default_currency TEXT NOT NULL,
                pin_enabled INTEGER NOT NULL,
                pin_hash TEXT,
                updated_at TEXT NOT NULL
            )
        """)

    def _migrate_v2(self, cursor: sqlite3.Cursor) -> None:
        """V2: append-only audit log."""
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS audit_log (
                event_id TEXT PRIMARY KEY,
                timestamp TEXT NOT NULL,
                event_type TEXT NOT NULL,
                severity TEXT NOT NULL,
                entity_type TEXT,
                entity_id INTEGER,
                correlation_id TEXT,
                description TEXT NOT NULL,
                details_json TEXT,
                error_code TEXT,
                error_message TEXT,
                is_user_action INTEGER NOT NULL
            )
        """)
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_log(entity_type, entity_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_audit_correlation ON audit_log(correlation_id)")


class SqliteLedgerStorage(LedgerStorageInterface):
    """
    SQLite implementation of ledger storage.

    One row per entity; the accounts table also holds the cached balance
    and the revision used for optimistic concurrency checks.
    """

    def __init__(self, db_path: Optional[str] = None, connection: Optional[SqliteConnection] = None):
        if connection is None and db_path is None:
            from daftar.config import get_settings
            db_path = get_settings().ledger.database_path
        self._connection = connection or SqliteConnection(db_path)

    @property
    def connection(self) -> SqliteConnection:
        return self._connection

    async def open(self) -> None:
        self._connection.connect()

    async def close(self) -> None:
        self._connection.close()

    @property
    def _conn(self) -> sqlite3.Connection:
        return self._connection.conn

    # ------------------------------------------------------------------
    # Row conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_category(row: tuple) -> Category:
        return Category(
            id=row[0],
            name=row[1],
            currency=row[2],
            created_at=datetime.fromisoformat(row[3]),
        )

    @staticmethod
    def _row_to_account(row: tuple) -> Account:
        return Account(
            id=row[0],
            category_id=row[1],
            name=row[2],
            phone_number=row[3],
            notes=row[4],
            created_at=datetime.fromisoformat(row[5]),
        )

    @staticmethod
    def _row_to_transaction(row: tuple) -> Transaction:
        return Transaction(
            id=row[0],
            account_id=row[1],
            sequence_number=row[2],
            amount=Decimal(row[3]),
            type=TransactionType(row[4]),
            description=row[5],
            details=row[6],
            currency=row[7],
            transaction_date=date.fromisoformat(row[8]),
            balance=Decimal(row[9]),
            created_at=datetime.fromisoformat(row[10]),
        )

    @staticmethod
    def _transaction_values(txn: Transaction) -> tuple:
        return (
            txn.account_id,
            txn.sequence_number,
            str(txn.amount),
            txn.type.value,
            txn.description,
            txn.details,
            txn.currency,
            txn.transaction_date.isoformat(),
            str(txn.balance),
            txn.created_at.isoformat(),
        )

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    @_retry_when_locked
    async def add_category(self, category: Category) -> Category:
        cursor = self._conn.execute(
            "INSERT INTO categories (name, currency, created_at) VALUES (?, ?, ?)",
            (category.name, category.currency, category.created_at.isoformat()),
        )
        return category.model_copy(update={"id": cursor.lastrowid})

    async def get_category(self, category_id: int) -> Optional[Category]:
        row = self._conn.execute(
            "SELECT id, name, currency, created_at FROM categories WHERE id = ?",
            (category_id,),
        ).fetchone()
        return self._row_to_category(row) if row else None

    async def list_categories(self) -> list[Category]:
        rows = self._conn.execute(
            "SELECT id, name, currency, created_at FROM categories ORDER BY id"
        ).fetchall()
        return [self._row_to_category(row) for row in rows]

    @_retry_when_locked
    async def update_category(self, category: Category) -> None:
        cursor = self._conn.execute(
            "UPDATE categories SET name = ?, currency = ? WHERE id = ?",
            (category.name, category.currency, category.id),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Category not found: {category.id}")

    @_retry_when_locked
    async def delete_category(self, category_id: int) -> bool:
        try:
            cursor = self._conn.execute("DELETE FROM categories WHERE id = ?", (category_id,))
        except sqlite3.IntegrityError as e:
            raise StorageError(f"Category {category_id} still has accounts: {e}")
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    @_retry_when_locked
    async def add_account(self, account: Account) -> Account:
        try:
            cursor = self._conn.execute(
                """
                INSERT INTO accounts (category_id, name, phone_number, notes, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    account.category_id,
                    account.name,
                    account.phone_number,
                    account.notes,
                    account.created_at.isoformat(),
                ),
            )
        except sqlite3.IntegrityError:
            raise NotFoundError(f"Category not found: {account.category_id}")
        return account.model_copy(update={"id": cursor.lastrowid})

    async def get_account(self, account_id: int) -> Optional[Account]:
        row = self._conn.execute(
            """
            SELECT id, category_id, name, phone_number, notes, created_at
            FROM accounts WHERE id = ?
            """,
            (account_id,),
        ).fetchone()
        return self._row_to_account(row) if row else None

    async def list_accounts(self, category_id: Optional[int] = None) -> list[Account]:
        query = "SELECT id, category_id, name, phone_number, notes, created_at FROM accounts"
        params: tuple = ()
        if category_id is not None:
            query += " WHERE category_id = ?"
            params = (category_id,)
        rows = self._conn.execute(query + " ORDER BY id", params).fetchall()
        return [self._row_to_account(row) for row in rows]

    @_retry_when_locked
    async def update_account(self, account: Account) -> None:
        cursor = self._conn.execute(
            "UPDATE accounts SET name = ?, phone_number = ?, notes = ? WHERE id = ?",
            (account.name, account.phone_number, account.notes, account.id),
        )
        if cursor.rowcount == 0:
            raise NotFoundError(f"Account not found: {account.id}")

    @_retry_when_locked
    async def delete_account(self, account_id: int) -> bool:
        try:
            cursor = self._conn.execute("DELETE FROM accounts WHERE id = ?", (account_id,))
        except sqlite3.IntegrityError as e:
            raise StorageError(f"Account {account_id} still has transactions: {e}")
        return cursor.rowcount > 0

    async def get_account_state(self, account_id: int) -> Optional[AccountState]:
        row = self._conn.execute(
            "SELECT id, balance, revision FROM accounts WHERE id = ?",
            (account_id,),
        ).fetchone()
        if row is None:
            return None
        return AccountState(account_id=row[0], balance=Decimal(row[1]), revision=row[2])

    async def list_account_states(self) -> dict[int, AccountState]:
        rows = self._conn.execute("SELECT id, balance, revision FROM accounts").fetchall()
        return {
            row[0]: AccountState(account_id=row[0], balance=Decimal(row[1]), revision=row[2])
            for row in rows
        }

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        row = self._conn.execute(
            f"SELECT {TRANSACTION_COLUMNS} FROM transactions WHERE id = ?",
            (transaction_id,),
        ).fetchone()
        return self._row_to_transaction(row) if row else None

    async def list_transactions(self, account_id: Optional[int] = None) -> list[Transaction]:
        query = f"SELECT {TRANSACTION_COLUMNS} FROM transactions"
        params: tuple = ()
        if account_id is not None:
            query += " WHERE account_id = ?"
            params = (account_id,)
        rows = self._conn.execute(
            query + " ORDER BY transaction_date, sequence_number", params
        ).fetchall()
        return [self._row_to_transaction(row) for row in rows]

    async def count_transactions(self, account_id: Optional[int] = None) -> int:
        if account_id is None:
            row = self._conn.execute("SELECT COUNT(*) FROM transactions").fetchone()
        else:
            row = self._conn.execute(
                "SELECT COUNT(*) FROM transactions WHERE account_id = ?", (account_id,)
            ).fetchone()
        return row[0]

    @_retry_when_locked
    async def commit(self, changes: LedgerChangeSet) -> Optional[Transaction]:
        cursor = self._conn.cursor()
        cursor.execute("BEGIN IMMEDIATE")
        try:
            result = self._apply_changes(cursor, changes)
            cursor.execute("COMMIT")
        except sqlite3.IntegrityError as e:
            cursor.execute("ROLLBACK")
            raise DuplicateError(f"Ledger commit rejected by constraint: {e}")
        except BaseException:
            cursor.execute("ROLLBACK")
            raise
        return result

    def _apply_changes(self, cursor: sqlite3.Cursor, changes: LedgerChangeSet) -> Optional[Transaction]:
        row = cursor.execute(
            "SELECT revision FROM accounts WHERE id = ?", (changes.account_id,)
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Account not found: {changes.account_id}")
        if row[0] != changes.expected_revision:
            raise ConcurrentModificationError(changes.account_id, changes.expected_revision, row[0])

        result: Optional[Transaction] = None
        if changes.insert is not None:
            cursor.execute(
                """
                INSERT INTO transactions (
                    account_id, sequence_number, amount, type, description, details,
                    currency, transaction_date, balance, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                self._transaction_values(changes.insert),
            )
            result = changes.insert.model_copy(update={"id": cursor.lastrowid})
        elif changes.replace is not None:
            cursor.execute(
                """
                UPDATE transactions SET
                    account_id = ?, sequence_number = ?, amount = ?, type = ?,
                    description = ?, details = ?, currency = ?, transaction_date = ?,
                    balance = ?, created_at = ?
                WHERE id = ?
                """,
                self._transaction_values(changes.replace) + (changes.replace.id,),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Transaction not found: {changes.replace.id}")
            result = changes.replace.model_copy()
        elif changes.delete_id is not None:
            cursor.execute("DELETE FROM transactions WHERE id = ?", (changes.delete_id,))
            if cursor.rowcount == 0:
                raise NotFoundError(f"Transaction not found: {changes.delete_id}")

        for txn_id, balance in changes.snapshot_updates.items():
            cursor.execute(
                "UPDATE transactions SET balance = ? WHERE id = ?",
                (str(balance), txn_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Transaction not found: {txn_id}")

        cursor.execute(
            "UPDATE accounts SET balance = ?, revision = revision + 1 WHERE id = ?",
            (str(changes.account_balance), changes.account_id),
        )
        if changes.sequence_high_water is not None:
            cursor.execute(
                """
                UPDATE ledger_meta SET value = MAX(value, ?)
                WHERE key = 'sequence_high_water'
                """,
                (changes.sequence_high_water,),
            )
        return result

    async def get_sequence_high_water(self) -> int:
        row = self._conn.execute(
            "SELECT value FROM ledger_meta WHERE key = 'sequence_high_water'"
        ).fetchone()
        return row[0] if row else 0

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def get_app_settings(self) -> Optional[AppSettings]:
        row = self._conn.execute(
            """
            SELECT company_name_ar, company_name_en, phone_number, address,
                   default_currency, pin_enabled, pin_hash, updated_at
            FROM app_settings WHERE id = 1
            """
        ).fetchone()
        if row is None:
            return None
        return AppSettings(
            company_name_ar=row[0],
            company_name_en=row[1],
            phone_number=row[2],
            address=row[3],
            default_currency=row[4],
            pin_enabled=bool(row[5]),
            pin_hash=row[6],
            updated_at=datetime.fromisoformat(row[7]),
        )

    @_retry_when_locked
    async def save_app_settings(self, settings: AppSettings) -> None:
        self._conn.execute(
            """
            INSERT INTO app_settings (
                id, company_name_ar, company_name_en, phone_number, address,
                default_currency, pin_enabled, pin_hash, updated_at
            ) VALUES (1, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                company_name_ar = excluded.company_name_ar,
                company_name_en = excluded.company_name_en,
                phone_number = excluded.phone_number,
                address = excluded.address,
                default_currency = excluded.default_currency,
                pin_enabled = excluded.pin_enabled,
                pin_hash = excluded.pin_hash,
                updated_at = excluded.updated_at
            """,
            (
                settings.company_name_ar,
                settings.company_name_en,
                settings.phone_number,
                settings.address,
                settings.default_currency,
                int(settings.pin_enabled),
                settings.pin_hash,
                settings.updated_at.isoformat(),
            ),
        )


class SqliteAuditStorage(AuditStorageInterface):
    """SQLite implementation of the append-only audit log."""

    def __init__(self, connection: SqliteConnection):
        self._connection = connection

    @_retry_when_locked
    async def append_event(self, event: AuditEvent) -> bool:
        try:
            self._connection.conn.execute(
                f"INSERT INTO audit_log ({AUDIT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                event.to_row(),
            )
            return True
        except sqlite3.IntegrityError as e:
            raise DuplicateError(f"Audit event already stored: {event.event_id}: {e}")

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        rows = self._connection.conn.execute(
            f"SELECT {AUDIT_COLUMNS} FROM audit_log WHERE correlation_id = ? ORDER BY timestamp, rowid",
            (str(correlation_id),),
        ).fetchall()
        return [AuditEvent.from_row(row) for row in rows]

    async def get_events_by_entity(self, entity_type: str, entity_id: int) -> list[AuditEvent]:
        rows = self._connection.conn.execute(
            f"""
            SELECT {AUDIT_COLUMNS} FROM audit_log
            WHERE entity_type = ? AND entity_id = ?
            ORDER BY timestamp, rowid
            """,
            (entity_type, entity_id),
        ).fetchall()
        return [AuditEvent.from_row(row) for row in rows]

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        rows = self._connection.conn.execute(
            f"SELECT {AUDIT_COLUMNS} FROM audit_log ORDER BY timestamp DESC, rowid DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return [AuditEvent.from_row(row) for row in rows]
