"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts and sessions.

Pattern: Repository + Data Mapper (same as hr/store.py).
AccountStore is the repository; _row_to_account is the mapper. Service and
guard code never touches SQL directly.

Atomicity:
  A one-time code and its expiry are always written in a single UPDATE
  (set_verification_code / set_reset_code / mark_verified /
  replace_password). There is no code path that writes one half of a pair.
  Concurrent writers on the same account resolve last-write-wins.

Sessions:
  One row per issued refresh token (keyed by its jti). Login inserts, silent
  refresh rotates, logout deletes every row for the account. Access tokens
  are stateless and never stored.

Security:
  All queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import Account, Role
from core.errors import ConflictError

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),  # lowercased
    Column("hashed_password", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default=Role.USER.value),
    Column("verified", Integer, nullable=False, server_default="0"),
    Column("verification_code", String(16)),
    Column("verification_code_expires_at", String(32)),
    Column("forgot_password_code", String(16)),
    Column("forgot_password_code_expires_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, nullable=False, index=True),
    Column("jti", String(64), nullable=False, unique=True),
    Column("created_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety (set per-connection)."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account entities and refresh-token sessions.

    Usage:
        store = AccountStore("sqlite:///:memory:")
        account_id = store.create_account(Account(username="alice", email="a@x.com", hashed_password=h))
        account = store.get_by_email("A@X.com")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Account queries
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> int:
        """Insert a new account and return its id.

        Raises ConflictError if the (normalized) email is already registered.
        The UNIQUE constraint is the source of truth; a check-then-insert in
        the caller is only a fast path.
        """
        now = _now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _accounts.insert().values(
                        username=account.username,
                        email=normalize_email(account.email),
                        hashed_password=account.hashed_password,
                        role=Role(account.role).value,
                        verified=1 if account.verified else 0,
                        verification_code=account.verification_code,
                        verification_code_expires_at=account.verification_code_expires_at,
                        forgot_password_code=account.forgot_password_code,
                        forgot_password_code_expires_at=account.forgot_password_code_expires_at,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise ConflictError("An account with this email already exists.", code="email_taken") from exc
        return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.email == normalize_email(email))).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_id(self, account_id: int) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_ids(self, account_ids: list[int]) -> dict[int, Account]:
        """Return {id: Account} for the ids that exist. Missing ids are absent."""
        if not account_ids:
            return {}
        with self.engine.connect() as conn:
            rows = conn.execute(_accounts.select().where(_accounts.c.id.in_(sorted(set(account_ids))))).fetchall()
        return {row.id: _row_to_account(row) for row in rows}

    def list_accounts(self) -> list[Account]:
        with self.engine.connect() as conn:
            rows = conn.execute(_accounts.select().order_by(_accounts.c.email)).fetchall()
        return [_row_to_account(r) for r in rows]

    def update_account(self, account_id: int, **fields) -> bool:
        """Update mutable fields in one statement.

        Accepted fields: username, role, verified, hashed_password. Code
        fields go through the dedicated pair setters below.

        Returns True if a row was updated, False if account_id was not found.
        """
        allowed = {"username", "role", "verified", "hashed_password"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown account fields: {unknown!r}")
        if "verified" in fields:
            fields["verified"] = 1 if fields["verified"] else 0
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        return self._update(account_id, **fields)

    def set_verification_code(self, account_id: int, code: str, expires_at: str) -> bool:
        """Store a new verification code, replacing any outstanding one."""
        return self._update(account_id, verification_code=code, verification_code_expires_at=expires_at)

    def set_reset_code(self, account_id: int, code: str, expires_at: str) -> bool:
        """Store a new password-reset code, replacing any outstanding one."""
        return self._update(account_id, forgot_password_code=code, forgot_password_code_expires_at=expires_at)

    def mark_verified(self, account_id: int) -> bool:
        """Set verified and clear the verification pair in one UPDATE."""
        return self._update(account_id, verified=1, verification_code=None, verification_code_expires_at=None)

    def replace_password(self, account_id: int, hashed_password: str, clear_reset_code: bool = False) -> bool:
        fields: dict = {"hashed_password": hashed_password}
        if clear_reset_code:
            fields.update(forgot_password_code=None, forgot_password_code_expires_at=None)
        return self._update(account_id, **fields)

    def _update(self, account_id: int, **fields) -> bool:
        fields["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, account_id: int, jti: str, expires_at: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(account_id=account_id, jti=jti, created_at=_now_iso(), expires_at=expires_at)
            )
            conn.commit()

    def get_session_account(self, jti: str) -> int | None:
        """Return the account id owning the session, or None if revoked/unknown."""
        with self.engine.connect() as conn:
            return conn.execute(select(_sessions.c.account_id).where(_sessions.c.jti == jti)).scalar()

    def rotate_session(self, old_jti: str, new_jti: str, expires_at: str) -> bool:
        """Swap a session's jti in place. Returns False if old_jti is gone.

        A single UPDATE keyed on old_jti means two concurrent refreshes with
        the same token cannot both succeed.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _sessions.update().where(_sessions.c.jti == old_jti).values(jti=new_jti, expires_at=expires_at)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_sessions(self, account_id: int) -> int:
        """Delete every session for the account. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.account_id == account_id))
            conn.commit()
        return result.rowcount

    def purge_expired_sessions(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at < _now_iso()))
            conn.commit()
        return result.rowcount

    def count_accounts(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_accounts)).scalar() or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        verified=bool(row.verified),
        verification_code=row.verification_code,
        verification_code_expires_at=row.verification_code_expires_at,
        forgot_password_code=row.forgot_password_code,
        forgot_password_code_expires_at=row.forgot_password_code_expires_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
