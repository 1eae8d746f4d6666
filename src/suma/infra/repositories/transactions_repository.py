"""Ledger repository - users, categories, accounts and transactions.

Uses raw SQL with psycopg2 (no ORM). Every write here tolerates concurrent
duplicates: users and categories upsert, the default account re-reads after
a unique violation, and transactions are keyed by source_message_id.
"""

from __future__ import annotations

from decimal import Decimal

import psycopg2.errors
from psycopg2.extensions import cursor as PgCursor

from suma.infra.db import fetchone

DEFAULT_ACCOUNT_NAME = "General"
DEFAULT_ACCOUNT_TYPE = "cash"
DEFAULT_CURRENCY = "ARS"


def upsert_user(cur: PgCursor, *, phone: str) -> str:
    """Find or create a user by WhatsApp phone number.

    Args:
        cur: Database cursor.
        phone: Normalized sender phone.

    Returns:
        User UUID as string.
    """
    cur.execute(
        """
        INSERT INTO users (phone)
        VALUES (%s)
        ON CONFLICT (phone) DO UPDATE SET updated_at = now()
        RETURNING id
        """,
        (phone,),
    )
    row = cur.fetchone()
    return str(row[0])


def _select_category_id(cur: PgCursor, name: str) -> str | None:
    row = fetchone(cur, "SELECT id FROM categories WHERE name = %s", (name,))
    return str(row[0]) if row else None


def resolve_category_id(cur: PgCursor, *, name: str) -> str:
    """Resolve a category name to its UUID, creating it if missing."""
    existing = _select_category_id(cur, name)
    if existing:
        return existing

    cur.execute(
        """
        INSERT INTO categories (name)
        VALUES (%s)
        ON CONFLICT (name) DO NOTHING
        RETURNING id
        """,
        (name,),
    )
    row = cur.fetchone()
    if row:
        return str(row[0])

    # Lost the race to a concurrent insert
    existing = _select_category_id(cur, name)
    if existing is None:
        raise RuntimeError(f"category {name!r} vanished after conflict")
    return existing


def _select_default_account_id(cur: PgCursor, user_id: str) -> str | None:
    row = fetchone(
        cur,
        "SELECT id FROM accounts WHERE user_id = %s AND is_default = true",
        (user_id,),
    )
    return str(row[0]) if row else None


def ensure_default_account(cur: PgCursor, *, user_id: str) -> str:
    """Get or create the user's default "General" cash account.

    A concurrent creator makes the INSERT fail with a unique violation; the
    savepoint keeps the surrounding transaction usable for the re-read.

    Returns:
        Account UUID as string.
    """
    existing = _select_default_account_id(cur, user_id)
    if existing:
        return existing

    cur.execute("SAVEPOINT ensure_default_account")
    try:
        cur.execute(
            """
            INSERT INTO accounts (user_id, name, type, currency, is_default)
            VALUES (%s, %s, %s, %s, true)
            RETURNING id
            """,
            (user_id, DEFAULT_ACCOUNT_NAME, DEFAULT_ACCOUNT_TYPE, DEFAULT_CURRENCY),
        )
        row = cur.fetchone()
    except psycopg2.errors.UniqueViolation:
        cur.execute("ROLLBACK TO SAVEPOINT ensure_default_account")
        existing = _select_default_account_id(cur, user_id)
        if existing is None:
            raise
        return existing

    cur.execute("RELEASE SAVEPOINT ensure_default_account")
    return str(row[0])


def insert_transaction(
    cur: PgCursor,
    *,
    user_id: str,
    account_id: str,
    category_id: str,
    amount: Decimal,
    description: str,
    raw_message: str | None,
    source_message_id: str,
) -> tuple[str, bool]:
    """Insert an expense transaction, at most once per provider message.

    Returns:
        (transaction_id, created). created is False when a transaction for
        source_message_id already existed.
    """
    cur.execute(
        """
        INSERT INTO transactions (
            user_id, type, amount, description, category_id, account_id,
            is_recurrent, raw_message, source_message_id
        )
        VALUES (%s, 'expense', %s, %s, %s, %s, false, %s, %s)
        ON CONFLICT (source_message_id) DO NOTHING
        RETURNING id
        """,
        (user_id, amount, description, category_id, account_id, raw_message, source_message_id),
    )
    row = cur.fetchone()
    if row:
        return str(row[0]), True

    row = fetchone(
        cur,
        "SELECT id FROM transactions WHERE source_message_id = %s",
        (source_message_id,),
    )
    return str(row[0]), False
