"""Ledger writer - persists parsed expenses for a sender.

Account and category resolution have no data dependency on each other, so
they run concurrently (each on its own connection) and are both joined
before the transaction insert.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

from suma.domain.expenses import ParsedExpense
from suma.infra.db import Database
from suma.infra.repositories.transactions_repository import (
    ensure_default_account,
    insert_transaction,
    resolve_category_id,
    upsert_user,
)
from suma.observability.logging import get_logger
from suma.observability.redaction import id_prefix, safe_log_context

logger = get_logger(__name__)


class LedgerWriter:
    """Write users and expense transactions to Postgres."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def upsert_user(self, phone: str) -> str:
        with self._db.txn() as cur:
            return upsert_user(cur, phone=phone)

    def _ensure_default_account(self, user_id: str) -> str:
        with self._db.txn() as cur:
            return ensure_default_account(cur, user_id=user_id)

    def _resolve_category_id(self, name: str) -> str:
        with self._db.txn() as cur:
            return resolve_category_id(cur, name=name)

    def save_expense(
        self,
        user_id: str,
        parsed: ParsedExpense,
        raw_message: str | None,
        source_message_id: str,
    ) -> str:
        """Persist an expense as a transaction on the user's default account.

        Re-running for the same source_message_id returns the existing
        transaction instead of inserting a second one.

        Returns:
            Transaction UUID as string.
        """
        with ThreadPoolExecutor(max_workers=2) as pool:
            account_future = pool.submit(self._ensure_default_account, user_id)
            category_future = pool.submit(self._resolve_category_id, parsed.category)
            account_id = account_future.result()
            category_id = category_future.result()

        with self._db.txn() as cur:
            transaction_id, created = insert_transaction(
                cur,
                user_id=user_id,
                account_id=account_id,
                category_id=category_id,
                amount=parsed.amount,
                description=parsed.description,
                raw_message=raw_message,
                source_message_id=source_message_id,
            )

        logger.info(
            "transaction saved" if created else "transaction already existed",
            extra={
                "extra_fields": safe_log_context(
                    transaction_id=transaction_id,
                    message_id_prefix=id_prefix(source_message_id),
                    category=parsed.category,
                    created=created,
                )
            },
        )
        return transaction_id
