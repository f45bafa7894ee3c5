"""Database-backed invoice number sequences."""

from __future__ import annotations

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.backend.src.models import InvoiceSequence

LOGGER = structlog.get_logger(__name__)

_INSERT_IF_ABSENT = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


class DatabaseSequenceProvider:
    """Hand out per-branch sequence values inside the caller's transaction.

    The counter row is created if absent and then locked ``FOR UPDATE``, so
    concurrent submissions in one branch are serialized even for the first
    number; the value is only durable once the surrounding transaction
    commits.
    """

    def __init__(self, session: Session) -> None:
        self._session = session

    def _ensure_row(self, branch_ref: str) -> None:
        dialect = self._session.get_bind().dialect.name
        insert = _INSERT_IF_ABSENT.get(dialect)
        if insert is not None:
            self._session.execute(
                insert(InvoiceSequence)
                .values(branch_ref=branch_ref, next_value=1)
                .on_conflict_do_nothing(index_elements=["branch_ref"])
            )
            return

        exists = self._session.execute(
            select(InvoiceSequence.branch_ref).where(InvoiceSequence.branch_ref == branch_ref)
        ).scalar_one_or_none()
        if exists is not None:
            return
        try:
            with self._session.begin_nested():
                self._session.add(InvoiceSequence(branch_ref=branch_ref, next_value=1))
        except IntegrityError:
            LOGGER.info("invoice_sequence_created_concurrently", branch_ref=branch_ref)

    def next_value(self, branch_ref: str) -> int:
        self._ensure_row(branch_ref)
        sequence = self._session.execute(
            select(InvoiceSequence)
            .where(InvoiceSequence.branch_ref == branch_ref)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()

        value = sequence.next_value
        sequence.next_value = value + 1
        self._session.flush()
        LOGGER.debug("invoice_sequence_advanced", branch_ref=branch_ref, value=value)
        return value


__all__ = ["DatabaseSequenceProvider"]
