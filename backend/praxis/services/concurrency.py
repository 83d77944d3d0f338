# Overview: Service-layer operations for concurrency; per-document units of work over the shared store.

from __future__ import annotations

import time
from typing import Callable, TypeVar

from flask import current_app
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import NotFoundError, StorageError
from ..extensions import db
from ..models import FinancialDocument


T = TypeVar("T")


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    On SQLite the version_id column on FinancialDocument still rejects the
    second of two interleaved writers with StaleDataError.
    """
    return query.with_for_update()


def run_with_retry(func: Callable[[], T], *, attempts: int = 3, backoff_base: float = 0.1) -> T:
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Everything else propagates at once.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def load_document_for_update(document_id: int) -> FinancialDocument:
    document = (
        lock_for_update(db.session.query(FinancialDocument).filter_by(id=document_id))
        .populate_existing()
        .first()
    )
    if document is None:
        raise NotFoundError(f"Document {document_id} not found")
    return document


def run_in_document_transaction(
    document_id: int,
    func: Callable[[FinancialDocument], T],
    *,
    attempts: int = 3,
) -> T:
    """
    Run `func(document)` as one atomic unit of work scoped to one document.

    read (locked) -> compute -> write -> commit. Any exception rolls the
    whole unit back, so a failed recompute or evaluation never leaves a
    half-applied totals/status update behind. Concurrency conflicts are
    retried from a fresh read; persistent store failures surface as
    StorageError.
    """
    def _op() -> T:
        try:
            document = load_document_for_update(document_id)
            result = func(document)
            db.session.commit()
            return result
        except Exception:
            db.session.rollback()
            raise

    try:
        return run_with_retry(_op, attempts=attempts)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.warning("Unit of work on document %s failed: %s", document_id, exc)
        raise StorageError("The document could not be saved. No changes were applied.") from exc
