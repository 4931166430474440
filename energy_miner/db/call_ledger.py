"""
Durable call ledger on the relational store.

Shared by every process spending the same upstream quota. Each record is
committed in its own short transaction so it is visible to every other
RateGate as soon as record() returns.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import and_, delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from energy_miner.db.models import ApiCallRecord
from energy_miner.errors import LedgerReadError, LedgerWriteError
from energy_miner.utils.rate_limiter import DAY_WINDOW, CallLedger, CallRecord
from energy_miner.utils.time_utils import to_naive_utc

logger = logging.getLogger(__name__)


class DurableCallLedger(CallLedger):
    """CallLedger persisted in the api_call_record table."""

    def __init__(
        self,
        session_factory: sessionmaker,
        on_write_error: Optional[Callable[[LedgerWriteError], None]] = None,
        log: Optional[logging.Logger] = None,
    ):
        """
        Args:
            session_factory: SQLAlchemy session factory
            on_write_error: Error channel for failed writes. Writes never raise.
            log: Logger (default: module logger)
        """
        self.session_factory = session_factory
        self.on_write_error = on_write_error
        self.log = log or logger

    def record(self, caller_key: str, api_name: str, called_at: datetime) -> None:
        try:
            with self.session_factory() as session:
                session.add(ApiCallRecord(
                    caller_key=caller_key,
                    api_name=api_name,
                    called_at=to_naive_utc(called_at),
                ))
                session.commit()
        except SQLAlchemyError as e:
            error = LedgerWriteError(f"Could not record {api_name} call: {e}")
            self.log.error(str(error))
            if self.on_write_error is not None:
                self.on_write_error(error)

    def calls_since(self, caller_key: str, api_name: str, since: datetime) -> List[CallRecord]:
        query = select(ApiCallRecord).where(
            and_(
                ApiCallRecord.caller_key == caller_key,
                ApiCallRecord.api_name == api_name,
                ApiCallRecord.called_at >= to_naive_utc(since),
            )
        ).order_by(ApiCallRecord.called_at)
        try:
            with self.session_factory() as session:
                rows = session.execute(query).scalars().all()
        except SQLAlchemyError as e:
            raise LedgerReadError(f"Could not read {api_name} call records: {e}") from e
        return [CallRecord(r.caller_key, r.api_name, r.called_at) for r in rows]

    def count_since(self, caller_key: str, api_name: str, since: datetime) -> int:
        query = select(func.count(ApiCallRecord.id)).where(
            and_(
                ApiCallRecord.caller_key == caller_key,
                ApiCallRecord.api_name == api_name,
                ApiCallRecord.called_at >= to_naive_utc(since),
            )
        )
        try:
            with self.session_factory() as session:
                return session.execute(query).scalar_one()
        except SQLAlchemyError as e:
            raise LedgerReadError(f"Could not count {api_name} call records: {e}") from e

    def prune(self, before: datetime) -> int:
        """
        Delete records older than `before`.

        The cutoff must be at least one day old or per-day counts undercount.

        Returns:
            Number of records deleted
        """
        cutoff = to_naive_utc(before)
        with self.session_factory() as session:
            result = session.execute(delete(ApiCallRecord).where(ApiCallRecord.called_at < cutoff))
            session.commit()
        count = result.rowcount or 0
        if count > 0:
            self.log.info(f"Pruned {count} call records older than {cutoff}")
        return count

    def prune_expired(self, now: datetime) -> int:
        """Delete records that have aged out of the longest quota window."""
        return self.prune(to_naive_utc(now) - DAY_WINDOW)
