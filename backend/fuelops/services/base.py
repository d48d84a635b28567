# Overview: Shared transaction handling for the reconciliation services.

"""
BaseService

Every reconciliation service receives its session and collaborators in the
constructor instead of reaching for the global ``db``. One public operation
is one transaction: ``_transaction`` runs the work through run_with_retry,
commits once, and only then fires the queued side effects (audit records,
discrepancy alerts). If the work raises, the session is rolled back and the
queued side effects are dropped.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

from sqlalchemy.orm import Session

from ..config import ReconciliationSettings
from .audit_service import AuditSink, LedgerAuditSink
from .concurrency import run_with_retry
from .discrepancy_service import DiscrepancyDetector

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BaseService:
    def __init__(
        self,
        session: Session,
        *,
        settings: ReconciliationSettings | None = None,
        audit_sink: AuditSink | None = None,
        detector: DiscrepancyDetector | None = None,
    ):
        self.session = session
        self.settings = settings or ReconciliationSettings()
        self.audit_sink = audit_sink or LedgerAuditSink(session)
        self.detector = detector or DiscrepancyDetector(
            epsilon_cents=self.settings.discrepancy_epsilon_cents,
            warning_band_bps=self.settings.discrepancy_warning_band_bps,
        )
        self._after_commit: list[Callable[[], Any]] = []

    # -------------------------------------------------------------------------
    # Transaction boundary
    # -------------------------------------------------------------------------

    def _transaction(self, work: Callable[[], T]) -> T:
        def _op():
            self._after_commit.clear()
            result = work()
            self.session.commit()
            return result

        try:
            result = run_with_retry(self.session, _op, attempts=self.settings.retry_attempts)
        except Exception:
            self.session.rollback()
            self._after_commit.clear()
            raise

        callbacks = list(self._after_commit)
        self._after_commit.clear()
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Post-commit side effect failed")
        return result

    # -------------------------------------------------------------------------
    # Side effects (run after commit)
    # -------------------------------------------------------------------------

    def _audit(
        self,
        event_type: str,
        actor_id: int | None,
        before: dict | None,
        entity,
        *,
        entity_type: str,
        **refs: Any,
    ) -> None:
        """
        Queue an audit record. ``entity`` is snapshotted now, so it must
        already be flushed; later writes to the row never leak into the
        after-state.
        """
        after = entity.to_dict()
        entity_id = entity.id

        def _record():
            self.audit_sink.record(
                event_type,
                actor_id,
                before,
                after,
                entity_type=entity_type,
                entity_id=entity_id,
                **refs,
            )
        self._after_commit.append(_record)

    def _alert(self, classification, subject: str, context: dict, *, force: bool = False) -> None:
        if classification.is_flagged or force:
            self._after_commit.append(
                lambda: self.detector.alert(classification, subject, context, force=force)
            )
