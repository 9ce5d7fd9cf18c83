# SPDX-License-Identifier: Apache-2.0

"""
Bulk status operations with single-use undo.

A bulk transition captures the prior status of every selected application,
applies one set-based update, and registers an undo action that writes each
application's own prior status back in one multi-row write. Neither the
update nor the undo is atomic across records.
"""

import time
import uuid
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional
from opentelemetry import trace

from domain.applications import UndoUnavailableError, parse_status

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

UNDO_TTL_SECONDS = 600

OUTCOME_UPDATED = "updated"
OUTCOME_NOT_FOUND = "not_found"


class SelectionSet:
    """Ordered set of selected application IDs, scoped to the visible page."""

    def __init__(self, ids: Iterable[str] = ()):
        self._ids: List[str] = []
        for item in ids:
            self.add(item)

    def add(self, application_id: str) -> None:
        if application_id not in self._ids:
            self._ids.append(application_id)

    def toggle(self, application_id: str) -> bool:
        """Flip one ID; returns True when it is now selected."""
        if application_id in self._ids:
            self._ids.remove(application_id)
            return False
        self._ids.append(application_id)
        return True

    def toggle_all(self, page_ids: Iterable[str]) -> None:
        """Select the whole page, or clear when the whole page is already selected."""
        page_ids = list(page_ids)
        if page_ids and set(self._ids) == set(page_ids):
            self.clear()
        else:
            self._ids = list(dict.fromkeys(page_ids))

    def retain(self, page_ids: Iterable[str]) -> None:
        """Drop IDs that are no longer on the page."""
        visible = set(page_ids)
        self._ids = [item for item in self._ids if item in visible]

    def clear(self) -> None:
        self._ids = []

    @property
    def ids(self) -> List[str]:
        return list(self._ids)

    def __contains__(self, application_id: str) -> bool:
        return application_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)


@dataclass
class BulkOutcome:
    """What a bulk operation knew about one record before writing."""
    id: str
    outcome: str
    previous_status: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"id": self.id, "outcome": self.outcome, "previous_status": self.previous_status}


@dataclass
class PendingUndo:
    statuses: Dict[str, str]
    created_at: float


@dataclass
class BulkResult:
    """Result of a bulk transition with a handle to undo it."""
    status: str
    updated_count: int
    outcomes: List[BulkOutcome] = field(default_factory=list)
    token: Optional[str] = None
    _undo: Optional[Callable[[], int]] = field(default=None, repr=False)

    def undo(self) -> int:
        """
        Restore every captured record to its own prior status.

        Returns:
            Number of records the restore write matched

        Raises:
            UndoUnavailableError: When nothing was captured, or the undo
                already ran or expired
        """
        if self._undo is None:
            raise UndoUnavailableError("Nothing to undo")
        return self._undo()

    def to_dict(self) -> Dict[str, object]:
        return {
            "status": self.status,
            "updated_count": self.updated_count,
            "undo_token": self.token,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


class BulkOperationCoordinator:
    """
    Runs bulk transitions and keeps their undo actions.

    Args:
        store: ApplicationRecordStore (or anything with the same methods)
        audit_service: AuditService for best-effort audit entries, optional
        undo_ttl: Seconds an undo stays available
        clock: Monotonic time source, injectable for tests
    """

    def __init__(self, store, audit_service=None, undo_ttl: float = UNDO_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.store = store
        self.audit_service = audit_service
        self.undo_ttl = undo_ttl
        self._clock = clock
        self._pending: Dict[str, PendingUndo] = {}
        self._lock = threading.Lock()

    def bulk_transition(self, application_ids: Iterable[str], target_status,
                        actor: Optional[str] = None) -> BulkResult:
        """
        Move every listed application to ``target_status``.

        Args:
            application_ids: Selected application IDs
            target_status: New status value
            actor: Email of the acting user, for the audit trail

        Returns:
            BulkResult with per-record outcomes and an undo handle

        Raises:
            InvalidStatusError: Before any read or write, for unknown values
        """
        status = parse_status(target_status)
        ids = list(dict.fromkeys(application_ids))

        with tracer.start_as_current_span("bulk.transition") as span:
            span.set_attributes({"bulk.requested": len(ids), "bulk.target_status": status.value})

            prior = {app["id"]: app.get("status") for app in self.store.get_applications(ids)}
            outcomes = [
                BulkOutcome(app_id, OUTCOME_UPDATED, prior[app_id]) if app_id in prior
                else BulkOutcome(app_id, OUTCOME_NOT_FOUND)
                for app_id in ids
            ]

            updated_count = self.store.set_status_many(list(prior), status.value) if prior else 0
            span.set_attribute("bulk.updated", updated_count)

            token = self._register(prior) if prior else None
            result = BulkResult(
                status=status.value,
                updated_count=updated_count,
                outcomes=outcomes,
                token=token,
                _undo=(lambda: self.undo(token)) if token else None,
            )

            if self.audit_service is not None:
                for app_id, previous in prior.items():
                    self.audit_service.log_action(
                        actor, "application", app_id, "bulk_status_change",
                        before={"status": previous}, after={"status": status.value}
                    )

            logger.info(
                "Bulk status change applied",
                extra={
                    "requested": len(ids),
                    "updated": updated_count,
                    "not_found": len(ids) - len(prior),
                    "status": status.value,
                    "undo_token": token
                }
            )
            return result

    def undo(self, token: str) -> int:
        """
        Run the undo registered under ``token``. Each token works once.

        Returns:
            Number of records the restore write matched

        Raises:
            UndoUnavailableError: For unknown, used or expired tokens
        """
        with self._lock:
            self._purge_expired()
            pending = self._pending.pop(token, None)

        if pending is None:
            raise UndoUnavailableError("Undo is no longer available for this operation")

        with tracer.start_as_current_span("bulk.undo") as span:
            span.set_attribute("bulk.restoring", len(pending.statuses))
            restored = self.store.restore_statuses(pending.statuses)

            if restored < len(pending.statuses):
                logger.warning(
                    "Undo restored fewer records than captured",
                    extra={"captured": len(pending.statuses), "restored": restored}
                )
            logger.info("Bulk status change undone", extra={"restored": restored, "undo_token": token})
            return restored

    def _register(self, statuses: Dict[str, str]) -> str:
        token = uuid.uuid4().hex
        with self._lock:
            self._purge_expired()
            self._pending[token] = PendingUndo(statuses=dict(statuses), created_at=self._clock())
        return token

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [t for t, p in self._pending.items() if now - p.created_at >= self.undo_ttl]
        for token in expired:
            del self._pending[token]
