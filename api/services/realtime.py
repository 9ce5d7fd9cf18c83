# SPDX-License-Identifier: Apache-2.0

"""
Realtime sync for the admin dashboard list view.

Change events from the applications collection and a periodic poll both
funnel into one ``reload()``: every event triggers a full reload of the
current page and filter, and the poll reloads on a fixed interval whether or
not the event source is connected. Reloads are serialized and replace the
view wholesale, so the last completed reload wins.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional
from opentelemetry import trace

from models.enums import ChangeKind
from domain.applications import (
    ApplicationFilters,
    application_reference,
    humanize_status,
    normalize_status_filter,
    summarize_status_counts,
)
from services.bulk import SelectionSet
from services.mongodb import to_api_document

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_POLL_INTERVAL = 30.0
DEFAULT_PAGE_SIZE = 10
MAX_NOTICES = 20
IDLE_WAIT_SECONDS = 0.5

_OPERATION_KINDS = {
    "insert": ChangeKind.INSERT.value,
    "update": ChangeKind.UPDATE.value,
    "replace": ChangeKind.UPDATE.value,
    "delete": ChangeKind.DELETE.value,
}


@dataclass
class ApplicationChangeEvent:
    """One insert, update or delete observed on the applications collection."""
    kind: str
    new: Optional[Dict[str, Any]] = None
    old: Optional[Dict[str, Any]] = None
    changed_fields: Optional[List[str]] = None

    @classmethod
    def from_change(cls, change: Dict[str, Any]) -> Optional["ApplicationChangeEvent"]:
        """
        Build an event from a MongoDB change stream document.

        Update events carry the names of the changed fields so a missing
        pre-image still tells whether the status moved. Returns None for
        operation types the dashboard does not track.
        """
        kind = _OPERATION_KINDS.get(change.get("operationType"))
        if kind is None:
            return None

        new = to_api_document(change.get("fullDocument"))
        old = to_api_document(change.get("fullDocumentBeforeChange"))
        if kind == ChangeKind.DELETE.value and old is None:
            old = to_api_document(change.get("documentKey"))

        changed_fields = None
        description = change.get("updateDescription")
        if description is not None:
            changed_fields = sorted(set(description.get("updatedFields") or {})
                                    | set(description.get("removedFields") or []))
        return cls(kind=kind, new=new, old=old, changed_fields=changed_fields)


@dataclass
class Notice:
    """User-facing notice emitted for a change."""
    kind: str
    message: str
    application_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "application_id": self.application_id,
            "created_at": self.created_at.isoformat() + "Z",
        }


@dataclass
class DashboardPage:
    """What a loader returns for one page and filter."""
    items: List[Dict[str, Any]]
    total: int
    stats: Dict[str, int] = field(default_factory=dict)


@dataclass
class DashboardView:
    """Current dashboard state. Replaced wholesale on every reload."""
    items: List[Dict[str, Any]] = field(default_factory=list)
    total: int = 0
    stats: Dict[str, int] = field(default_factory=dict)
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    status_filter: Optional[str] = None
    search: Optional[str] = None
    last_reloaded_at: Optional[datetime] = None


class DashboardLoader:
    """Loads one dashboard page and the status counts from the record store."""

    def __init__(self, store):
        self.store = store

    def __call__(self, page: int, page_size: int, status: Optional[str],
                 search: Optional[str]) -> DashboardPage:
        result = self.store.paginate_applications(
            ApplicationFilters(status=status, search=search), page=page, page_size=page_size
        )
        stats = summarize_status_counts(self.store.count_by_status())
        return DashboardPage(items=result.items, total=result.total, stats=stats)


def status_changed(event: ApplicationChangeEvent) -> bool:
    """Whether an update moved the application to another status."""
    if event.old:
        return (event.new or {}).get("status") != event.old.get("status")
    if event.changed_fields is not None:
        return "status" in event.changed_fields
    return True


def describe_event(event: ApplicationChangeEvent) -> Optional[Notice]:
    """
    Build the notice for an event.

    Inserts name the application type, status changes name the reference
    and new status, deletes get a generic message. Updates that leave the
    status unchanged produce no notice. Without a pre-image the changed field
    names decide; a replace with neither is reported.
    """
    if event.kind == ChangeKind.INSERT.value:
        new = event.new or {}
        return Notice(
            kind=event.kind,
            message=f"New {new.get('type', 'permit')} application submitted",
            application_id=new.get("id"),
        )

    if event.kind == ChangeKind.UPDATE.value:
        new = event.new or {}
        if not new or not status_changed(event):
            return None
        return Notice(
            kind=event.kind,
            message=(f"Application {application_reference(new)} status changed to "
                     f"{humanize_status(new.get('status'))}"),
            application_id=new.get("id"),
        )

    if event.kind == ChangeKind.DELETE.value:
        return Notice(
            kind=event.kind,
            message="An application was removed",
            application_id=(event.old or {}).get("id"),
        )

    return None


class RealtimeSyncLayer:
    """
    Keeps the dashboard view in sync with the applications collection.

    Args:
        loader: Callable ``(page, page_size, status, search) -> DashboardPage``
        event_source: Callable opening a change stream (iterable of change
            documents, or a pymongo ChangeStream); None disables events
        notify: Sink for notices; failures are logged and ignored
        poll_interval: Seconds between fallback reloads, 0 disables polling
        page_size: Items per dashboard page
    """

    def __init__(self, loader: Callable[..., DashboardPage],
                 event_source: Optional[Callable[[], Iterable[Dict[str, Any]]]] = None,
                 notify: Optional[Callable[[Notice], None]] = None,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 page_size: int = DEFAULT_PAGE_SIZE):
        self.loader = loader
        self.event_source = event_source
        self.notify = notify
        self.poll_interval = poll_interval

        self._view = DashboardView(page_size=page_size)
        self._view_lock = threading.Lock()
        self._reload_lock = threading.Lock()
        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []
        self._stream = None
        self._connected = False
        self._new_items_count = 0
        self._notices: Deque[Notice] = deque(maxlen=MAX_NOTICES)
        self.selection = SelectionSet()

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def new_items_count(self) -> int:
        with self._view_lock:
            return self._new_items_count

    @property
    def view(self) -> DashboardView:
        with self._view_lock:
            return self._view

    def start(self) -> None:
        """
        Load the first page and start the event consumer and the poller.

        Does nothing while already running; a stopped layer can be started again.
        """
        if any(thread.is_alive() for thread in self._threads):
            return
        self._threads = []
        self._stop.clear()
        self.reload()

        if self.event_source is not None:
            self._spawn("realtime-consumer", self._consume)
        if self.poll_interval and self.poll_interval > 0:
            self._spawn("realtime-poller", self._poll)

        logger.info(
            "Realtime sync started",
            extra={"events": self.event_source is not None, "poll_interval": self.poll_interval}
        )

    def stop(self) -> None:
        """Release the subscription and the poll timer. Safe to call twice."""
        if self._stop.is_set():
            return
        self._stop.set()

        stream = self._stream
        if stream is not None and hasattr(stream, "close"):
            try:
                stream.close()
            except Exception as e:
                logger.warning(f"Error closing change stream: {str(e)}")

        for thread in self._threads:
            if thread is not threading.current_thread():
                thread.join(timeout=5)
        self._threads = []
        self._connected = False
        logger.info("Realtime sync stopped")

    def reload(self) -> DashboardView:
        """
        Reload the current page and filter.

        Loader failures are logged and keep the previous view.
        """
        with self._reload_lock:
            current = self.view
            with tracer.start_as_current_span("realtime.reload") as span:
                span.set_attributes({"dashboard.page": current.page, "dashboard.page_size": current.page_size})
                try:
                    page = self.loader(current.page, current.page_size, current.status_filter, current.search)
                except Exception as e:
                    span.record_exception(e)
                    logger.error(f"Dashboard reload failed: {str(e)}")
                    return current

            new_view = DashboardView(
                items=page.items,
                total=page.total,
                stats=page.stats,
                page=current.page,
                page_size=current.page_size,
                status_filter=current.status_filter,
                search=current.search,
                last_reloaded_at=datetime.utcnow(),
            )
            with self._view_lock:
                self._view = new_view
            self.selection.retain(item.get("id") for item in new_view.items)
            return new_view

    def set_view(self, page: Optional[int] = None, status: Optional[str] = None,
                 search: Optional[str] = None) -> DashboardView:
        """
        Change page, status filter or search, then reload.

        Changing the filter or search returns to page one.

        Raises:
            InvalidStatusError: For an unknown status filter
        """
        with self._reload_lock:
            current = self.view
            status_filter = current.status_filter
            search_text = current.search
            target_page = current.page

            if status is not None:
                status_filter = normalize_status_filter(status)
                target_page = 1
            if search is not None:
                search_text = search.strip() or None
                target_page = 1
            if page is not None:
                target_page = page

            with self._view_lock:
                self._view = DashboardView(
                    items=current.items,
                    total=current.total,
                    stats=current.stats,
                    page=target_page,
                    page_size=current.page_size,
                    status_filter=status_filter,
                    search=search_text,
                    last_reloaded_at=current.last_reloaded_at,
                )
        return self.reload()

    def handle_event(self, event: Optional[ApplicationChangeEvent]) -> None:
        """Emit the notice for one event, then reload."""
        if event is None:
            return

        with tracer.start_as_current_span("realtime.handle_event") as span:
            span.set_attribute("realtime.kind", event.kind)

            if event.kind == ChangeKind.INSERT.value:
                with self._view_lock:
                    self._new_items_count += 1

            notice = describe_event(event)
            if notice is not None:
                self._emit(notice)

            self.reload()

    def reset_new_items(self) -> None:
        with self._view_lock:
            self._new_items_count = 0

    def snapshot(self) -> Dict[str, Any]:
        """JSON-ready dashboard state."""
        view = self.view
        return {
            "items": view.items,
            "total": view.total,
            "stats": view.stats,
            "page": view.page,
            "page_size": view.page_size,
            "status_filter": view.status_filter or "all",
            "search": view.search,
            "last_reloaded_at": view.last_reloaded_at.isoformat() + "Z" if view.last_reloaded_at else None,
            "new_items_count": self.new_items_count,
            "connected": self._connected,
            "selected_ids": self.selection.ids,
            "notices": [notice.to_dict() for notice in list(self._notices)],
        }

    def _emit(self, notice: Notice) -> None:
        self._notices.append(notice)
        if self.notify is None:
            return
        try:
            self.notify(notice)
        except Exception as e:
            logger.warning(f"Notice delivery failed: {str(e)}")

    def _spawn(self, name: str, target: Callable[[], None]) -> None:
        thread = threading.Thread(target=target, name=name, daemon=True)
        self._threads.append(thread)
        thread.start()

    def _consume(self) -> None:
        try:
            self._stream = self.event_source()
            self._connected = True
            logger.info("Realtime change stream connected")

            if hasattr(self._stream, "try_next"):
                while not self._stop.is_set():
                    change = self._stream.try_next()
                    if change is None:
                        self._stop.wait(IDLE_WAIT_SECONDS)
                        continue
                    self.handle_event(ApplicationChangeEvent.from_change(change))
            else:
                for change in self._stream:
                    if self._stop.is_set():
                        break
                    self.handle_event(ApplicationChangeEvent.from_change(change))

        except Exception as e:
            if not self._stop.is_set():
                logger.error(f"Realtime change stream failed: {str(e)}")
        finally:
            self._connected = False

    def _poll(self) -> None:
        while not self._stop.wait(self.poll_interval):
            self.reload()
