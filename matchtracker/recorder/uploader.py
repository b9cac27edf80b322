"""Background delivery of persisted session records to the remote collector."""

from __future__ import annotations

import logging
from pathlib import Path
import threading
from typing import Any, Callable

import httpx

from matchtracker.recorder.config import RecorderSettings
from matchtracker.recorder.identity import load_or_create_installation_id
from matchtracker.recorder.models import UploadOutcome
from matchtracker.recorder.store import RecordStore, read_document

logger = logging.getLogger(__name__)

Sender = Callable[[dict[str, Any]], bool]

GATE_POLL_SECONDS = 0.1


class CollectorClient:
    """POSTs one record per request; any 2xx response is an acknowledgment."""

    def __init__(self, url: str, timeout: float = 15.0, transport: httpx.BaseTransport | None = None) -> None:
        self.url = url
        self.timeout = timeout
        self._transport = transport

    def __call__(self, payload: dict[str, Any]) -> bool:
        return self.send(payload)

    def send(self, payload: dict[str, Any]) -> bool:
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.post(self.url, json=payload)
        except httpx.TimeoutException:
            logger.warning("Collector request timed out after %.1fs", self.timeout)
            return False
        except httpx.HTTPError as exc:
            logger.warning("Collector request failed: %s", exc)
            return False
        if response.is_success:
            return True
        logger.warning("Collector rejected record: HTTP %s", response.status_code)
        return False


class UploadPipeline:
    """Serialized, rate-limited, cancellable delivery of stored records.

    Every send, immediate or backlog, passes through one gate so at most one
    upload is in flight and the inter-upload delay holds between any two sends.
    """

    def __init__(
        self,
        store: RecordStore,
        sender: Sender,
        installation_id: str,
        max_attempts: int = 3,
        retry_delay: float = 3.0,
        upload_delay: float = 1.0,
        backlog_limit: int = 50,
        backlog_delay: float = 10.0,
    ) -> None:
        self.store = store
        self.sender = sender
        self.installation_id = installation_id
        self.max_attempts = max(1, max_attempts)
        self.retry_delay = retry_delay
        self.upload_delay = upload_delay
        self.backlog_limit = backlog_limit
        self.backlog_delay = backlog_delay
        self._gate = threading.Lock()
        self._cancel = threading.Event()
        self._threads: list[threading.Thread] = []
        self._backlog_started = False

    @classmethod
    def from_settings(cls, settings: RecorderSettings, store: RecordStore) -> "UploadPipeline":
        return cls(
            store=store,
            sender=CollectorClient(settings.collector_url, timeout=settings.request_timeout),
            installation_id=load_or_create_installation_id(settings.storage_dir),
            max_attempts=settings.max_attempts,
            retry_delay=settings.retry_delay,
            upload_delay=settings.upload_delay,
            backlog_limit=settings.backlog_limit,
            backlog_delay=settings.backlog_delay,
        )

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def _wait(self, seconds: float) -> bool:
        """Sleep unless cancelled; returns True when cancellation was requested."""
        if seconds <= 0:
            return self._cancel.is_set()
        return self._cancel.wait(seconds)

    def _acquire_gate(self) -> bool:
        while not self._cancel.is_set():
            if self._gate.acquire(timeout=GATE_POLL_SECONDS):
                return True
        return False

    def _send(self, payload: dict[str, Any]) -> bool:
        """Run one request on its own thread so cancellation can abandon it.

        An abandoned request never counts as delivered, so its record stays
        pending even if the collector received it.
        """
        result: dict[str, bool] = {}
        finished = threading.Event()

        def run() -> None:
            try:
                result["ok"] = bool(self.sender(payload))
            except Exception:
                logger.exception("Sender failed")
            finally:
                finished.set()

        threading.Thread(target=run, name="upload-request", daemon=True).start()
        while not finished.wait(GATE_POLL_SECONDS):
            if self._cancel.is_set():
                logger.info("Upload cancelled with a request in flight")
                return False
        return result.get("ok", False)

    def deliver(self, path: Path) -> UploadOutcome:
        if not self._acquire_gate():
            return UploadOutcome(path=path, delivered=False, attempts=0)
        try:
            return self._deliver_locked(path)
        finally:
            self._gate.release()

    def _deliver_locked(self, path: Path) -> UploadOutcome:
        try:
            document = read_document(self.store.load_record(path))
        except FileNotFoundError:
            logger.info("Record %s already delivered or removed", path.name)
            return UploadOutcome(path=path, delivered=False, attempts=0)
        except (OSError, ValueError):
            logger.exception("Could not read record %s", path)
            return UploadOutcome(path=path, delivered=False, attempts=0)

        payload = document.model_dump(mode="json", by_alias=True)
        payload["installationId"] = self.installation_id
        attempts = 0
        for attempt in range(1, self.max_attempts + 1):
            if self._cancel.is_set():
                break
            attempts = attempt
            if self._send(payload):
                delivered_path: Path | None = None
                try:
                    delivered_path = self.store.mark_delivered(path)
                except OSError:
                    logger.exception("Delivered %s but could not mark it", path.name)
                logger.info("Uploaded record %s", path.name)
                self._wait(self.upload_delay)
                return UploadOutcome(path=path, delivered=True, attempts=attempts, delivered_path=delivered_path)

            logger.warning("Failed to upload %s (attempt %d/%d)", path.name, attempt, self.max_attempts)
            if attempt < self.max_attempts and self._wait(self.retry_delay):
                break

        logger.warning("Giving up on %s after %d attempts; it stays pending", path.name, attempts)
        return UploadOutcome(path=path, delivered=False, attempts=attempts)

    def deliver_backlog(self) -> list[UploadOutcome]:
        pending = self.store.pending_records()
        if not pending:
            logger.info("No past records to upload")
            return []
        batch = pending[: self.backlog_limit]
        if len(pending) > len(batch):
            logger.info("Uploading %d of %d pending records; the rest wait for the next run", len(batch), len(pending))

        outcomes: list[UploadOutcome] = []
        for path in batch:
            if self._cancel.is_set():
                logger.info("Backlog upload cancelled")
                break
            outcomes.append(self.deliver(path))
        delivered = sum(1 for outcome in outcomes if outcome.delivered)
        logger.info("Uploaded %d/%d past records", delivered, len(batch))
        return outcomes

    def _spawn(self, name: str, target: Callable[[], Any]) -> threading.Thread:
        def run() -> None:
            try:
                target()
            except Exception:
                logger.exception("Upload worker %s failed", name)

        thread = threading.Thread(target=run, name=name, daemon=True)
        self._threads = [worker for worker in self._threads if worker.is_alive()]
        self._threads.append(thread)
        thread.start()
        return thread

    def submit(self, path: Path) -> threading.Thread:
        """Deliver one freshly persisted record without blocking the caller."""
        return self._spawn(f"upload-{path.name}", lambda: self.deliver(path))

    def start_backlog(self) -> threading.Thread | None:
        """Start the once-per-process backlog run after the startup delay."""
        if self._backlog_started:
            return None
        self._backlog_started = True

        def run() -> None:
            if self._wait(self.backlog_delay):
                return
            self.deliver_backlog()

        return self._spawn("upload-backlog", run)

    def shutdown(self, timeout: float = 5.0) -> None:
        self._cancel.set()
        for thread in list(self._threads):
            thread.join(timeout)
