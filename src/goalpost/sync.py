"""Best-effort synchronization between the local repository and the remote store.

Pull on load: remote data wins when the remote has any; otherwise local data
seeds the remote; otherwise the sample dataset is used. The exception is a
local copy marked unsynced (edited since its last successful push): it is
pushed rather than overwritten.

Push on change: every mutation restarts a debounce timer, and when it fires
the whole milestone collection plus the last view is written in one request.
This is whole-document last-writer-wins. Two clients editing the same
namespace overwrite each other; there is no merge and no version check.
A failed push leaves the local cache authoritative and unsynced; it is
retried on the next mutation or the next pull.
"""
from __future__ import annotations

import json
import socket
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from urllib import error as urllib_error, parse as urllib_parse, request as urllib_request

from . import models, seed
from .errors import RemoteError, RemoteUnavailable
from .log import get_logger
from .repository import MilestoneRepository, normalize_milestones

logger = get_logger(__name__)

SYNCED = "synced"
SYNCING = "syncing"
OFFLINE = "offline"
ERROR = "error"

SOURCE_REMOTE = "remote"
SOURCE_LOCAL = "local"
SOURCE_SAMPLE = "sample"
SOURCE_EMPTY = "empty"

MILESTONES_PATH = "/api/milestones"
SUMMARY_PATH = "/api/summary"


@dataclass(frozen=True)
class RemoteSnapshot:
    milestones: List[Any] = field(default_factory=list)
    last_view: Dict[str, Any] = field(default_factory=lambda: models.DASHBOARD.to_dict())


class RemoteClient:
    """JSON-over-HTTP client for the remote handlers in :mod:`goalpost.server`."""

    def __init__(self, base_url: str, namespace: str, timeout: float = 15.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.namespace = namespace
        self.timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}?{urllib_parse.urlencode({'user': self.namespace})}"

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        request_obj = urllib_request.Request(
            self._url(path),
            data=data,
            method=method,
            headers={"Content-Type": "application/json"},
        )
        try:
            with urllib_request.urlopen(request_obj, timeout=self.timeout) as response:
                body = response.read().decode("utf-8")
        except urllib_error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise RemoteError(f"{method} {path} failed with {exc.code}: {detail}") from exc
        except (urllib_error.URLError, socket.timeout, TimeoutError, ConnectionError) as exc:
            raise RemoteUnavailable(f"{method} {path} could not reach {self.base_url}: {exc}") from exc
        if not body:
            return None
        try:
            return json.loads(body)
        except json.JSONDecodeError:
            logger.warning("Ignoring non-JSON response from %s %s", method, path)
            return None

    def fetch(self) -> RemoteSnapshot:
        """Read the remote document; anything malformed reads as empty."""
        body = self._request("GET", MILESTONES_PATH)
        if not isinstance(body, dict):
            return RemoteSnapshot()
        milestones = body.get("milestones")
        return RemoteSnapshot(
            milestones=milestones if isinstance(milestones, list) else [],
            last_view=models.ViewState.from_dict(body.get("lastView")).to_dict(),
        )

    def save(self, milestones: Optional[List[Any]] = None, last_view: Optional[Dict[str, Any]] = None) -> None:
        payload: Dict[str, Any] = {}
        if milestones is not None:
            payload["milestones"] = milestones
        if last_view is not None:
            payload["lastView"] = last_view
        self._request("POST", MILESTONES_PATH, payload)

    def summarize(self, payload: Dict[str, Any]) -> str:
        body = self._request("POST", SUMMARY_PATH, payload)
        if not isinstance(body, dict) or not isinstance(body.get("summary"), str):
            raise RemoteError("Summary response did not contain text")
        return body["summary"]


class Debouncer:
    """Run ``action`` once after ``delay`` seconds without another ``trigger``."""

    def __init__(self, delay: float, action: Callable[[], Any], timer_factory: Callable[..., threading.Timer] = threading.Timer) -> None:
        self.delay = delay
        self.action = action
        self.timer_factory = timer_factory
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def trigger(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = self.timer_factory(self.delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
        self.action()

    def cancel(self) -> bool:
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is None:
            return False
        timer.cancel()
        return True

    def flush(self) -> None:
        """Run a pending action now instead of waiting for the timer."""
        if self.cancel():
            self.action()


class SyncService:
    def __init__(
        self,
        repository: MilestoneRepository,
        client: RemoteClient,
        *,
        debounce_seconds: float = 1.0,
        on_status: Optional[Callable[[str], None]] = None,
        sample_factory: Callable[[], List[Dict[str, Any]]] = seed.sample_milestones,
    ) -> None:
        self.repository = repository
        self.client = client
        self.on_status = on_status
        self.sample_factory = sample_factory
        self.status = SYNCED
        self.last_error: Optional[str] = None
        self._debouncer = Debouncer(debounce_seconds, self.push_now)
        self._attached = False

    def _set_status(self, status: str, error: Optional[str] = None) -> None:
        self.status = status
        self.last_error = error
        if self.on_status:
            self.on_status(status)

    def attach(self) -> "SyncService":
        """Schedule a push after every repository mutation."""
        if not self._attached:
            self.repository.subscribe(lambda _repo: self.schedule_push())
            self._attached = True
        return self

    # -- pull --------------------------------------------------------------

    def pull(self, with_sample: bool = True) -> str:
        """Cold-start load. Returns which source became the working set.

        Local edits that never reached the remote are pushed instead of being
        replaced by the remote copy.
        """
        self._set_status(SYNCING)
        try:
            snapshot = self.client.fetch()
        except RemoteUnavailable as exc:
            logger.warning("Remote unavailable, continuing offline: %s", exc)
            self._set_status(OFFLINE, str(exc))
            return self._fallback_local(with_sample)
        except RemoteError as exc:
            logger.error("Remote pull failed: %s", exc)
            self._set_status(ERROR, str(exc))
            return self._fallback_local(with_sample)

        if self.repository.unsynced:
            logger.info("Local edits were never pushed; sending them instead of adopting the remote copy")
            self.push_now()
            return SOURCE_LOCAL
        remote = self.repository.read(snapshot.milestones)
        if remote:
            self.repository.replace_all(remote, models.ViewState.from_dict(snapshot.last_view))
            self._set_status(SYNCED)
            logger.info("Loaded %d milestones from remote", len(remote))
            return SOURCE_REMOTE
        if self.repository.has_data():
            logger.info("Remote is empty; seeding it from the local cache")
            self.push_now()
            return SOURCE_LOCAL
        self._set_status(SYNCED)
        if not with_sample:
            return SOURCE_EMPTY
        self._adopt_sample()
        return SOURCE_SAMPLE

    def _fallback_local(self, with_sample: bool = True) -> str:
        if self.repository.has_data():
            return SOURCE_LOCAL
        if not with_sample:
            return SOURCE_EMPTY
        self._adopt_sample()
        return SOURCE_SAMPLE

    def _adopt_sample(self) -> None:
        sample = normalize_milestones(self.sample_factory())
        self.repository.replace_all(sample, models.DASHBOARD)
        logger.info("No stored data anywhere; loaded %d sample milestones", len(sample))

    def refresh(self) -> bool:
        """Manual refresh: adopt the remote copy when it has data."""
        self._set_status(SYNCING)
        try:
            snapshot = self.client.fetch()
        except (RemoteUnavailable, RemoteError) as exc:
            logger.error("Refresh failed: %s", exc)
            self._set_status(ERROR, str(exc))
            return False
        remote = self.repository.read(snapshot.milestones)
        if remote:
            self._debouncer.cancel()
            self.repository.replace_all(remote, models.ViewState.from_dict(snapshot.last_view))
            self.repository.mark_synced()
        self._set_status(SYNCED)
        return True

    # -- push --------------------------------------------------------------

    def schedule_push(self) -> None:
        self._debouncer.trigger()

    @property
    def push_pending(self) -> bool:
        return self._debouncer.pending

    def flush(self) -> None:
        self._debouncer.flush()

    def push_now(self) -> bool:
        document = self.repository.to_document()
        self._set_status(SYNCING)
        try:
            self.client.save(document["milestones"], document["lastView"])
        except RemoteUnavailable as exc:
            logger.warning("Push failed, remote unavailable: %s", exc)
            self._set_status(ERROR, str(exc))
            return False
        except RemoteError as exc:
            logger.error("Push failed: %s", exc)
            self._set_status(ERROR, str(exc))
            return False
        if self.repository.to_document() == document:
            self.repository.mark_synced()
        self._set_status(SYNCED)
        return True

    def close(self, flush: bool = True) -> None:
        if flush:
            self.flush()
        else:
            self._debouncer.cancel()
