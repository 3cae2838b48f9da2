"""Periodic heartbeat to the server, with a short history of results."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Iterator

from chaosagent.wire import (
    API_HEARTBEAT,
    APP_GROUP_KEY,
    APP_INSTANCE_KEY,
    AgentSettings,
    Request,
    Transport,
    TransportError,
    Uri,
)

log = logging.getLogger(__name__)

HISTORY_SIZE = 26


@dataclass(frozen=True)
class HBSnapshot:
    """Outcome of one heartbeat."""

    success: bool


class HeartbeatHistory:
    """The most recent heartbeat outcomes, oldest dropped first."""

    def __init__(self, capacity: int = HISTORY_SIZE) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._items: deque[HBSnapshot] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def put(self, snapshot: HBSnapshot) -> None:
        """Record an outcome."""
        with self._lock:
            self._items.append(snapshot)

    def newest_first(self) -> Iterator[HBSnapshot]:
        """Iterate over a copy of the outcomes, most recent first."""
        with self._lock:
            items = list(self._items)
        return reversed(items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


@dataclass
class HeartbeatConfig:
    """How often a heartbeat is sent, in seconds."""

    period: float


class HeartbeatHandler:
    """Sends a heartbeat every period and records whether it got through."""

    def __init__(
        self,
        config: HeartbeatConfig,
        transport: Transport,
        settings: AgentSettings,
        history: HeartbeatHistory | None = None,
    ) -> None:
        self.config = config
        self.transport = transport
        self.settings = settings
        self.history = history if history is not None else HeartbeatHistory()
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    def _log_context(self) -> str:
        s = self.settings
        return (
            f"cid={s.cid} ver={s.version} vpcId={s.vpc_id} cbv={s.chaosblade_version} "
            f"appInstance={s.application_instance} appGroup={s.application_group}"
        )

    def _loop(self) -> None:
        while not self._stopped.wait(self.config.period):
            try:
                uri = self.transport.uris.get(API_HEARTBEAT, Uri())
                self.send_heartbeat(uri, self.build_request())
            except Exception:
                log.exception("[heartbeat] unexpected failure")

    def start(self) -> None:
        """Begin sending heartbeats in a background thread."""
        self._stopped.clear()
        self._thread = threading.Thread(target=self._loop, name="heartbeat", daemon=True)
        self._thread.start()
        log.info("[heartbeat] start successfully %s", self._log_context())

    def stop(self) -> None:
        """Stop sending heartbeats."""
        self._stopped.set()
        if self._thread is not None:
            self._thread.join(self.config.period + 1)
            self._thread = None

    def build_request(self) -> Request:
        """The request sent with each heartbeat."""
        request = Request()
        if self.settings.external_ip_enable:
            request.add_param("ip", self.settings.ip)
        request.add_param(APP_INSTANCE_KEY, self.settings.application_instance)
        request.add_param(APP_GROUP_KEY, self.settings.application_group)
        return request

    def send_heartbeat(self, uri: Uri, request: Request) -> bool:
        """Send one heartbeat, record its outcome and return it."""
        try:
            response = self.transport.invoke(uri, request, True)
        except TransportError as exc:
            log.error("[heartbeat] send failed. %s %s", exc, self._log_context())
            self.history.put(HBSnapshot(False))
            return False
        if not response.success:
            log.error("[heartbeat] send failed. %s %s", response, self._log_context())
            self.history.put(HBSnapshot(False))
            return False
        log.info("[heartbeat] success %s", self._log_context())
        self.history.put(HBSnapshot(True))
        return True