"""Watches heartbeat history and tells the server when the agent should stop or resume."""

from __future__ import annotations

import logging
import os
import signal
import threading
from dataclasses import dataclass
from typing import Callable, Protocol

from chaosagent.heartbeat import HBSnapshot, HeartbeatHistory
from chaosagent.wire import API_EVENT, Request, Transport, TransportError

log = logging.getLogger(__name__)

MONITOR_INTERVAL = 10.0
HB_STOP_THRESHOLD = 12
HB_START_THRESHOLD = 3


@dataclass
class MonitorAction:
    """What the monitor should do after a check."""

    need_stop: bool = False
    need_start: bool = False
    need_exit: bool = False
    reason: str = ""

    def reset(self) -> None:
        """Clear every flag and the reason."""
        self.need_stop = False
        self.need_start = False
        self.need_exit = False
        self.reason = ""


class Checker(Protocol):
    def check(self) -> MonitorAction: ...


def _describe(walked: list[HBSnapshot]) -> str:
    return "".join(f"{{{snapshot.success}}}|" for snapshot in walked)


class HeartbeatChecker:
    """Decides on stop or start from runs of failed or successful heartbeats."""

    def __init__(
        self,
        history: HeartbeatHistory,
        stop_threshold: int = HB_STOP_THRESHOLD,
        start_threshold: int = HB_START_THRESHOLD,
    ) -> None:
        self.history = history
        self.stop_threshold = stop_threshold
        self.start_threshold = start_threshold
        self.already_stopped = False

    def _check_heartbeat(self, action: MonitorAction) -> None:
        failures = 0
        successes = 0
        walked: list[HBSnapshot] = []
        for snapshot in self.history.newest_first():
            walked.append(snapshot)
            if snapshot.success:
                successes += 1
                failures = 0
            else:
                failures += 1
                successes = 0

            if failures == self.stop_threshold:
                if not self.already_stopped:
                    self.already_stopped = True
                    action.reset()
                    action.need_stop = True
                    action.reason = "stop because of heartbeat"
                    log.warning("%s, walker list is : %s", action.reason, _describe(walked))
                return
            if successes == self.start_threshold:
                if self.already_stopped:
                    action.reset()
                    action.need_start = True
                    log.warning("can start because of heartbeat, walker list is : %s", _describe(walked))
                return

    def check(self) -> MonitorAction:
        """Look at the history and say whether to stop, start or do nothing."""
        action = MonitorAction()
        self._check_heartbeat(action)
        if action.need_stop or action.need_exit:
            return action
        if action.need_start:
            self.already_stopped = False
        return action


def _terminate_self() -> None:
    try:
        os.kill(os.getpid(), signal.SIGTERM)
    except OSError as exc:
        log.warning("the monitor send SIGTERM signal to self fail:%s", exc)
        os._exit(5)


class Monitor:
    """Runs a checker periodically and acts on what it finds."""

    def __init__(
        self,
        transport: Transport,
        checker: Checker,
        interval: float = MONITOR_INTERVAL,
        on_exit: Callable[[], None] | None = None,
    ) -> None:
        self.transport = transport
        self.checker = checker
        self.interval = interval
        self._on_exit = on_exit or _terminate_self
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Run checks in a background thread until stopped."""
        self._stopped.clear()
        self._thread = threading.Thread(target=self._loop, name="monitor", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the background checks."""
        self._stopped.set()
        if self._thread is not None:
            self._thread.join(self.interval + 1)
            self._thread = None

    def _loop(self) -> None:
        log.info("starting monitor")
        while not self._stopped.is_set():
            try:
                self.run_once()
            except Exception:
                log.exception("monitor check failed")
            self._stopped.wait(self.interval)

    def run_once(self) -> MonitorAction:
        """Do one check and act on it."""
        action = self.checker.check()
        if action.need_stop:
            self.stop_with_reason(f"monitor exception[{action.reason}], stop")
        if action.need_exit:
            log.warning("monitor error[%s], exit", action.reason)
            self._on_exit()
        if action.need_start:
            self.start_with_reason(f"recover[{action.reason}], start")
        return action

    def stop_with_reason(self, reason: str) -> threading.Thread:
        """Send a stop event to the server in the background."""
        log.warning("[Controller] send stop event to server, reason: %s", reason)
        return self._send_async("stop", reason)

    def start_with_reason(self, reason: str) -> threading.Thread:
        """Send a start event to the server in the background."""
        log.info("[Controller] send start event to server, reason: %s", reason)
        return self._send_async("start", reason)

    def _send_async(self, event: str, reason: str) -> threading.Thread:
        thread = threading.Thread(target=self._send_event, args=(event, reason), daemon=True)
        thread.start()
        return thread

    def _send_event(self, event: str, reason: str) -> bool:
        uri = self.transport.uris.get(API_EVENT)
        if uri is None:
            return False
        request = Request().add_param("event", event).add_param("reason", reason)
        try:
            self.transport.invoke(uri, request, True)
        except TransportError as exc:
            log.warning("[Monitor] send %s event with %s reason to server error %s.", event, reason, exc)
            return False
        log.info("[Monitor] send %s event with %s reason to server successfully.", event, reason)
        return True