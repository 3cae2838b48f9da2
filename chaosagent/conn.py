"""Registry of client handlers that are started together."""

from __future__ import annotations

import logging
import os
import threading
from abc import ABC, abstractmethod
from typing import Callable

log = logging.getLogger(__name__)


class ClientHandler(ABC):
    """Something that keeps a connection with the server alive."""

    @abstractmethod
    def start(self) -> None:
        """Start the handler; raise on failure."""

    def stop(self) -> None:
        """Stop the handler; the default does nothing."""


class ConnectionStartError(Exception):
    """A registered handler failed to start."""

    def __init__(self, name: str, cause: BaseException) -> None:
        super().__init__(f"conn {name} start failed: {cause}")
        self.name = name


def _exit_process(error: ConnectionStartError) -> None:
    log.error("register conn failed, err: %s", error)
    os._exit(1)


class Conn:
    """Holds named handlers and starts each of them in its own thread."""

    def __init__(self, on_failure: Callable[[ConnectionStartError], None] | None = None) -> None:
        self._handlers: dict[str, ClientHandler] = {}
        self._lock = threading.Lock()
        self._on_failure = on_failure or _exit_process

    def register(self, name: str, handler: ClientHandler) -> None:
        """Add a handler, replacing any earlier one with the same name."""
        with self._lock:
            self._handlers[name] = handler

    def _run(self, name: str, handler: ClientHandler) -> None:
        log.info("conn start: %s", name)
        try:
            handler.start()
        except Exception as exc:
            log.warning("conn start failed, %s: %s", name, exc)
            error = ConnectionStartError(name, exc)
            error.__cause__ = exc
            self._on_failure(error)

    def start(self) -> list[threading.Thread]:
        """Start every handler; a failure goes to the failure callback."""
        with self._lock:
            handlers = list(self._handlers.items())
        threads = []
        for name, handler in handlers:
            thread = threading.Thread(target=self._run, args=(name, handler), name=f"conn-{name}", daemon=True)
            thread.start()
            threads.append(thread)
        return threads