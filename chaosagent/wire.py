"""Request and response types for the chaos server, and small one-shot reporters."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

log = logging.getLogger(__name__)

API_REGISTRY = "registry"
API_HEARTBEAT = "heartbeat"
API_METRIC = "metric"
API_CLOSE = "close"
API_EVENT = "event"
API_UPGRADE_CALLBACK = "upgradeCallback"

APP_INSTANCE_KEY = "appInstance"
APP_GROUP_KEY = "appGroup"


@dataclass
class Uri:
    """Address of one server endpoint."""

    server_name: str = ""
    handler_name: str = ""
    compress_version: str = ""


@dataclass
class Request:
    """A set of string parameters sent to the server."""

    params: dict[str, str] = field(default_factory=dict)

    def add_param(self, key: str, value: str) -> "Request":
        """Set a parameter and return the request, so calls can be chained."""
        self.params[key] = value
        return self


@dataclass
class Response:
    """What the server answered."""

    success: bool
    result: Any = None
    error: str = ""
    code: int = 0


class TransportError(Exception):
    """Raised when a request could not be delivered to the server."""


Sender = Callable[[Uri, Request, bool], Response]


class Transport:
    """Sends requests through a sender callable and knows the endpoint addresses."""

    def __init__(self, sender: Sender, uris: Mapping[str, Uri] | None = None) -> None:
        self._sender = sender
        self.uris: dict[str, Uri] = dict(uris or {})

    def invoke(self, uri: Uri, request: Request, sign: bool) -> Response:
        """Deliver a request; any failure of the sender becomes a TransportError."""
        try:
            return self._sender(uri, request, sign)
        except TransportError:
            raise
        except Exception as exc:
            raise TransportError(f"invoke {uri.handler_name or uri.server_name} failed: {exc}") from exc


@dataclass
class AgentSettings:
    """Runtime settings of the agent that go into requests and log records."""

    ip: str = ""
    application_instance: str = ""
    application_group: str = ""
    external_ip_enable: bool = False
    cid: str = ""
    version: str = ""
    vpc_id: str = ""
    chaosblade_version: str = ""


class AsyncReportHandler:
    """Reports the result of an asynchronous chaos tool operation."""

    def __init__(self, transport: Transport) -> None:
        self._transport = transport

    def report_status(self, uid: str, status: str, error_msg: str, tool_type: str, uri: Uri) -> bool:
        """Send the status of an operation; return whether the server accepted it."""
        record = f"uid: {uid}, status: {status}"
        request = Request().add_param("uid", uid).add_param("status", status)
        if error_msg:
            request.add_param("error", error_msg)
        if tool_type:
            request.add_param("ToolType", tool_type)
        log.info("report install status: %s", request.params)
        try:
            response = self._transport.invoke(uri, request, True)
        except TransportError as exc:
            log.warning("Report status err, %s, %s", exc, record)
            return False
        if not response.success:
            log.warning("Report status failed, %s, %s", response.error, record)
            return False
        log.info("Report status success, %s", record)
        return True


class CallbackHandler:
    """Tells the server how an upgrade went."""

    def __init__(self, transport: Transport) -> None:
        self._transport = transport

    def callback(
        self,
        status: int,
        old_version: str,
        new_version: str,
        curr_version: str,
        message: str,
        program_type: str,
    ) -> bool:
        """Send the upgrade result; return False when there is no endpoint or it failed."""
        uri = self._transport.uris.get(API_UPGRADE_CALLBACK)
        if uri is None:
            return False
        request = (
            Request()
            .add_param("oldVersion", old_version)
            .add_param("newVersion", new_version)
            .add_param("currVersion", curr_version)
            .add_param("status", str(status))
            .add_param("message", message)
            .add_param("type", program_type)
        )
        try:
            response = self._transport.invoke(uri, request, True)
        except TransportError as exc:
            log.warning("invoke upgrade callback err, %s", exc)
            return False
        if not response.success:
            log.warning("invoke upgrade callback failed, %s", response.error)
            return False
        return True


class CloseHandler:
    """Announces to the server that the agent is going away."""

    def __init__(self, transport: Transport, grace_period: float = 2.0) -> None:
        self._transport = transport
        self.grace_period = grace_period

    def _notify(self) -> None:
        log.info("Invoking chaos-chaos service to close")
        uri = self._transport.uris.get(API_CLOSE, Uri())
        try:
            response = self._transport.invoke(uri, Request(), True)
        except TransportError as exc:
            log.warning("Invoking %s service err: %s", uri.server_name, exc)
            return
        if not response.success:
            log.warning("Invoking chaos-chaos service failed, %s", response.error)

    def shutdown(self) -> None:
        """Send the close notice, waiting at most the grace period for it."""
        log.info("Agent closing")
        notifier = threading.Thread(target=self._notify, name="agent-close", daemon=True)
        notifier.start()
        notifier.join(self.grace_period)
        log.info("Agent closed")