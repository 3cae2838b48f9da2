"""Formatting helpers for Kubernetes objects given in their JSON (dict) form."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping, Protocol

LOAD_BALANCER_WIDTH = 16
DEFAULT_AGENT_SERVICE_NAME = "chaos-agent"
NAMESPACE_ALL = ""
ALL_NAMESPACES: tuple[str, ...] = (NAMESPACE_ALL,)

LABEL_NODE_ROLE_PREFIX = "node-role.kubernetes.io/"
NODE_LABEL_ROLE = "kubernetes.io/role"

SERVICE_TYPE_CLUSTER_IP = "ClusterIP"
SERVICE_TYPE_NODE_PORT = "NodePort"
SERVICE_TYPE_LOAD_BALANCER = "LoadBalancer"
SERVICE_TYPE_EXTERNAL_NAME = "ExternalName"

_ZERO_TIME = "0001-01-01T00:00:00Z"


class PodNode(Protocol):
    """Anything that can be linked to a service or workload by label selector."""

    namespace: str
    labels: Mapping[str, str] | None

    def add_link(self, resource: str, uid: str) -> None: ...


def _section(obj: Mapping[str, Any] | None, key: str) -> Mapping[str, Any]:
    if not obj:
        return {}
    return obj.get(key) or {}


def service_ports_to_string(ports: Iterable[Mapping[str, Any]] | None) -> list[str]:
    """Render service ports as "nodePort->port/protocol/name"."""
    return [
        f"{port.get('nodePort', 0)}->{port.get('port', 0)}/{port.get('protocol', '')}/{port.get('name', '')}"
        for port in ports or ()
    ]


def load_balancer_status_stringer(status: Mapping[str, Any] | None, wide: bool) -> str:
    """Join the distinct ingress IPs or host names; clip to 16 characters unless wide."""
    addresses = set()
    for ingress in _section({"s": status} if status else None, "s").get("ingress") or ():
        if ingress.get("ip"):
            addresses.add(ingress["ip"])
        elif ingress.get("hostname"):
            addresses.add(ingress["hostname"])
    text = ",".join(sorted(addresses))
    if not wide and len(text) > LOAD_BALANCER_WIDTH:
        text = text[: LOAD_BALANCER_WIDTH - 3] + "..."
    return text


def get_service_external_ip(svc: Mapping[str, Any], wide: bool) -> str:
    """The external address column of a service, as kubectl shows it."""
    spec = _section(svc, "spec")
    service_type = spec.get("type", "")
    external_ips = list(spec.get("externalIPs") or ())
    if service_type in (SERVICE_TYPE_CLUSTER_IP, SERVICE_TYPE_NODE_PORT):
        return ",".join(external_ips) if external_ips else "<none>"
    if service_type == SERVICE_TYPE_LOAD_BALANCER:
        lb_ips = load_balancer_status_stringer(_section(_section(svc, "status"), "loadBalancer"), wide)
        if external_ips:
            results = lb_ips.split(",") if lb_ips else []
            return ",".join(results + external_ips)
        return lb_ips or "<pending>"
    if service_type == SERVICE_TYPE_EXTERNAL_NAME:
        return spec.get("externalName", "")
    return "<unknown>"


def find_node_roles(node: Mapping[str, Any]) -> list[str]:
    """Sorted roles of a node, taken from its role labels."""
    roles = set()
    for key, value in (_section(node, "metadata").get("labels") or {}).items():
        if key.startswith(LABEL_NODE_ROLE_PREFIX):
            role = key[len(LABEL_NODE_ROLE_PREFIX):]
            if role:
                roles.add(role)
        elif key == NODE_LABEL_ROLE and value:
            roles.add(value)
    return sorted(roles)


def get_service_port(port: Any) -> str:
    """A port that is either a number or a name, as text."""
    if isinstance(port, bool):
        return ""
    if isinstance(port, int):
        return str(port)
    if isinstance(port, str):
        return port
    return ""


def get_pod_restart_count(pod: Mapping[str, Any]) -> int:
    """Total restarts over all containers of a pod."""
    statuses = _section(pod, "status").get("containerStatuses") or ()
    return sum(status.get("restartCount", 0) for status in statuses)


def is_all_namespaces(namespaces: Iterable[str]) -> bool:
    """True when the list holds only the all-namespaces marker."""
    items = list(namespaces)
    return len(items) == 1 and items[0] == NAMESPACE_ALL


def labels_match(selector: Mapping[str, str] | None, labels: Mapping[str, str] | None) -> bool:
    """Whether every key and value of the selector is among the labels."""
    labels = labels or {}
    return all(key in labels and labels[key] == value for key, value in (selector or {}).items())


def selector_match(
    namespace: str, selector: Mapping[str, str] | None, resource: str, uid: str
) -> Callable[[PodNode], None]:
    """A function that links a node to the resource when namespace and labels match."""

    def link(node: PodNode) -> None:
        if node.namespace == namespace and labels_match(selector, node.labels):
            node.add_link(resource, uid)

    return link


def format_timestamp(value: datetime | str | None) -> str:
    """RFC 3339 text with trailing zeros of the fraction dropped; None is the zero time."""
    if value is None or value == "":
        return _ZERO_TIME
    if isinstance(value, str):
        text = value.strip()
        if text[-1:] in ("Z", "z"):
            text = text[:-1] + "+00:00"
        value = datetime.fromisoformat(text)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    stamp = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    if value.microsecond:
        stamp += "." + f"{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset()
    seconds = int(offset.total_seconds()) if offset is not None else 0
    if seconds == 0:
        return stamp + "Z"
    sign = "+" if seconds > 0 else "-"
    hours, minutes = divmod(abs(seconds) // 60, 60)
    return f"{stamp}{sign}{hours:02d}:{minutes:02d}"


class NamespaceList(list):
    """A list of namespaces that can be filled from comma separated text."""

    def set(self, value: str) -> None:
        """Append every non-blank comma separated namespace in value."""
        self.extend(part.strip() for part in value.split(",") if part.strip())

    def __str__(self) -> str:
        return ",".join(self)