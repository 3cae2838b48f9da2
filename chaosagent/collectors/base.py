"""Shared state and reporting for collectors of Kubernetes resources."""

from __future__ import annotations

import dataclasses
import hashlib
import json
import logging
import threading
from dataclasses import MISSING, dataclass, field, fields
from typing import Any, Callable, Iterable, Mapping, Protocol, Sequence

from chaosagent.k8sformat import is_all_namespaces
from chaosagent.wire import Request, Transport, TransportError, Uri

log = logging.getLogger(__name__)

POD_RESOURCE = "pod"
SERVICE_RESOURCE = "service"
DEPLOYMENT_RESOURCE = "deployment"
REPLICASET_RESOURCE = "replicaset"
DAEMONSET_RESOURCE = "daemonset"
NODE_RESOURCE = "node"
INGRESS_RESOURCE = "ingress"
VIRTUAL_NODE_RESOURCE = "virtualnode"


def json_field(key: str, default: Any = MISSING, *, omitempty: bool = False, default_factory: Any = MISSING) -> Any:
    """A dataclass field with the name it carries in JSON and whether empty values are left out."""
    return field(
        default=default,
        default_factory=default_factory,
        metadata={"json": key, "omitempty": omitempty},
    )


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bytes, list, tuple, dict, set, frozenset)):
        return not value
    if isinstance(value, (bool, int, float)):
        return not value
    return False


def _encode(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    if isinstance(value, dict):
        return {key: _encode(item) for key, item in value.items()}
    return value


@dataclass
class ResourceIdentifier:
    """What is remembered of a reported resource between reports."""

    uid: str
    cid: str = ""
    md5: str = ""
    curr: bool = False
    name: str = ""


@dataclass
class CommonInfo:
    """Fields every reported resource carries."""

    uid: str = json_field("uid", "")
    name: str = json_field("name", "")
    created_time: str = json_field("createdTime", "")
    labels: dict[str, str] | None = json_field("labels", None, omitempty=True)
    exist: bool = json_field("exist", False)
    cid: str = json_field("cid", "", omitempty=True)

    def to_dict(self) -> dict[str, Any]:
        """The JSON object sent to the server."""
        result: dict[str, Any] = {}
        for item in fields(self):
            key = item.metadata.get("json", item.name)
            value = getattr(self, item.name)
            if item.metadata.get("omitempty") and _is_empty(value):
                continue
            result[key] = _encode(value)
        return result


def md5_sum_data(info: Any) -> str:
    """Hex MD5 of the canonical JSON form of a resource."""
    data = info.to_dict() if hasattr(info, "to_dict") else info
    text = json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.md5(text.encode("utf-8")).hexdigest()


class Lister(Protocol):
    def list(self) -> Iterable[Any]: ...


class MultiLister:
    """Combines several listers into one that lists all their objects in order."""

    def __init__(self, listers: Sequence[Lister]) -> None:
        self.listers = list(listers)

    def list(self) -> list[Any]:
        """All objects of every lister."""
        return [obj for lister in self.listers for obj in lister.list()]


def multi_namespace_lister(namespaces: Sequence[str], factory: Callable[[str], Lister]) -> Lister:
    """One lister for the given namespaces, built from a per-namespace factory."""
    namespaces = list(namespaces)
    if not namespaces:
        raise ValueError("at least one namespace is required")
    if is_all_namespaces(namespaces) or len(namespaces) == 1:
        return factory(namespaces[0])
    return MultiLister([factory(namespace) for namespace in namespaces])


class K8sBaseCollector:
    """Tracks reported resources of one kind and sends changes to the server."""

    info_type: type[CommonInfo] = CommonInfo
    nested_result_keys: tuple[str, str] | None = None

    def __init__(
        self,
        resource_name: str,
        transport: Transport,
        uri: Uri,
        lister: Lister | None = None,
        compress_version: str = "",
    ) -> None:
        self.resource_name = resource_name
        self.transport = transport
        self.uri = uri
        self.report_handler = uri.handler_name
        self.lister = lister
        self.compress_version = compress_version
        self.identifiers: dict[str, ResourceIdentifier] = {}
        self.second_identifiers: dict[str, ResourceIdentifier] = {}
        self.identifier_lock = threading.RLock()

    def _objects(self) -> list[Any] | None:
        if self.lister is None:
            log.warning("[%s REPORT] k8s client not enable", self.resource_name.upper())
            return None
        return list(self.lister.list())

    def get_service_uid_by_name(self, service_name: str) -> str:
        """The uid of a remembered resource with this name, or an empty string."""
        for uid, identifier in self.identifiers.items():
            if identifier.name == service_name:
                return uid
        return ""

    def _apply_increment(self, table: dict[str, ResourceIdentifier], info: CommonInfo) -> CommonInfo:
        with self.identifier_lock:
            try:
                digest = md5_sum_data(info)
            except (TypeError, ValueError):
                return info
            known = table.get(info.uid)
            if known is None:
                table[info.uid] = ResourceIdentifier(uid=info.uid, md5=digest, curr=True, name=info.name)
                return info
            known.curr = True
            if known.md5 == digest and known.cid:
                return type(info)(uid=known.uid, exist=True, cid=known.cid)
            known.md5 = digest
            return info

    def handle_increment(self, info: CommonInfo) -> CommonInfo:
        """Return the info in full when new or changed, else only its uid and cid."""
        return self._apply_increment(self.identifiers, info)

    def _collect_vanished(self, table: dict[str, ResourceIdentifier], info_type: type[CommonInfo]) -> list[CommonInfo]:
        vanished: list[CommonInfo] = []
        with self.identifier_lock:
            log.debug("[%s REPORT] identifiers len: %d", self.resource_name, len(table))
            gone = []
            for key, identifier in table.items():
                if identifier.curr:
                    identifier.curr = False
                    continue
                if identifier.cid:
                    vanished.append(info_type(uid=identifier.uid, cid=identifier.cid, exist=False))
                gone.append(key)
            for key in gone:
                log.debug("[%s REPORT] identifiers delete: %s", self.resource_name, key)
                del table[key]
        return vanished

    def collect_vanished(self) -> list[CommonInfo]:
        """Forget resources not seen since the last report; return those the server knows."""
        return self._collect_vanished(self.identifiers, self.info_type)

    def reset_identifier_cache(self) -> None:
        """Forget every remembered resource."""
        with self.identifier_lock:
            self.identifiers = {}
            self.second_identifiers = {}

    def _store_cids(self, table: dict[str, ResourceIdentifier], cids: Mapping[str, Any]) -> None:
        for key, value in cids.items():
            identifier = table.get(key)
            if identifier is not None and isinstance(value, str):
                identifier.cid = value

    def report_k8s_metric(self, namespace: str, is_exists: bool, resources: Sequence[Any]) -> bool:
        """Send resources to the server and remember the cids it hands back."""
        if not resources:
            return False
        request = Request()
        try:
            payload = json.dumps([_encode(resource) for resource in resources], ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            log.warning("marshal k8s %s err, %s", self.resource_name, exc)
        else:
            request.add_param(self.resource_name, payload)
        uri = self.uri
        if self.compress_version:
            uri = dataclasses.replace(uri, compress_version=self.compress_version)
        try:
            response = self.transport.invoke(uri, request, True)
        except TransportError as exc:
            self.reset_identifier_cache()
            log.warning("Report kubernetes %s infos err: %s", self.report_handler, exc)
            return False
        if not response.success:
            self.reset_identifier_cache()
            log.warning("Report kubernetes %s infos failed: %s", self.report_handler, response.error)
            return False
        size = len(resources)
        if not is_exists:
            log.info("Report old kubernetes resources success, %s, ns: %s, size: %d", self.report_handler, namespace, size)
            return True
        result = response.result
        if not isinstance(result, dict):
            self.reset_identifier_cache()
            log.warning("kubernetes %s response is not map[string]", self.report_handler)
            return False
        with self.identifier_lock:
            if self.nested_result_keys is None:
                self._store_cids(self.identifiers, result)
            else:
                primary_key, secondary_key = self.nested_result_keys
                for key, table in ((primary_key, self.identifiers), (secondary_key, self.second_identifiers)):
                    cids = result.get(key)
                    if cids is None:
                        continue
                    if not isinstance(cids, dict):
                        self.reset_identifier_cache()
                        log.warning("kubernetes %s response is not map[string]", self.report_handler)
                        return False
                    self._store_cids(table, cids)
        log.info("Report kubernetes resources success, %s, ns: %s, size: %d", self.report_handler, namespace, size)
        return True