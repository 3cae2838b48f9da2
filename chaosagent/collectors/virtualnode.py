"""Collector for virtual nodes together with the pods scheduled on them."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from chaosagent.collectors.base import (
    NODE_RESOURCE,
    POD_RESOURCE,
    VIRTUAL_NODE_RESOURCE,
    CommonInfo,
    K8sBaseCollector,
    Lister,
    json_field,
)
from chaosagent.collectors.pod import PodInfo, pod_info
from chaosagent.k8sformat import NAMESPACE_ALL, find_node_roles, format_timestamp
from chaosagent.wire import Transport, Uri

log = logging.getLogger(__name__)

API_K8S_VIRTUAL_NODE = "k8sVirtualNode"

PodListerFactory = Callable[[str], Lister]


def _part(obj: Mapping[str, Any] | None, key: str) -> Mapping[str, Any]:
    if not obj:
        return {}
    return obj.get(key) or {}


@dataclass
class NodeCapacity:
    """Allocatable CPU and memory of a node."""

    cpu: str = ""
    memory: str = ""

    def to_dict(self) -> dict[str, Any]:
        """The JSON object sent to the server."""
        result: dict[str, Any] = {}
        if self.cpu:
            result["cpu"] = self.cpu
        if self.memory:
            result["memory"] = self.memory
        return result


@dataclass
class VirtualNodeInfo(CommonInfo):
    """A virtual node as reported to the server."""

    role: str = json_field("role", "", omitempty=True)
    cluster_id: str = json_field("clusterId", "", omitempty=True)
    cluster_name: str = json_field("clusterName", "", omitempty=True)
    node_info: dict[str, Any] = json_field("nodeInfo", default_factory=dict)
    capacity: NodeCapacity = json_field("capacity", default_factory=NodeCapacity)
    addresses: list[Any] = json_field("addresses", omitempty=True, default_factory=list)
    pods: list[PodInfo] = json_field("pods", omitempty=True, default_factory=list)


def _quantity(value: Any) -> str:
    if value is None or value == "":
        return "0"
    return str(value)


def get_node_capacity(allocatable: Mapping[str, Any] | None) -> NodeCapacity:
    """CPU and memory out of a resource list; a missing quantity is "0"."""
    allocatable = allocatable or {}
    return NodeCapacity(cpu=_quantity(allocatable.get("cpu")), memory=_quantity(allocatable.get("memory")))


class VirtualNodeCollector(K8sBaseCollector):
    """Reports nodes with their pods; pods are tracked in the second identifier table."""

    info_type = VirtualNodeInfo
    nested_result_keys = (VIRTUAL_NODE_RESOURCE, POD_RESOURCE)

    def __init__(
        self,
        transport: Transport,
        lister: Lister | None = None,
        pod_lister_factory: PodListerFactory | None = None,
        uri: Uri | None = None,
        compress_version: str = "",
    ) -> None:
        if uri is None:
            uri = transport.uris.get(API_K8S_VIRTUAL_NODE)
            if uri is None:
                raise LookupError(f"no endpoint registered for {API_K8S_VIRTUAL_NODE}")
        super().__init__(NODE_RESOURCE, transport, uri, lister, compress_version)
        self.pod_lister_factory = pod_lister_factory
        self.pod_listers: dict[str, Lister] = {}

    def get_pods(self, node: Mapping[str, Any]) -> list[PodInfo]:
        """Pods on the node in report form, unchanged ones reduced to uid and cid."""
        name = _part(node, "metadata").get("name", "")
        lister = self.pod_listers.get(name)
        if lister is None:
            if self.pod_lister_factory is None:
                raise RuntimeError("k8s client not enable")
            lister = self.pod_listers[name] = self.pod_lister_factory(name)
        objects = list(lister.list())
        log.debug("[VIRTUALNODE REPORT] get pods in node : %s, pod len: %d", name, len(objects))
        return [self._apply_increment(self.second_identifiers, pod_info(pod)) for pod in objects]

    def get_virtual_node_info(self) -> list[VirtualNodeInfo]:
        """Every listed node in report form, each with its pods."""
        if self.lister is None:
            raise RuntimeError("k8s client not enable")
        objects = list(self.lister.list())
        log.debug("[VIRTUALNODE REPORT] get virtualnodes from lister, size: %d", len(objects))
        nodes: list[VirtualNodeInfo] = []
        for node in objects:
            meta = _part(node, "metadata")
            status = _part(node, "status")
            roles = find_node_roles(node)
            info = VirtualNodeInfo(
                uid=meta.get("uid", ""),
                name=meta.get("name", ""),
                created_time=format_timestamp(meta.get("creationTimestamp")),
                labels=meta.get("labels"),
                exist=True,
                role=",".join(roles) if roles else "<none>",
                node_info=dict(status.get("nodeInfo") or {}),
                capacity=get_node_capacity(status.get("allocatable")),
                addresses=list(status.get("addresses") or ()),
            )
            info = self.handle_increment(info)
            try:
                info.pods = self.get_pods(node)
            except RuntimeError as exc:
                log.error("[VIRTUALNODE REPORT] get pods on %s virtual node failed, %s", meta.get("name", ""), exc)
            nodes.append(info)
        return nodes

    def collect_vanished(self) -> list[CommonInfo]:
        """Vanished nodes known to the server, each carrying every vanished pod."""
        pods = self._collect_vanished(self.second_identifiers, PodInfo)
        nodes = self._collect_vanished(self.identifiers, VirtualNodeInfo)
        for node in nodes:
            node.pods = list(pods)
        return nodes

    def report(self) -> None:
        """Send current nodes, then those that have disappeared."""
        if self.lister is None:
            log.warning("[VIRTUALNODE REPORT] k8s client not enable")
            return
        self.report_k8s_metric(NAMESPACE_ALL, True, self.get_virtual_node_info())
        self.report_k8s_metric(NAMESPACE_ALL, True, self.collect_vanished())