"""Collectors for namespaces and nodes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from chaosagent.collectors.base import NODE_RESOURCE, CommonInfo, K8sBaseCollector, Lister
from chaosagent.k8sformat import NAMESPACE_ALL, find_node_roles, format_timestamp
from chaosagent.wire import Transport, Uri

log = logging.getLogger(__name__)

API_K8S_NAMESPACE = "k8sNamespace"
API_K8S_NODE = "k8sNode"


def _part(obj: Mapping[str, Any] | None, key: str) -> Mapping[str, Any]:
    if not obj:
        return {}
    return obj.get(key) or {}


def _resolve_uri(transport: Transport, uri: Uri | None, api_name: str) -> Uri:
    if uri is not None:
        return uri
    found = transport.uris.get(api_name)
    if found is None:
        raise LookupError(f"no endpoint registered for {api_name}")
    return found


@dataclass
class NamespaceInfo(CommonInfo):
    """A namespace as reported to the server."""


class NamespaceCollector(K8sBaseCollector):
    """Reports namespaces."""

    info_type = NamespaceInfo

    def __init__(
        self,
        transport: Transport,
        lister: Lister | None = None,
        uri: Uri | None = None,
        compress_version: str = "",
    ) -> None:
        uri = _resolve_uri(transport, uri, API_K8S_NAMESPACE)
        # The server files namespaces under the node parameter name.
        super().__init__(NODE_RESOURCE, transport, uri, lister, compress_version)

    def get_namespaces(self) -> list[str]:
        """Names of all listed namespaces, surrounding blanks removed."""
        if self.lister is None:
            raise RuntimeError("namespace index is nil")
        return [_part(ns, "metadata").get("name", "").strip() for ns in self.lister.list()]

    def get_namespace_info(self) -> list[NamespaceInfo]:
        """Every listed namespace in report form, unchanged ones reduced to uid and cid."""
        if self.lister is None:
            raise RuntimeError("k8s client not enable")
        infos: list[NamespaceInfo] = []
        for ns in self.lister.list():
            meta = _part(ns, "metadata")
            info = NamespaceInfo(
                uid=meta.get("uid", ""),
                name=meta.get("name", ""),
                created_time=format_timestamp(meta.get("creationTimestamp")),
                labels=meta.get("labels"),
                exist=True,
            )
            infos.append(self.handle_increment(info))
        return infos

    def report(self) -> None:
        """Send current namespaces, then those that have disappeared."""
        if self.lister is None:
            log.warning("[NAMESPACE REPORT] k8s client not enable")
            return
        infos = self.get_namespace_info()
        self.report_k8s_metric(NAMESPACE_ALL, True, infos)
        self.report_k8s_metric(NAMESPACE_ALL, False, self.collect_vanished())


@dataclass
class NodeInfo:
    """The node the agent reports itself on."""

    uid: str = ""
    name: str = ""
    role: str = ""
    cluster_id: str = ""
    cluster_name: str = ""

    def to_dict(self) -> dict[str, Any]:
        """The JSON object sent to the server."""
        return {
            "uid": self.uid,
            "name": self.name,
            "role": self.role,
            "clusterId": self.cluster_id,
            "clusterName": self.cluster_name,
        }


class NodeCollector(K8sBaseCollector):
    """Reports the first listed node with its roles."""

    def __init__(
        self,
        transport: Transport,
        lister: Lister | None = None,
        uri: Uri | None = None,
        compress_version: str = "",
        cluster_id: str = "",
    ) -> None:
        uri = _resolve_uri(transport, uri, API_K8S_NODE)
        super().__init__(NODE_RESOURCE, transport, uri, lister, compress_version)
        self.cluster_id = cluster_id

    def get_node_info(self) -> list[NodeInfo]:
        """The first listed node in report form, or nothing when none is listed."""
        if self.lister is None:
            raise RuntimeError("k8s client not enable")
        objects = list(self.lister.list())
        log.debug("[NODE REPORT] get nodes from lister, size: %d", len(objects))
        nodes: list[NodeInfo] = []
        for node in objects[:1]:
            meta = _part(node, "metadata")
            roles = find_node_roles(node)
            nodes.append(
                NodeInfo(
                    uid=meta.get("uid", ""),
                    name=meta.get("name", ""),
                    role=",".join(roles) if roles else "<none>",
                    cluster_id=self.cluster_id,
                )
            )
        return nodes

    def report(self) -> None:
        """Send the node to the server."""
        if self.lister is None:
            log.warning("[NODE REPORT] k8s client not enable")
            return
        self.report_k8s_metric(NAMESPACE_ALL, True, self.get_node_info())