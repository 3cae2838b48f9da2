"""Collector for services, which also supplies pod-to-service links."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from chaosagent.collectors.base import (
    NODE_RESOURCE,
    SERVICE_RESOURCE,
    CommonInfo,
    K8sBaseCollector,
    Lister,
    json_field,
)
from chaosagent.k8sformat import (
    NAMESPACE_ALL,
    PodNode,
    format_timestamp,
    get_service_external_ip,
    selector_match,
    service_ports_to_string,
)
from chaosagent.wire import Transport, Uri

log = logging.getLogger(__name__)

API_K8S_SERVICE = "k8sService"

Selector = Callable[[PodNode], None]


@dataclass
class ServiceInfo(CommonInfo):
    """A service as reported to the server."""

    namespace: str = json_field("namespace", "", omitempty=True)
    cluster_ip: str = json_field("clusterIp", "", omitempty=True)
    external_ip: str = json_field("externalIp", "", omitempty=True)
    ports: list[str] = json_field("ports", omitempty=True, default_factory=list)
    service_type: str = json_field("type", "", omitempty=True)
    selector: dict[str, str] | None = json_field("selector", None, omitempty=True)


def _part(obj: Mapping[str, Any] | None, key: str) -> Mapping[str, Any]:
    if not obj:
        return {}
    return obj.get(key) or {}


def _service_info(svc: Mapping[str, Any]) -> ServiceInfo:
    meta = _part(svc, "metadata")
    spec = _part(svc, "spec")
    return ServiceInfo(
        uid=meta.get("uid", ""),
        name=meta.get("name", ""),
        created_time=format_timestamp(meta.get("creationTimestamp")),
        labels=meta.get("labels"),
        exist=True,
        namespace=meta.get("namespace", ""),
        cluster_ip=spec.get("clusterIP", ""),
        external_ip=get_service_external_ip(svc, True),
        ports=service_ports_to_string(spec.get("ports")),
        service_type=spec.get("type", ""),
        selector=spec.get("selector"),
    )


class ServiceCollector(K8sBaseCollector):
    """Reports services and keeps the selectors that link pods to them."""

    info_type = ServiceInfo

    def __init__(
        self,
        transport: Transport,
        lister: Lister | None = None,
        uri: Uri | None = None,
        compress_version: str = "",
    ) -> None:
        if uri is None:
            uri = transport.uris.get(API_K8S_SERVICE)
            if uri is None:
                log.warning("service collector, get uri failed!")
                uri = Uri()
        # The server files services under the node parameter name.
        super().__init__(NODE_RESOURCE, transport, uri, lister, compress_version)
        self.selector_lock = threading.Lock()
        self.selectors: list[Selector] = []

    def get_service_info(self) -> tuple[list[ServiceInfo], list[Selector]]:
        """Services in report form, and a link function for each service with a selector."""
        if self.lister is None:
            raise RuntimeError("k8s client not enable")
        objects = list(self.lister.list())
        log.debug("[SERVICE REPORT] get services from indexer, len: %d", len(objects))
        services: list[ServiceInfo] = []
        selectors: list[Selector] = []
        for svc in objects:
            info = self.handle_increment(_service_info(svc))
            services.append(info)
            meta = _part(svc, "metadata")
            selector = _part(svc, "spec").get("selector")
            if selector is not None:
                selectors.append(
                    selector_match(meta.get("namespace", ""), selector, SERVICE_RESOURCE, meta.get("uid", ""))
                )
        return services, selectors

    def report(self) -> None:
        """Send current services, then those that have disappeared."""
        if self.lister is None:
            log.warning("[SERVICE REPORT] k8s client not enable")
            return
        infos, _ = self.get_service_info()
        self.report_k8s_metric(NAMESPACE_ALL, True, infos)
        self.report_k8s_metric(NAMESPACE_ALL, False, self.collect_vanished())

    def set_selector(self) -> None:
        """Refresh the selectors from the current services."""
        if self.lister is None:
            log.warning("[SERVICE REPORT] k8s client not enable")
            return
        _, selectors = self.get_service_info()
        with self.selector_lock:
            self.selectors = selectors