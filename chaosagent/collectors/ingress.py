"""Collector for ingresses and the services they route to."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from chaosagent.collectors.base import INGRESS_RESOURCE, CommonInfo, K8sBaseCollector, Lister, json_field
from chaosagent.k8sformat import NAMESPACE_ALL, format_timestamp, get_service_port
from chaosagent.wire import Transport, Uri

log = logging.getLogger(__name__)

API_K8S_INGRESS = "k8sIngress"


def _part(obj: Mapping[str, Any] | None, key: str) -> Mapping[str, Any]:
    if not obj:
        return {}
    return obj.get(key) or {}


@dataclass
class IngressBackend:
    """The service a path routes to."""

    service_name: str = ""
    service_port: str = ""
    service_uid: str = ""

    def to_dict(self) -> dict[str, Any]:
        """The JSON object sent to the server."""
        return {"serviceName": self.service_name, "servicePort": self.service_port, "serviceUid": self.service_uid}


@dataclass
class HTTPIngressPath:
    """A path and the backend it is forwarded to."""

    path: str = ""
    backend: IngressBackend = field(default_factory=IngressBackend)

    def to_dict(self) -> dict[str, Any]:
        """The JSON object sent to the server."""
        result: dict[str, Any] = {}
        if self.path:
            result["path"] = self.path
        result["backend"] = self.backend.to_dict()
        return result


@dataclass
class IngressRule:
    """A host and its HTTP paths; paths of None means no HTTP rule."""

    host: str = ""
    paths: list[HTTPIngressPath] | None = None

    def to_dict(self) -> dict[str, Any]:
        """The JSON object sent to the server."""
        result: dict[str, Any] = {}
        if self.host:
            result["host"] = self.host
        if self.paths is not None:
            result["http"] = {"paths": [path.to_dict() for path in self.paths]}
        return result


@dataclass
class IngressInfo(CommonInfo):
    """An ingress as reported to the server."""

    namespace: str = json_field("Namespace", "", omitempty=True)
    address: str = json_field("Address", "", omitempty=True)
    annotations: dict[str, str] | None = json_field("Annotations", None, omitempty=True)
    tls: list[Any] = json_field("Tls", omitempty=True, default_factory=list)
    rules: list[IngressRule] = json_field("Rules", omitempty=True, default_factory=list)


class IngressCollector(K8sBaseCollector):
    """Reports ingresses with their routing rules."""

    info_type = IngressInfo

    def __init__(
        self,
        transport: Transport,
        lister: Lister | None = None,
        uri: Uri | None = None,
        compress_version: str = "",
    ) -> None:
        if uri is None:
            uri = transport.uris.get(API_K8S_INGRESS)
            if uri is None:
                raise LookupError(f"no endpoint registered for {API_K8S_INGRESS}")
        super().__init__(INGRESS_RESOURCE, transport, uri, lister, compress_version)

    def generate_ingress_rules(self, ingress: Mapping[str, Any]) -> list[IngressRule]:
        """The rules of an ingress, each backend with the uid of its service when known."""
        name = _part(ingress, "metadata").get("name", "")
        rules: list[IngressRule] = []
        for raw_rule in _part(ingress, "spec").get("rules") or ():
            paths: list[HTTPIngressPath] = []
            for raw_path in _part(raw_rule, "http").get("paths") or ():
                backend = _part(raw_path, "backend")
                service_name = backend.get("serviceName", "")
                path = HTTPIngressPath(
                    path=raw_path.get("path", ""),
                    backend=IngressBackend(
                        service_name=service_name,
                        service_port=get_service_port(backend.get("servicePort")),
                        service_uid=self.get_service_uid_by_name(service_name),
                    ),
                )
                paths.append(path)
                if not path.backend.service_uid:
                    log.warning("%s ingress cannot get the service uid, service name: %s", name, service_name)
            rules.append(IngressRule(host=raw_rule.get("host", ""), paths=paths))
        return rules

    def get_ingress_info(self) -> list[IngressInfo]:
        """Every listed ingress in report form, unchanged ones reduced to uid and cid."""
        if self.lister is None:
            raise RuntimeError("k8s client not enable")
        objects = list(self.lister.list())
        log.debug("[INGRESS REPORT] get ingress from lister, size: %d", len(objects))
        infos: list[IngressInfo] = []
        for ingress in objects:
            meta = _part(ingress, "metadata")
            info = IngressInfo(
                uid=meta.get("uid", ""),
                name=meta.get("name", ""),
                created_time=format_timestamp(meta.get("creationTimestamp")),
                labels=meta.get("labels"),
                exist=True,
                namespace=meta.get("namespace", ""),
                tls=list(_part(ingress, "spec").get("tls") or ()),
                annotations=meta.get("annotations"),
            )
            balancers = _part(_part(ingress, "status"), "loadBalancer").get("ingress") or ()
            addresses = {b.get("ip") or b.get("hostname") for b in balancers} - {None, ""}
            if addresses:
                info.address = ",".join(sorted(addresses))
            info.rules = self.generate_ingress_rules(ingress)
            infos.append(self.handle_increment(info))
        return infos

    def report(self) -> None:
        """Send current ingresses, then those that have disappeared."""
        if self.lister is None:
            log.warning("[INGRESS REPORT] k8s client not enable")
            return
        infos = self.get_ingress_info()
        self.report_k8s_metric(NAMESPACE_ALL, True, infos)
        self.report_k8s_metric(NAMESPACE_ALL, False, self.collect_vanished())