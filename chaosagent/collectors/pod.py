"""Collector for pods, linked to the services that select them."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from chaosagent.collectors.base import (
    DAEMONSET_RESOURCE,
    DEPLOYMENT_RESOURCE,
    POD_RESOURCE,
    REPLICASET_RESOURCE,
    SERVICE_RESOURCE,
    CommonInfo,
    K8sBaseCollector,
    Lister,
    json_field,
)
from chaosagent.collectors.service import Selector, ServiceCollector
from chaosagent.k8sformat import (
    DEFAULT_AGENT_SERVICE_NAME,
    NAMESPACE_ALL,
    format_timestamp,
    get_pod_restart_count,
)
from chaosagent.wire import AgentSettings, Transport, Uri

log = logging.getLogger(__name__)

API_K8S_POD = "k8sPod"
CONFIG_HASH_ANNOTATION = "kubernetes.io/config.hash"
NODE_UNREACHABLE_POD_REASON = "NodeLost"
INVALID_IPS = ("<none>", "<pending>", "<unknown>")


@dataclass
class PodInfo(CommonInfo):
    """A pod as reported to the server."""

    namespace: str = json_field("namespace", "", omitempty=True)
    ip: str = json_field("ip", "", omitempty=True)
    restart_count: int = json_field("restartCount", 0, omitempty=True)
    state: str = json_field("state", "", omitempty=True)
    daemonset_uid: str = json_field("daemonsetUid", "", omitempty=True)
    daemonset_cid: str = json_field("daemonsetCid", "", omitempty=True)
    service_uid: str = json_field("serviceUid", "", omitempty=True)
    service_cid: str = json_field("serviceCid", "", omitempty=True)
    deployment_uid: str = json_field("deploymentUid", "", omitempty=True)
    deployment_cid: str = json_field("deploymentCid", "", omitempty=True)
    replica_set_uid: str = json_field("replicasetUid", "", omitempty=True)
    replica_set_cid: str = json_field("replicasetCid", "", omitempty=True)

    def add_link(self, resource: str, uid: str) -> None:
        """Remember the uid of a resource this pod belongs to."""
        if resource == SERVICE_RESOURCE:
            self.service_uid = uid
        elif resource == DEPLOYMENT_RESOURCE:
            self.deployment_uid = uid
        elif resource == REPLICASET_RESOURCE:
            self.replica_set_uid = uid
        elif resource == DAEMONSET_RESOURCE:
            self.daemonset_uid = uid


def _part(obj: Mapping[str, Any] | None, key: str) -> Mapping[str, Any]:
    if not obj:
        return {}
    return obj.get(key) or {}


def get_pod_state(pod: Mapping[str, Any]) -> str:
    """The status column of a pod, as kubectl shows it."""
    status = _part(pod, "status")
    reason = status.get("reason") or status.get("phase", "")
    init_total = len(_part(pod, "spec").get("initContainers") or ())
    initializing = False
    for index, container in enumerate(status.get("initContainerStatuses") or ()):
        state = container.get("state") or {}
        terminated = state.get("terminated")
        waiting = state.get("waiting")
        if terminated is not None and terminated.get("exitCode", 0) == 0:
            continue
        if terminated is not None:
            if not terminated.get("reason"):
                if terminated.get("signal", 0):
                    reason = f"Init:Signal:{terminated['signal']}"
                else:
                    reason = f"Init:ExitCode:{terminated.get('exitCode', 0)}"
            else:
                reason = "Init:" + terminated["reason"]
        elif waiting is not None and waiting.get("reason") and waiting["reason"] != "PodInitializing":
            reason = "Init:" + waiting["reason"]
        else:
            reason = f"Init:{index}/{init_total}"
        initializing = True
        break

    if not initializing:
        has_running = False
        for container in reversed(list(status.get("containerStatuses") or ())):
            state = container.get("state") or {}
            terminated = state.get("terminated")
            waiting = state.get("waiting")
            if waiting is not None and waiting.get("reason"):
                reason = waiting["reason"]
            elif terminated is not None and terminated.get("reason"):
                reason = terminated["reason"]
            elif terminated is not None:
                if terminated.get("signal", 0):
                    reason = f"Signal:{terminated['signal']}"
                else:
                    reason = f"ExitCode:{terminated.get('exitCode', 0)}"
            elif container.get("ready") and state.get("running") is not None:
                has_running = True
        if reason == "Completed" and has_running:
            reason = "Running"

    if _part(pod, "metadata").get("deletionTimestamp"):
        reason = "Unknown" if status.get("reason") == NODE_UNREACHABLE_POD_REASON else "Terminating"
    return reason


def pod_info(pod: Mapping[str, Any]) -> PodInfo:
    """Build the report form of a pod object."""
    meta = _part(pod, "metadata")
    annotations = meta.get("annotations") or {}
    uid = annotations.get(CONFIG_HASH_ANNOTATION, meta.get("uid", ""))
    return PodInfo(
        uid=uid,
        name=meta.get("name", ""),
        created_time=format_timestamp(meta.get("creationTimestamp")),
        labels=meta.get("labels"),
        exist=True,
        namespace=meta.get("namespace", ""),
        ip=_part(pod, "status").get("podIP", ""),
        restart_count=get_pod_restart_count(pod),
        state=get_pod_state(pod),
    )


def handle_owner_references(info: PodInfo, references: Iterable[Mapping[str, Any]] | None) -> PodInfo:
    """Record the replicaset or daemonset that owns the pod."""
    for reference in references or ():
        kind = reference.get("kind")
        if kind == "ReplicaSet":
            info.replica_set_uid = reference.get("uid", "")
        elif kind == "DaemonSet":
            info.daemonset_uid = reference.get("uid", "")
    return info


class PodCollector(K8sBaseCollector):
    """Reports pods, linked to the services that select them."""

    info_type = PodInfo

    def __init__(
        self,
        transport: Transport,
        service_collector: ServiceCollector,
        settings: AgentSettings,
        lister: Lister | None = None,
        uri: Uri | None = None,
        compress_version: str = "",
        local_ip: str = "",
    ) -> None:
        if uri is None:
            uri = transport.uris.get(API_K8S_POD)
            if uri is None:
                raise LookupError(f"no endpoint registered for {API_K8S_POD}")
        super().__init__(POD_RESOURCE, transport, uri, lister, compress_version)
        self.service_collector = service_collector
        self.settings = settings
        self.local_ip = local_ip

    def _get_selectors(self) -> list[Selector]:
        with self.service_collector.selector_lock:
            return list(self.service_collector.selectors)

    def get_pod_info(self, selectors: Iterable[Selector]) -> list[PodInfo]:
        """Every listed pod in report form, linked through the given selectors."""
        if self.lister is None:
            raise RuntimeError("k8s client not enable")
        selectors = list(selectors)
        objects = list(self.lister.list())
        log.debug("[POD REPORT] get pods from indexer len : %d", len(objects))
        pods: list[PodInfo] = []
        for pod in objects:
            if not isinstance(pod, Mapping):
                continue
            info = handle_owner_references(pod_info(pod), _part(pod, "metadata").get("ownerReferences"))
            info = self.handle_increment(info)
            pods.append(info)
            for link in selectors:
                link(info)
        return pods

    def set_agent_external_ip(self) -> str | None:
        """Take the agent address from the agent service; return it when set."""
        if self.local_ip:
            log.debug("Agent IP is already specified via --localIp flag: %s", self.local_ip)
            return None
        try:
            services, _ = self.service_collector.get_service_info()
        except RuntimeError as exc:
            log.warning("get service info failed, err: %s", exc)
            return None
        for service in services:
            if service.name != DEFAULT_AGENT_SERVICE_NAME:
                continue
            external_ip = service.external_ip
            if not external_ip:
                log.debug("Service %s has empty ExternalIP, skip setting", DEFAULT_AGENT_SERVICE_NAME)
                continue
            if external_ip in INVALID_IPS:
                log.warning("Service %s has invalid ExternalIP: %s, skip setting", DEFAULT_AGENT_SERVICE_NAME, external_ip)
                return None
            ips = external_ip.split(",")
            first = ips[0].strip()
            if first and first not in INVALID_IPS:
                self.settings.ip = first
                log.info("Set agent ExternalIP to: %s (from %d IPs: %s)", first, len(ips), external_ip)
                return first
            log.warning("Service %s ExternalIP is invalid or empty: %s", DEFAULT_AGENT_SERVICE_NAME, external_ip)
        return None

    def report(self) -> None:
        """Send current pods, then those that have disappeared."""
        if self.lister is None:
            log.warning("[POD REPORT] k8s client not enable")
            return
        self.service_collector.set_selector()
        self.set_agent_external_ip()
        infos = self.get_pod_info(self._get_selectors())
        self.report_k8s_metric(NAMESPACE_ALL, True, infos)
        self.report_k8s_metric(NAMESPACE_ALL, False, self.collect_vanished())