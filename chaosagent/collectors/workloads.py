"""Collectors for deployments, daemonsets and replicasets."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from chaosagent.collectors.base import (
    DAEMONSET_RESOURCE,
    DEPLOYMENT_RESOURCE,
    NODE_RESOURCE,
    CommonInfo,
    K8sBaseCollector,
    Lister,
    json_field,
)
from chaosagent.k8sformat import NAMESPACE_ALL, format_timestamp
from chaosagent.wire import Transport, Uri

log = logging.getLogger(__name__)

API_K8S_DEPLOYMENT = "k8sDeployment"
API_K8S_DAEMONSET = "k8sDaemonset"
API_K8S_REPLICASET = "k8sReplicaset"


@dataclass
class DeploymentInfo(CommonInfo):
    """A deployment as reported to the server."""

    namespace: str = json_field("namespace", "", omitempty=True)
    available_replicas: int = json_field("availableReplicas", 0, omitempty=True)
    replicas: int = json_field("replicas", 0, omitempty=True)
    observed_generation: int = json_field("observedGeneration", 0, omitempty=True)
    ready_replicas: int = json_field("readyReplicas", 0, omitempty=True)
    updated_replicas: int = json_field("updatedReplicas", 0, omitempty=True)
    strategy: str = json_field("strategy", "", omitempty=True)
    unavailable_replicas: int = json_field("unavailableReplicas", 0, omitempty=True)


@dataclass
class DaemonsetInfo(CommonInfo):
    """A daemonset as reported to the server."""

    namespace: str = json_field("namespace", "", omitempty=True)
    current_number_scheduled: int = json_field("currentNumberScheduled", 0, omitempty=True)
    desired_number_scheduled: int = json_field("desiredNumberScheduled", 0, omitempty=True)
    number_available: int = json_field("numberAvailable", 0, omitempty=True)
    number_misscheduled: int = json_field("numberMisscheduled", 0, omitempty=True)
    # The server expects this odd key for the ready count.
    number_ready: int = json_field("int32", 0, omitempty=True)
    observed_generation: int = json_field("observedGeneration", 0, omitempty=True)
    updated_number_scheduled: int = json_field("updatedNumberScheduled", 0, omitempty=True)
    update_strategy: str = json_field("updateStrategy", "", omitempty=True)


@dataclass
class ReplicaSetInfo(CommonInfo):
    """A replicaset as reported to the server."""

    namespace: str = json_field("namespace", "", omitempty=True)
    available_replicas: int = json_field("availableReplicas", 0, omitempty=True)
    replicas: int = json_field("replicas", 0, omitempty=True)
    observed_generation: int = json_field("observedGeneration", 0, omitempty=True)
    ready_replicas: int = json_field("readyReplicas", 0, omitempty=True)
    deployment_uid: str = json_field("deploymentUid", "", omitempty=True)


def _part(obj: Mapping[str, Any] | None, key: str) -> Mapping[str, Any]:
    if not obj:
        return {}
    return obj.get(key) or {}


def _common(obj: Mapping[str, Any]) -> dict[str, Any]:
    meta = _part(obj, "metadata")
    return {
        "uid": meta.get("uid", ""),
        "name": meta.get("name", ""),
        "created_time": format_timestamp(meta.get("creationTimestamp")),
        "labels": meta.get("labels"),
        "exist": True,
        "namespace": meta.get("namespace", ""),
    }


def deployment_info(obj: Mapping[str, Any]) -> DeploymentInfo:
    """Build the report form of a deployment object."""
    spec = _part(obj, "spec")
    status = _part(obj, "status")
    return DeploymentInfo(
        **_common(obj),
        available_replicas=status.get("availableReplicas", 0),
        # The API server defaults an unset replica count to one.
        replicas=spec.get("replicas", 1),
        observed_generation=status.get("observedGeneration", 0),
        ready_replicas=status.get("readyReplicas", 0),
        updated_replicas=status.get("updatedReplicas", 0),
        unavailable_replicas=status.get("unavailableReplicas", 0),
        strategy=_part(spec, "strategy").get("type", ""),
    )


def daemonset_info(obj: Mapping[str, Any]) -> DaemonsetInfo:
    """Build the report form of a daemonset object."""
    spec = _part(obj, "spec")
    status = _part(obj, "status")
    return DaemonsetInfo(
        **_common(obj),
        current_number_scheduled=status.get("currentNumberScheduled", 0),
        desired_number_scheduled=status.get("desiredNumberScheduled", 0),
        number_available=status.get("numberAvailable", 0),
        number_misscheduled=status.get("numberMisscheduled", 0),
        number_ready=status.get("numberReady", 0),
        updated_number_scheduled=status.get("updatedNumberScheduled", 0),
        update_strategy=_part(spec, "updateStrategy").get("type", ""),
    )


def replicaset_info(obj: Mapping[str, Any]) -> ReplicaSetInfo:
    """Build the report form of a replicaset object."""
    status = _part(obj, "status")
    info = ReplicaSetInfo(
        **_common(obj),
        available_replicas=status.get("availableReplicas", 0),
        replicas=status.get("replicas", 0),
        observed_generation=status.get("observedGeneration", 0),
        ready_replicas=status.get("readyReplicas", 0),
    )
    for reference in _part(obj, "metadata").get("ownerReferences") or ():
        if reference.get("kind") == "Deployment":
            info.deployment_uid = reference.get("uid", "")
    return info


class _WorkloadCollector(K8sBaseCollector):
    api_name: str = ""
    resource: str = ""
    label: str = ""
    build: Callable[[Mapping[str, Any]], CommonInfo]

    def __init__(
        self,
        transport: Transport,
        lister: Lister | None = None,
        uri: Uri | None = None,
        compress_version: str = "",
    ) -> None:
        if uri is None:
            uri = transport.uris.get(self.api_name)
            if uri is None:
                raise LookupError(f"no endpoint registered for {self.api_name}")
        super().__init__(self.resource, transport, uri, lister, compress_version)

    def get_infos(self) -> list[CommonInfo]:
        """Every listed object in report form, unchanged ones reduced to uid and cid."""
        if self.lister is None:
            raise RuntimeError("k8s client not enable")
        objects = list(self.lister.list())
        log.debug("[%s REPORT] list len: %d", self.label, len(objects))
        return [self.handle_increment(type(self).build(obj)) for obj in objects]

    def report(self) -> None:
        """Send current objects, then those that have disappeared."""
        if self.lister is None:
            log.warning("[%s REPORT] k8s client not enable", self.label)
            return
        infos = self.get_infos()
        self.report_k8s_metric(NAMESPACE_ALL, True, infos)
        self.report_k8s_metric(NAMESPACE_ALL, False, self.collect_vanished())


class DeploymentCollector(_WorkloadCollector):
    """Reports deployments."""

    api_name = API_K8S_DEPLOYMENT
    resource = DEPLOYMENT_RESOURCE
    label = "DEPLOYMENT"
    info_type = DeploymentInfo
    build = staticmethod(deployment_info)

    def report(self) -> None:
        """Send current deployments, then those that have disappeared."""
        super().report()

    def get_infos(self) -> list[CommonInfo]:
        """Deployments in report form."""
        return super().get_infos()


class DaemonsetCollector(_WorkloadCollector):
    """Reports daemonsets."""

    api_name = API_K8S_DAEMONSET
    resource = DAEMONSET_RESOURCE
    label = "DAEMONSET"
    info_type = DaemonsetInfo
    build = staticmethod(daemonset_info)

    def report(self) -> None:
        """Send current daemonsets, then those that have disappeared."""
        super().report()

    def get_infos(self) -> list[CommonInfo]:
        """Daemonsets in report form."""
        return super().get_infos()


class ReplicaSetCollector(_WorkloadCollector):
    """Reports replicasets."""

    api_name = API_K8S_REPLICASET
    # The server files replicasets under the node parameter name.
    resource = NODE_RESOURCE
    label = "REPLICASET"
    info_type = ReplicaSetInfo
    build = staticmethod(replicaset_info)

    def report(self) -> None:
        """Send current replicasets, then those that have disappeared."""
        super().report()

    def get_infos(self) -> list[CommonInfo]:
        """Replicasets in report form."""
        return super().get_infos()