import json

import pytest

from chaosagent.collectors.base import (
    DAEMONSET_RESOURCE,
    DEPLOYMENT_RESOURCE,
    POD_RESOURCE,
    REPLICASET_RESOURCE,
    SERVICE_RESOURCE,
)
from chaosagent.collectors.pod import (
    API_K8S_POD,
    PodCollector,
    PodInfo,
    get_pod_state,
    handle_owner_references,
    pod_info,
)
from chaosagent.collectors.service import API_K8S_SERVICE, ServiceCollector
from chaosagent.wire import AgentSettings, Response, Transport, Uri


class FakeLister:
    def __init__(self, objects):
        self.objects = objects

    def list(self):
        return list(self.objects)


def make_transport():
    calls = []

    def sender(uri, request, sign):
        calls.append((uri, dict(request.params)))
        return Response(success=True, result={})

    uris = {API_K8S_POD: Uri(handler_name=API_K8S_POD), API_K8S_SERVICE: Uri(handler_name=API_K8S_SERVICE)}
    return Transport(sender, uris), calls


def pod(uid="pod-1", name="web-1", labels=None, status=None, **meta):
    metadata = {"uid": uid, "name": name, "namespace": "default", "labels": labels or {"app": "web"}}
    metadata.update(meta)
    return {"metadata": metadata, "spec": {}, "status": status or {"phase": "Running", "podIP": "10.1.0.7"}}


def agent_service(external_ips=None, svc_type="LoadBalancer"):
    spec = {"type": svc_type, "selector": {"app": "web"}}
    if external_ips:
        spec["externalIPs"] = external_ips
    return {"metadata": {"uid": "svc-1", "name": "chaos-agent", "namespace": "default"}, "spec": spec}


def running(ready=True):
    return {"ready": ready, "state": {"running": {}}}


def test_state_running_phase():
    assert get_pod_state({"status": {"phase": "Running", "containerStatuses": [running()]}}) == "Running"


def test_state_waiting_reason_wins():
    status = {"phase": "Running", "containerStatuses": [{"state": {"waiting": {"reason": "CrashLoopBackOff"}}}]}
    assert get_pod_state({"status": status}) == "CrashLoopBackOff"


def test_state_terminated_without_reason_uses_exit_code():
    status = {"phase": "Failed", "containerStatuses": [{"state": {"terminated": {"exitCode": 1}}}]}
    assert get_pod_state({"status": status}) == "ExitCode:1"


def test_state_terminated_with_signal():
    status = {"phase": "Failed", "containerStatuses": [{"state": {"terminated": {"exitCode": 137, "signal": 9}}}]}
    assert get_pod_state({"status": status}) == "Signal:9"


def test_state_completed_with_running_container_is_running():
    status = {
        "phase": "Running",
        "containerStatuses": [running(), {"state": {"terminated": {"reason": "Completed"}}}],
    }
    assert get_pod_state({"status": status}) == "Running"


def test_state_init_waiting_reason():
    status = {"phase": "Pending", "initContainerStatuses": [{"state": {"waiting": {"reason": "ErrImagePull"}}}]}
    assert get_pod_state({"status": status}) == "Init:ErrImagePull"


def test_state_init_progress_counts_done_containers():
    pod_obj = {
        "spec": {"initContainers": [{}, {}]},
        "status": {
            "phase": "Pending",
            "initContainerStatuses": [
                {"state": {"terminated": {"exitCode": 0}}},
                {"state": {"running": {}}},
            ],
        },
    }
    assert get_pod_state(pod_obj) == "Init:1/2"


def test_state_deleting_pod():
    pod_obj = {"metadata": {"deletionTimestamp": "2024-01-01T00:00:00Z"}, "status": {"phase": "Running"}}
    assert get_pod_state(pod_obj) == "Terminating"
    pod_obj["status"]["reason"] = "NodeLost"
    assert get_pod_state(pod_obj) == "Unknown"


def test_pod_info_prefers_config_hash_as_uid():
    info = pod_info(pod(annotations={"kubernetes.io/config.hash": "hash-abc"}))
    assert info.uid == "hash-abc"
    assert info.ip == "10.1.0.7"
    assert info.state == "Running"
    assert info.exist is True


def test_handle_owner_references():
    info = handle_owner_references(
        PodInfo(uid="p"),
        [{"kind": "ReplicaSet", "uid": "rs-1"}, {"kind": "DaemonSet", "uid": "ds-1"}, {"kind": "Job", "uid": "j"}],
    )
    assert (info.replica_set_uid, info.daemonset_uid) == ("rs-1", "ds-1")


@pytest.mark.parametrize(
    "resource, attr",
    [
        (SERVICE_RESOURCE, "service_uid"),
        (DEPLOYMENT_RESOURCE, "deployment_uid"),
        (REPLICASET_RESOURCE, "replica_set_uid"),
        (DAEMONSET_RESOURCE, "daemonset_uid"),
    ],
)
def test_add_link(resource, attr):
    info = PodInfo(uid="p")
    info.add_link(resource, "u-1")
    assert getattr(info, attr) == "u-1"


def test_missing_pod_uri_raises():
    transport = Transport(lambda u, r, s: Response(True))
    with pytest.raises(LookupError):
        PodCollector(transport, ServiceCollector(transport), AgentSettings())


def test_get_pod_info_skips_foreign_objects_and_links():
    transport, _ = make_transport()
    services = ServiceCollector(transport, FakeLister([agent_service()]))
    _, selectors = services.get_service_info()
    collector = PodCollector(transport, services, AgentSettings(), FakeLister([pod(), "junk"]))
    infos = collector.get_pod_info(selectors)
    assert len(infos) == 1
    assert infos[0].service_uid == "svc-1"


def test_set_agent_external_ip_takes_first_address():
    transport, _ = make_transport()
    settings = AgentSettings()
    services = ServiceCollector(transport, FakeLister([agent_service(["1.2.3.4", "5.6.7.8"])]))
    collector = PodCollector(transport, services, settings, FakeLister([]))
    assert collector.set_agent_external_ip() == "1.2.3.4"
    assert settings.ip == "1.2.3.4"


def test_set_agent_external_ip_skips_pending_and_local_ip():
    transport, _ = make_transport()
    settings = AgentSettings(ip="original")
    services = ServiceCollector(transport, FakeLister([agent_service()]))
    collector = PodCollector(transport, services, settings, FakeLister([]))
    assert collector.set_agent_external_ip() is None
    assert settings.ip == "original"

    services_with_ip = ServiceCollector(transport, FakeLister([agent_service(["1.2.3.4"])]))
    pinned = PodCollector(transport, services_with_ip, settings, FakeLister([]), local_ip="9.9.9.9")
    assert pinned.set_agent_external_ip() is None
    assert settings.ip == "original"


def test_report_sends_linked_pods():
    transport, calls = make_transport()
    services = ServiceCollector(transport, FakeLister([agent_service(["1.2.3.4"])]))
    settings = AgentSettings()
    collector = PodCollector(transport, services, settings, FakeLister([pod()]))
    collector.report()
    assert len(calls) == 1
    payload = json.loads(calls[0][1][POD_RESOURCE])
    assert payload[0]["uid"] == "pod-1"
    assert payload[0]["serviceUid"] == "svc-1"
    assert settings.ip == "1.2.3.4"


def test_report_without_lister_sends_nothing():
    transport, calls = make_transport()
    collector = PodCollector(transport, ServiceCollector(transport), AgentSettings())
    collector.report()
    assert calls == []