import json

import pytest

from chaosagent.collectors.pod import PodInfo
from chaosagent.collectors.virtualnode import (
    NodeCapacity,
    VirtualNodeCollector,
    VirtualNodeInfo,
    get_node_capacity,
)
from chaosagent.wire import Response, Transport, Uri


class _Lister:
    def __init__(self, objects):
        self.objects = list(objects)

    def list(self):
        return list(self.objects)


class _Server:
    def __init__(self):
        self.requests = []
        self.result = {}

    def __call__(self, uri, request, sign):
        self.requests.append(request)
        return Response(success=True, result=self.result)


def _node(uid="n-1", name="vnode-a", labels=None):
    return {
        "metadata": {"uid": uid, "name": name, "labels": labels or {}},
        "status": {
            "allocatable": {"cpu": "4", "memory": "8Gi"},
            "addresses": [{"address": "10.0.0.1", "type": "InternalIP"}],
            "nodeInfo": {"osImage": "linux"},
        },
    }


def _pod(uid="p-1", name="pod-a"):
    return {
        "metadata": {"uid": uid, "name": name, "namespace": "default"},
        "status": {"phase": "Running", "podIP": "10.1.0.2"},
    }


def _collector(nodes, pods_by_node):
    server = _Server()
    transport = Transport(server, {"k8sVirtualNode": Uri(handler_name="k8sVirtualNode")})
    node_lister = _Lister(nodes)
    collector = VirtualNodeCollector(
        transport,
        lister=node_lister,
        pod_lister_factory=lambda name: _Lister(pods_by_node.get(name, [])),
    )
    return collector, server, node_lister


def test_get_node_capacity_reads_cpu_and_memory():
    assert get_node_capacity({"cpu": "4", "memory": "8Gi"}) == NodeCapacity(cpu="4", memory="8Gi")


def test_get_node_capacity_missing_is_zero():
    assert get_node_capacity(None) == NodeCapacity(cpu="0", memory="0")


def test_missing_endpoint_raises():
    with pytest.raises(LookupError):
        VirtualNodeCollector(Transport(_Server()))


def test_node_info_without_roles_and_with_pods():
    collector, _, _ = _collector([_node()], {"vnode-a": [_pod()]})
    (info,) = collector.get_virtual_node_info()
    assert info.role == "<none>"
    assert info.capacity == NodeCapacity(cpu="4", memory="8Gi")
    assert [pod.uid for pod in info.pods] == ["p-1"]
    assert info.pods[0].ip == "10.1.0.2"
    assert "p-1" in collector.second_identifiers


def test_node_roles_are_joined():
    labels = {"node-role.kubernetes.io/worker": "", "kubernetes.io/role": "edge"}
    collector, _, _ = _collector([_node(labels=labels)], {})
    (info,) = collector.get_virtual_node_info()
    assert info.role == "edge,worker"


def test_get_pods_without_factory_raises():
    server = _Server()
    collector = VirtualNodeCollector(Transport(server), lister=_Lister([]), uri=Uri())
    with pytest.raises(RuntimeError):
        collector.get_pods(_node())


def test_report_sends_nodes_under_node_param():
    collector, server, _ = _collector([_node()], {"vnode-a": [_pod()]})
    collector.report()
    payload = json.loads(server.requests[0].params["node"])
    assert payload[0]["uid"] == "n-1"
    assert payload[0]["pods"][0]["uid"] == "p-1"


def test_cids_reduce_unchanged_resources():
    collector, server, _ = _collector([_node()], {"vnode-a": [_pod()]})
    server.result = {"virtualnode": {"n-1": "cid-node"}, "pod": {"p-1": "cid-pod"}}
    collector.report()
    assert collector.identifiers["n-1"].cid == "cid-node"
    assert collector.second_identifiers["p-1"].cid == "cid-pod"
    (info,) = collector.get_virtual_node_info()
    assert (info.uid, info.cid, info.name) == ("n-1", "cid-node", "")
    assert info.pods == [PodInfo(uid="p-1", exist=True, cid="cid-pod")]


def test_vanished_node_is_reported_with_vanished_pods():
    collector, server, node_lister = _collector([_node()], {"vnode-a": [_pod()]})
    server.result = {"virtualnode": {"n-1": "cid-node"}, "pod": {"p-1": "cid-pod"}}
    collector.report()
    node_lister.objects = []
    server.requests.clear()
    collector.report()
    payload = json.loads(server.requests[-1].params["node"])
    assert payload[0]["uid"] == "n-1"
    assert payload[0]["exist"] is False
    assert payload[0]["pods"][0]["uid"] == "p-1"
    assert collector.identifiers == {}
    assert collector.second_identifiers == {}


def test_collect_vanished_keeps_current_entries():
    collector, _, _ = _collector([_node()], {"vnode-a": [_pod()]})
    collector.get_virtual_node_info()
    assert collector.collect_vanished() == []
    assert collector.identifiers["n-1"].curr is False


def test_vanished_without_cid_is_forgotten_silently():
    collector, _, _ = _collector([_node()], {})
    collector.get_virtual_node_info()
    collector.collect_vanished()
    assert collector.collect_vanished() == []
    assert "n-1" not in collector.identifiers


def test_virtual_node_info_to_dict_keeps_capacity():
    info = VirtualNodeInfo(uid="n-1", exist=True, capacity=NodeCapacity(cpu="2"))
    data = info.to_dict()
    assert data["capacity"] == {"cpu": "2"}
    assert "pods" not in data