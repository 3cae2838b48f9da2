import json

import pytest

from chaosagent.collectors.base import NODE_RESOURCE
from chaosagent.collectors.cluster import (
    API_K8S_NAMESPACE,
    API_K8S_NODE,
    NamespaceCollector,
    NamespaceInfo,
    NodeCollector,
    NodeInfo,
)
from chaosagent.wire import Response, Transport, Uri


class FakeLister:
    def __init__(self, objects):
        self.objects = list(objects)

    def list(self):
        return list(self.objects)


class Recorder:
    def __init__(self, result=None, success=True):
        self.calls = []
        self.result = result if result is not None else {}
        self.success = success

    def __call__(self, uri, request, sign):
        self.calls.append((uri, request))
        return Response(success=self.success, result=self.result)


def make_transport(recorder):
    return Transport(
        recorder,
        {API_K8S_NAMESPACE: Uri("server", API_K8S_NAMESPACE), API_K8S_NODE: Uri("server", API_K8S_NODE)},
    )


def namespace(uid, name):
    return {"metadata": {"uid": uid, "name": name, "creationTimestamp": "2024-01-02T03:04:05Z"}}


def test_get_namespaces_strips_names():
    collector = NamespaceCollector(make_transport(Recorder()), FakeLister([namespace("u1", " default "), namespace("u2", "kube-system")]))
    assert collector.get_namespaces() == ["default", "kube-system"]


def test_get_namespaces_without_lister_raises():
    collector = NamespaceCollector(make_transport(Recorder()))
    with pytest.raises(RuntimeError):
        collector.get_namespaces()


def test_missing_endpoint_raises():
    with pytest.raises(LookupError):
        NamespaceCollector(Transport(Recorder()))
    with pytest.raises(LookupError):
        NodeCollector(Transport(Recorder()))


def test_namespace_info_full_then_reduced_after_cid():
    recorder = Recorder(result={"u1": "cid-ns"})
    collector = NamespaceCollector(make_transport(recorder), FakeLister([namespace("u1", "default")]))
    collector.report()
    assert len(recorder.calls) == 1
    uri, request = recorder.calls[0]
    sent = json.loads(request.params[NODE_RESOURCE])
    assert sent[0]["uid"] == "u1"
    assert sent[0]["name"] == "default"
    assert sent[0]["createdTime"] == "2024-01-02T03:04:05Z"
    assert sent[0]["exist"] is True

    infos = collector.get_namespace_info()
    assert infos == [NamespaceInfo(uid="u1", exist=True, cid="cid-ns")]


def test_vanished_namespace_reported_as_gone():
    recorder = Recorder(result={"u1": "cid-ns"})
    lister = FakeLister([namespace("u1", "default")])
    collector = NamespaceCollector(make_transport(recorder), lister)
    collector.report()
    lister.objects = []
    collector.report()
    assert len(recorder.calls) == 2
    sent = json.loads(recorder.calls[1][1].params[NODE_RESOURCE])
    assert sent == [{"uid": "u1", "name": "", "createdTime": "", "exist": False, "cid": "cid-ns"}]
    assert collector.identifiers == {}


def test_report_without_lister_sends_nothing():
    recorder = Recorder()
    NamespaceCollector(make_transport(recorder)).report()
    NodeCollector(make_transport(recorder)).report()
    assert recorder.calls == []


def test_node_info_only_first_node_with_roles():
    nodes = [
        {
            "metadata": {
                "uid": "n1",
                "name": "node-a",
                "labels": {"node-role.kubernetes.io/worker": "", "node-role.kubernetes.io/master": ""},
            }
        },
        {"metadata": {"uid": "n2", "name": "node-b"}},
    ]
    collector = NodeCollector(make_transport(Recorder()), FakeLister(nodes), cluster_id="cluster-1")
    infos = collector.get_node_info()
    assert len(infos) == 1
    assert infos[0].uid == "n1"
    assert infos[0].role == "master,worker"
    assert infos[0].cluster_id == "cluster-1"


def test_node_without_roles_is_none():
    collector = NodeCollector(make_transport(Recorder()), FakeLister([{"metadata": {"uid": "n1", "name": "a"}}]))
    assert collector.get_node_info()[0].role == "<none>"


def test_node_info_to_dict_keys():
    info = NodeInfo(uid="n1", name="a", role="<none>", cluster_id="c", cluster_name="cn")
    assert info.to_dict() == {"uid": "n1", "name": "a", "role": "<none>", "clusterId": "c", "clusterName": "cn"}


def test_node_report_sends_node():
    recorder = Recorder()
    collector = NodeCollector(make_transport(recorder), FakeLister([{"metadata": {"uid": "n1", "name": "a"}}]))
    collector.report()
    assert len(recorder.calls) == 1
    sent = json.loads(recorder.calls[0][1].params[NODE_RESOURCE])
    assert sent[0]["uid"] == "n1"
    assert sent[0]["name"] == "a"