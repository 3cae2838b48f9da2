# chaosagent

The core of a chaos engineering agent, as a library. It sends requests to a
control server, keeps a heartbeat and watches its outcome, and reports the
state of Kubernetes resources to the server in increments.

## Talking to the server — `chaosagent.wire`

- `Uri`, `Request` and `Response` describe one call to the server.
  `Request.add_param(key, value)` returns the request, so calls can be chained.
- `Transport(sender, uris)` wraps a sender callable that you supply,
  `sender(uri, request, sign) -> Response`, together with a mapping of endpoint
  names to `Uri`s (`transport.uris`). `Transport.invoke(uri, request, sign)`
  calls the sender; any exception it raises comes out as `TransportError`.
- `AgentSettings` holds the agent's address, application instance and group,
  cid, version and similar values used in requests and log lines.
- `AsyncReportHandler.report_status(uid, status, error_msg, tool_type, uri)`
  reports the outcome of an asynchronous chaos tool run and returns whether the
  server accepted it.
- `CallbackHandler.callback(...)` reports the result of an upgrade to the
  `upgradeCallback` endpoint; it returns `False` when that endpoint is not
  registered or the call failed.
- `CloseHandler.shutdown()` sends a close notice to the `close` endpoint in a
  background thread and waits at most `grace_period` seconds (2 by default).

## Connection handlers — `chaosagent.conn`

`ClientHandler` is the abstract base for something started with `start()` and
stopped with `stop()`. `Conn.register(name, handler)` adds a handler, replacing
one of the same name, and `Conn.start()` starts each in its own daemon thread
and returns the threads. A handler whose `start()` raises is reported to the
`on_failure` callback given to `Conn` as a `ConnectionStartError`; without a
callback the failure is logged and the process exits with status 1.

## Heartbeat — `chaosagent.heartbeat`

`HeartbeatHandler(config, transport, settings)` sends a heartbeat every
`HeartbeatConfig.period` seconds in a background thread once `start()` is
called, until `stop()`. Each outcome is recorded as an `HBSnapshot` in a
`HeartbeatHistory`, which keeps the last 26 by default and can be read with
`newest_first()`. `build_request()` and `send_heartbeat(uri, request)` expose a
single round.

## Monitoring — `chaosagent.monitor`

`HeartbeatChecker.check()` walks the heartbeat history newest first and
returns a `MonitorAction`: after 12 failures in a row it asks to stop (once),
and after that, 3 successes in a row ask to start again. `Monitor(transport,
checker)` runs the check every 10 seconds in a background thread; `run_once()`
does a single round, sending a `stop` or `start` event to the `event` endpoint
as the action says. An action that asks to exit calls `on_exit`, which by
default sends SIGTERM to the current process.

## Kubernetes reporting — `chaosagent.collectors`

Collectors take Kubernetes objects in their JSON form (plain dicts) from a
lister, any object with a `list()` method, and report them through the
transport. Records new or changed since the last report are sent in full;
unchanged ones carry only their uid and the cid the server assigned; resources
that have disappeared are reported with `exist` false. A failed report clears
what the collector remembers, so the next report is sent in full.

- `collectors.base`: `K8sBaseCollector`, `CommonInfo`, `ResourceIdentifier`,
  `md5_sum_data`, `MultiLister` and `multi_namespace_lister`.
- `collectors.workloads`: `DeploymentCollector`, `DaemonsetCollector`,
  `ReplicaSetCollector` and their info builders.
- `collectors.service`: `ServiceCollector`, which also keeps the label
  selectors that link pods to services.
- `collectors.pod`: `PodCollector`, `get_pod_state` (the status `kubectl`
  would show), and `set_agent_external_ip`, which takes the agent's address
  from the `chaos-agent` service.
- `collectors.cluster`: `NamespaceCollector` and `NodeCollector`.
- `collectors.ingress`: `IngressCollector` with rules and backend service uids.
- `collectors.virtualnode`: `VirtualNodeCollector`, reporting nodes together
  with the pods on them.

Shared formatting helpers live in `chaosagent.k8sformat`: service ports,
external IPs, load balancer status, node roles, label selector matching,
RFC 3339 timestamps and `NamespaceList`.

## Periodic reports — `chaosagent.metricreport`

`ReportMetricConfigMap` holds `ReportMetricConfig`s by name;
`metric_registry` refuses one without a collector and `init_metric_config`
registers the pod metric. `MetricHandler` is a `ClientHandler`: `start()` runs
each enabled collector's `report()` every period, and `stop()` ends them.

## What it does not do

The package has no command and no HTTP server of its own. It contains no
HTTP client for the control server — the sender given to `Transport` does the
sending — and no Kubernetes API client: listers must be supplied by the caller.
It does not register the agent with the server, read configuration or command
line options, or store state on disk.

## Requirements

Python 3.10 or later. No third-party dependencies; the tests use pytest.