"""Periodic reporting of collected metrics to the server."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from chaosagent.collectors.pod import API_K8S_POD, PodCollector
from chaosagent.collectors.service import ServiceCollector
from chaosagent.conn import ClientHandler
from chaosagent.wire import AgentSettings, Transport

log = logging.getLogger(__name__)

DEFAULT_REPORT_METRIC_PERIOD = 10.0
K8S_POD_METRIC = API_K8S_POD


class MetricCollector(Protocol):
    def report(self) -> None: ...


def _guarded(action: Callable[[], Any]) -> None:
    try:
        action()
    except Exception:
        log.exception("[metric] report failed")


class _Ticker:
    """Runs an action in a fresh thread once every period until stopped."""

    def __init__(self, period: float, action: Callable[[], Any], name: str) -> None:
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, args=(period, action), name=name, daemon=True)
        self._thread.start()

    def _run(self, period: float, action: Callable[[], Any]) -> None:
        while not self._stop.wait(period):
            threading.Thread(target=_guarded, args=(action,), daemon=True).start()

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()


@dataclass
class ReportMetricConfig:
    """How one metric is reported: its collector, whether it is on, and how often."""

    collector: MetricCollector | None
    enable: bool = False
    period: float = DEFAULT_REPORT_METRIC_PERIOD
    ticker: _Ticker | None = None


class ReportMetricConfigMap:
    """The metrics the agent may report, by name."""

    def __init__(self, transport: Transport, settings: AgentSettings | None = None) -> None:
        self.transport = transport
        self.settings = settings or AgentSettings()
        self.lock = threading.RLock()
        self.configs: dict[str, ReportMetricConfig] = {}

    def init_metric_config(
        self,
        service_collector: ServiceCollector | None,
        pod_collector: PodCollector | None,
        enable: bool,
    ) -> bool:
        """Register the pod metric, building collectors that were not given."""
        if pod_collector is None:
            if service_collector is None:
                service_collector = ServiceCollector(self.transport)
            try:
                pod_collector = PodCollector(self.transport, service_collector, self.settings)
            except LookupError as exc:
                log.warning("[metric report] pod collector unavailable: %s", exc)
                pod_collector = None
        config = ReportMetricConfig(pod_collector, enable, DEFAULT_REPORT_METRIC_PERIOD)
        return self.metric_registry(K8S_POD_METRIC, config)

    def metric_registry(self, metric_name: str, config: ReportMetricConfig) -> bool:
        """Register a metric; one without a collector is refused."""
        with self.lock:
            if config.collector is None:
                log.warning("[metric report] %s, registry collector is nil", metric_name)
                return False
            self.configs[metric_name] = config
            return True

    def close_enable(self, metric_name: str) -> None:
        """Stop reporting a running metric and mark it disabled."""
        with self.lock:
            config = self.configs.get(metric_name)
            if config is None or config.ticker is None:
                return
            config.enable = False
            config.ticker.stop()


class MetricHandler(ClientHandler):
    """Starts and stops the periodic reports of every enabled metric."""

    def __init__(self, config_map: ReportMetricConfigMap) -> None:
        self.config_map = config_map

    def start(self) -> None:
        """Start a ticker for each enabled metric."""
        with self.config_map.lock:
            for name, config in self.config_map.configs.items():
                if not config.enable or config.collector is None:
                    continue
                log.info("[metric] report %s metric, start!", name)
                config.ticker = _Ticker(config.period, config.collector.report, f"metric-{name}")
                config.enable = True

    def stop(self) -> None:
        """Stop every running metric."""
        with self.config_map.lock:
            names = list(self.config_map.configs)
        for name in names:
            self.config_map.close_enable(name)