"""Chaos engineering agent core: server requests, heartbeat monitoring and Kubernetes resource reporting."""

__version__ = "1.1.0"

__all__ = ["collectors", "conn", "heartbeat", "k8sformat", "metricreport", "monitor", "wire"]