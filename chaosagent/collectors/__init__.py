"""Collectors that report Kubernetes resources to the server in increments."""

__all__ = ["base", "cluster", "ingress", "pod", "service", "virtualnode", "workloads"]