"""Kubernetes Core API wrapper: services, pods, nodes."""

from __future__ import annotations

import asyncio
from typing import Any

import structlog
from kubernetes import client as k8s_client

from aws_lb_backend.clients import load_k8s_api_client
from aws_lb_backend.config import ClusterConfig
from aws_lb_backend.models import NodeAddress, NodeInfo, PodInfo, ServiceInfo, ServicePort

log = structlog.get_logger()


def _conditions(raw_conditions: Any) -> dict[str, bool]:
    return {c.type: c.status == "True" for c in (raw_conditions or [])}


def _service_info(svc: Any) -> ServiceInfo:
    ports = [
        ServicePort(
            name=p.name or "",
            protocol=p.protocol or "TCP",
            port=p.port,
            target_port=p.target_port,
            node_port=p.node_port,
        )
        for p in (svc.spec.ports or [])
    ]
    return ServiceInfo(
        namespace=svc.metadata.namespace,
        name=svc.metadata.name,
        type=svc.spec.type or "ClusterIP",
        ports=tuple(ports),
    )


def _pod_info(pod: Any) -> PodInfo:
    return PodInfo(
        namespace=pod.metadata.namespace,
        name=pod.metadata.name,
        uid=pod.metadata.uid,
        node_name=pod.spec.node_name,
        pod_ip=pod.status.pod_ip,
        conditions=_conditions(pod.status.conditions),
    )


def _node_info(node: Any) -> NodeInfo:
    return NodeInfo(
        name=node.metadata.name,
        labels=node.metadata.labels or {},
        provider_id=node.spec.provider_id,
        taints=tuple(t.key for t in (node.spec.taints or [])),
        addresses=tuple(NodeAddress(type=a.type, address=a.address) for a in (node.status.addresses or [])),
        conditions=_conditions(node.status.conditions),
    )


class K8sCoreClient:
    """Wrapper around the Kubernetes Core V1 API."""

    def __init__(self, cluster_config: ClusterConfig) -> None:
        self._cluster_config = cluster_config
        self._api: k8s_client.CoreV1Api | None = None

    def _get_api(self) -> k8s_client.CoreV1Api:
        if self._api is None:
            api_client = load_k8s_api_client(self._cluster_config.kubeconfig_context)
            self._api = k8s_client.CoreV1Api(api_client)
        return self._api

    async def get_service(self, namespace: str, name: str) -> ServiceInfo:
        """Read a Service and its ports."""
        api = self._get_api()
        try:
            svc = await asyncio.to_thread(api.read_namespaced_service, name, namespace)
        except Exception:
            log.error(
                "failed_to_read_service",
                cluster=self._cluster_config.cluster_id,
                namespace=namespace,
                service=name,
            )
            raise
        return _service_info(svc)

    async def get_pods(self, namespace: str) -> list[PodInfo]:
        """List the pods of a namespace."""
        api = self._get_api()
        try:
            pod_list = await asyncio.to_thread(api.list_namespaced_pod, namespace)
        except Exception:
            log.error(
                "failed_to_list_pods",
                cluster=self._cluster_config.cluster_id,
                namespace=namespace,
            )
            raise
        return [_pod_info(pod) for pod in pod_list.items]

    async def get_nodes(self, label_selector: str | None = None) -> list[NodeInfo]:
        """List nodes, optionally filtered server-side by a label selector."""
        api = self._get_api()
        kwargs: dict[str, Any] = {}
        if label_selector:
            kwargs["label_selector"] = label_selector
        try:
            node_list = await asyncio.to_thread(api.list_node, **kwargs)
        except Exception:
            log.error(
                "failed_to_list_nodes",
                cluster=self._cluster_config.cluster_id,
                label_selector=label_selector,
            )
            raise
        return [_node_info(node) for node in node_list.items]
