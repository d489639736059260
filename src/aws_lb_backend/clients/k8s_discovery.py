"""Kubernetes Discovery API wrapper: EndpointSlices."""

from __future__ import annotations

import asyncio
from typing import Any

import structlog
from kubernetes import client as k8s_client

from aws_lb_backend.clients import load_k8s_api_client
from aws_lb_backend.config import ClusterConfig

log = structlog.get_logger()

# Set by the EndpointSlice controller on every slice it manages
LABEL_SERVICE_NAME = "kubernetes.io/service-name"


def _slice_dict(eps: Any) -> dict[str, Any]:
    endpoints = []
    for ep in eps.endpoints or []:
        conditions = ep.conditions
        ref = ep.target_ref
        endpoints.append(
            {
                "addresses": list(ep.addresses or []),
                "conditions": {
                    "ready": conditions.ready if conditions else None,
                    "serving": conditions.serving if conditions else None,
                    "terminating": conditions.terminating if conditions else None,
                },
                "node_name": ep.node_name,
                "zone": ep.zone,
                "target_ref": (
                    {"kind": ref.kind, "namespace": ref.namespace, "name": ref.name, "uid": ref.uid} if ref else None
                ),
            }
        )
    return {
        "metadata": {"name": eps.metadata.name, "namespace": eps.metadata.namespace},
        "address_type": eps.address_type,
        "ports": [{"name": p.name, "protocol": p.protocol, "port": p.port} for p in (eps.ports or [])],
        "endpoints": endpoints,
    }


class K8sDiscoveryClient:
    """Wrapper around the Kubernetes Discovery V1 API."""

    def __init__(self, cluster_config: ClusterConfig) -> None:
        self._cluster_config = cluster_config
        self._api: k8s_client.DiscoveryV1Api | None = None

    def _get_api(self) -> k8s_client.DiscoveryV1Api:
        if self._api is None:
            api_client = load_k8s_api_client(self._cluster_config.kubeconfig_context)
            self._api = k8s_client.DiscoveryV1Api(api_client)
        return self._api

    async def get_endpoint_slices(self, namespace: str, service_name: str) -> list[dict[str, Any]]:
        """List the EndpointSlices of a Service as plain dicts.

        Returns an empty list when the Service has no slices yet.
        """
        api = self._get_api()
        try:
            slice_list = await asyncio.to_thread(
                api.list_namespaced_endpoint_slice,
                namespace,
                label_selector=f"{LABEL_SERVICE_NAME}={service_name}",
            )
        except Exception:
            log.error(
                "failed_to_list_endpoint_slices",
                cluster=self._cluster_config.cluster_id,
                namespace=namespace,
                service=service_name,
            )
            raise
        return [_slice_dict(eps) for eps in slice_list.items]
