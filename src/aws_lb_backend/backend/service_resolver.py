"""Resolve the targets of a live Service by reading cluster state through the Kubernetes clients."""

from __future__ import annotations

import structlog

from aws_lb_backend.backend.endpoint_resolver import resolve_node_port_endpoints, resolve_pod_endpoints
from aws_lb_backend.backend.endpoints_data import merge_endpoint_slices
from aws_lb_backend.backend.options import EndpointResolveOption, build_resolve_options
from aws_lb_backend.clients.k8s_core import K8sCoreClient
from aws_lb_backend.clients.k8s_discovery import K8sDiscoveryClient
from aws_lb_backend.config import ClusterConfig, resolve_cluster
from aws_lb_backend.models import NodePortEndpoint, PodEndpoint, ServiceInfo, ServicePort
from aws_lb_backend.validation import ConfigurationError, validate_namespace

log = structlog.get_logger()

SERVICE_TYPES_WITH_NODE_PORTS = {"NodePort", "LoadBalancer"}


def find_service_port(service: ServiceInfo, port: int | str) -> ServicePort:
    """Find a Service port by number (int) or by name (str).

    Raises:
        ConfigurationError: If the Service has no such port.
    """
    for svc_port in service.ports:
        if isinstance(port, int) and svc_port.port == port:
            return svc_port
        if isinstance(port, str) and svc_port.name == port:
            return svc_port
    msg = f"Unable to find port {port!r} on service {service.namespace}/{service.name}"
    raise ConfigurationError(msg)


class ServiceEndpointResolver:
    """Resolves pod or node-port targets of Services in one cluster."""

    def __init__(
        self,
        cluster_config: ClusterConfig,
        core_client: K8sCoreClient | None = None,
        discovery_client: K8sDiscoveryClient | None = None,
    ) -> None:
        self._cluster_config = cluster_config
        self._core = core_client or K8sCoreClient(cluster_config)
        self._discovery = discovery_client or K8sDiscoveryClient(cluster_config)

    @classmethod
    def for_cluster(cls, cluster_id: str) -> ServiceEndpointResolver:
        """Create a resolver for a cluster of the loaded cluster map.

        Raises:
            ValueError: If the cluster is not configured.
        """
        return cls(resolve_cluster(cluster_id))

    async def resolve_pod_endpoints(
        self,
        namespace: str,
        name: str,
        port: int | str,
        *opts: EndpointResolveOption,
    ) -> list[PodEndpoint]:
        """Resolve the pods behind ``port`` of Service ``namespace/name``.

        Raises:
            ConfigurationError: On malformed options or an unknown service port.
        """
        validate_namespace(namespace)
        options = build_resolve_options(*opts)
        service = await self._core.get_service(namespace, name)
        svc_port = find_service_port(service, port)

        slices = await self._discovery.get_endpoint_slices(namespace, name)
        endpoints_data = merge_endpoint_slices(slices)
        if not endpoints_data.endpoints:
            log.info(
                "service_has_no_endpoints",
                cluster=self._cluster_config.cluster_id,
                namespace=namespace,
                service=name,
            )
            return []

        pods = {pod.key: pod for pod in await self._core.get_pods(namespace)}
        endpoints = resolve_pod_endpoints(
            endpoints_data,
            options,
            port_name=svc_port.name,
            pod_lookup=lambda ns, pod_name: pods.get((ns or namespace, pod_name)),
        )
        log.info(
            "resolved_pod_endpoints",
            cluster=self._cluster_config.cluster_id,
            namespace=namespace,
            service=name,
            port=port,
            candidates=len(endpoints_data.endpoints),
            endpoints=len(endpoints),
        )
        return endpoints

    async def resolve_node_port_endpoints(
        self,
        namespace: str,
        name: str,
        port: int | str,
        *opts: EndpointResolveOption,
    ) -> list[NodePortEndpoint]:
        """Resolve the nodes proxying ``port`` of Service ``namespace/name`` through its node port.

        Raises:
            ConfigurationError: On malformed options, an unknown service port,
                or a Service type without node ports.
        """
        validate_namespace(namespace)
        options = build_resolve_options(*opts)
        service = await self._core.get_service(namespace, name)
        if service.type not in SERVICE_TYPES_WITH_NODE_PORTS:
            msg = f"Service {namespace}/{name} must be of type NodePort or LoadBalancer, got {service.type}"
            raise ConfigurationError(msg)
        svc_port = find_service_port(service, port)
        if not svc_port.node_port:
            msg = f"Port {port!r} of service {namespace}/{name} has no node port allocated"
            raise ConfigurationError(msg)

        selector = options.node_selector.selector_string()
        if selector is None:
            return []
        nodes = await self._core.get_nodes(label_selector=selector or None)
        endpoints = resolve_node_port_endpoints(nodes, svc_port.node_port, options)
        log.info(
            "resolved_node_port_endpoints",
            cluster=self._cluster_config.cluster_id,
            namespace=namespace,
            service=name,
            port=port,
            nodes=len(nodes),
            endpoints=len(endpoints),
        )
        return endpoints
