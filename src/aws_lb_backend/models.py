"""Pydantic v2 models for resolver inputs, cluster objects, and resolved endpoints."""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

POD_CONDITION_CONTAINERS_READY = "ContainersReady"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# --- EndpointSlice data ---


class EndpointPort(_Frozen):
    """A port declared by an EndpointSlice."""

    name: str = ""
    protocol: str = "TCP"
    port: int | None = None


class ObjectReference(_Frozen):
    """Target reference of an endpoint, usually the backing pod."""

    kind: str = "Pod"
    namespace: str | None = None
    name: str
    uid: str | None = None


class EndpointEntry(_Frozen):
    """A single endpoint from an EndpointSlice.

    ``ports`` holds the ports declared by the slice this entry came from. Slices
    group endpoints by port set, so two entries of one Service can map the same
    port name to different container ports.
    """

    addresses: tuple[str, ...] = Field(min_length=1)
    ready: bool | None = None
    serving: bool | None = None
    terminating: bool | None = None
    node_name: str | None = None
    zone: str | None = None
    target_ref: ObjectReference | None = None
    ports: tuple[EndpointPort, ...] = ()

    @property
    def address(self) -> str:
        # All addresses of an endpoint are fungible; consumers use the first.
        return self.addresses[0]


class EndpointsData(_Frozen):
    """The merged membership of one Service across all its EndpointSlices."""

    ports: tuple[EndpointPort, ...] = ()
    endpoints: tuple[EndpointEntry, ...] = ()


# --- Cluster objects ---


class PodInfo(_Frozen):
    """The subset of a Pod that endpoint resolution and target building need."""

    namespace: str
    name: str
    uid: str | None = None
    node_name: str | None = None
    pod_ip: str | None = None
    conditions: dict[str, bool] = Field(default_factory=dict)

    @property
    def key(self) -> tuple[str, str]:
        return (self.namespace, self.name)

    def is_containers_ready(self) -> bool:
        return self.conditions.get(POD_CONDITION_CONTAINERS_READY, False)

    def has_any_of_readiness_gates(self, gates: tuple[str, ...] | list[str]) -> bool:
        """True if any of ``gates`` is present on the pod as a condition with status True."""
        return any(self.conditions.get(gate, False) for gate in gates)


class NodeAddress(_Frozen):
    type: str
    address: str


class NodeInfo(_Frozen):
    """The subset of a Node that node-port resolution needs."""

    name: str
    labels: dict[str, str] = Field(default_factory=dict)
    provider_id: str | None = None
    taints: tuple[str, ...] = ()
    addresses: tuple[NodeAddress, ...] = ()
    conditions: dict[str, bool] = Field(default_factory=dict)

    def ips(self) -> list[str]:
        """Node IP addresses (hostnames excluded), internal addresses first."""
        order = {"InternalIP": 0, "ExternalIP": 1}
        ip_addresses = [a for a in self.addresses if a.type in order]
        return [a.address for a in sorted(ip_addresses, key=lambda a: order[a.type])]


class ServicePort(_Frozen):
    name: str = ""
    protocol: str = "TCP"
    port: int
    target_port: int | str | None = None
    node_port: int | None = None


class ServiceInfo(_Frozen):
    namespace: str
    name: str
    type: str = "ClusterIP"
    ports: tuple[ServicePort, ...] = ()


# --- Resolved endpoints ---


class PodEndpoint(_Frozen):
    """An endpoint provided by a pod directly."""

    kind: Literal["pod"] = "pod"
    ip: str
    port: int = Field(ge=1, le=65535)
    pod: PodInfo | None = None


class NodePortEndpoint(_Frozen):
    """An endpoint provided by a node port acting as traffic proxy."""

    kind: Literal["node_port"] = "node_port"
    instance_id: str
    port: int = Field(ge=1, le=65535)
    node: NodeInfo


Endpoint = Annotated[PodEndpoint | NodePortEndpoint, Field(discriminator="kind")]
