"""Node eligibility and instance-id helpers for node-port targets."""

from __future__ import annotations

from aws_lb_backend.models import NodeInfo

# Nodes with either label must not receive load balancer traffic
LABEL_NODE_EXCLUDE_BALANCER = "node.kubernetes.io/exclude-from-external-load-balancers"
LABEL_ALPHA_NODE_EXCLUDE_BALANCER = "alpha.service-controller.kubernetes.io/exclude-balancer"

# Set by cluster-autoscaler right before it removes a node
TAINT_TO_BE_DELETED_BY_CA = "ToBeDeletedByClusterAutoscaler"

INSTANCE_ID_PREFIX = "i-"


def is_node_suitable_as_traffic_proxy(node: NodeInfo) -> bool:
    """Check whether a node may proxy node-port traffic."""
    if TAINT_TO_BE_DELETED_BY_CA in node.taints:
        return False
    if LABEL_NODE_EXCLUDE_BALANCER in node.labels:
        return False
    return LABEL_ALPHA_NODE_EXCLUDE_BALANCER not in node.labels


def extract_node_instance_id(node: NodeInfo) -> str | None:
    """Extract the EC2 instance id from a node's provider id.

    ``aws:///us-west-2a/i-0abc123`` yields ``i-0abc123``. Returns None when the
    provider id is missing or does not name an EC2 instance (e.g. Fargate).
    """
    if not node.provider_id:
        return None
    instance_id = node.provider_id.rstrip("/").rsplit("/", 1)[-1]
    if not instance_id.startswith(INSTANCE_ID_PREFIX):
        return None
    return instance_id
