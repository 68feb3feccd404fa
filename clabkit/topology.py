"""Nodes, endpoints and links of a lab topology."""

from __future__ import annotations

import secrets
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

DEFAULT_PREFIX = "clab"
LAB_NAME_PREFIX = "__lab-name"
HOST_NS_PATH = "__host"
DEFAULT_VETH_LINK_MTU = 9500
CLAB_OUI = "aa:c1:ab"
MAX_INTERFACE_NAME_LENGTH = 15

_endpoints_lock = threading.Lock()


class TopologyError(ValueError):
    """Raised when a topology definition is malformed."""


@dataclass(eq=False)
class NodeConfig:
    """Configuration of a single lab node."""

    short_name: str = ""
    long_name: str = ""
    kind: str = ""
    node_type: str = ""
    group: str = ""
    image: str = ""
    lab_dir: str = ""
    index: int = 0
    runtime: str = ""
    network_mode: str = ""
    mgmt_ipv4_address: str = ""
    mgmt_ipv6_address: str = ""
    ns_path: str = ""
    is_root_namespace_based: bool = False
    startup_delay: int = 0
    wait_for: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)
    binds: list[str] = field(default_factory=list)
    vars: dict[str, Any] = field(default_factory=dict)
    endpoints: list[Endpoint] = field(default_factory=list, repr=False)


@dataclass(eq=False)
class Endpoint:
    """One end of a link: an interface on a node."""

    node: NodeConfig
    endpoint_name: str
    mac: str = ""

    def __str__(self) -> str:
        return f"{self.node.short_name}:{self.endpoint_name}"


@dataclass(eq=False)
class Link:
    """A point-to-point link between two endpoints."""

    a: Endpoint
    b: Endpoint
    mtu: int = DEFAULT_VETH_LINK_MTU
    labels: dict[str, str] = field(default_factory=dict)
    vars: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"link [{self.a}, {self.b}]"


@dataclass
class LinkDefinition:
    """A link as written in the topology file."""

    endpoints: Sequence[str]
    mtu: int = 0
    labels: dict[str, str] = field(default_factory=dict)
    vars: dict[str, Any] = field(default_factory=dict)


def gen_mac(oui: str = CLAB_OUI) -> str:
    """Return a random MAC address under the given OUI."""
    tail = secrets.token_bytes(3)
    return oui + "".join(f":{b:02x}" for b in tail)


def long_name(prefix: str | None, lab_name: str, node_name: str) -> str:
    """Return the container name of a node for the given lab prefix."""
    if prefix is None:
        prefix = DEFAULT_PREFIX
    if prefix == "":
        return node_name
    if prefix == LAB_NAME_PREFIX:
        return f"{lab_name}-{node_name}"
    return f"{prefix}-{lab_name}-{node_name}"


def _special_node(name: str) -> NodeConfig | None:
    if name in ("host", "macvlan"):
        return NodeConfig(kind=name, short_name=name, ns_path=HOST_NS_PATH)
    if name == "mgmt-net":
        return NodeConfig(kind="bridge", short_name="mgmt-net")
    return None


def new_endpoint(spec: str, nodes: Mapping[str, NodeConfig]) -> Endpoint:
    """Build an endpoint from a "node:interface" string.

    The endpoint is also recorded on the node it belongs to.
    """
    parts = spec.split(":")
    if len(parts) != 2:
        raise TopologyError(f"endpoint {spec} has wrong syntax")
    node_name, iface = parts
    if len(iface) > MAX_INTERFACE_NAME_LENGTH:
        raise TopologyError(
            f"interface '{iface}' name exceeds maximum length of 15 characters"
        )
    mac = gen_mac(CLAB_OUI)

    special = _special_node(node_name)
    if special is not None:
        return Endpoint(node=special, endpoint_name=iface, mac=mac)

    node = nodes.get(node_name)
    if node is None:
        raise TopologyError(
            "not all nodes are specified in the 'topology.nodes' section or the "
            f"names don't match in the 'links.endpoints' section: {node_name}"
        )
    endpoint = Endpoint(node=node, endpoint_name=iface, mac=mac)
    with _endpoints_lock:
        node.endpoints.append(endpoint)
    return endpoint


def new_link(definition: LinkDefinition, nodes: Mapping[str, NodeConfig]) -> Link:
    """Build a link from its topology definition."""
    if len(definition.endpoints) != 2:
        raise TopologyError(
            f"endpoint {list(definition.endpoints)!r} has wrong syntax, "
            "unexpected number of items"
        )
    mtu = definition.mtu or DEFAULT_VETH_LINK_MTU
    return Link(
        a=new_endpoint(definition.endpoints[0], nodes),
        b=new_endpoint(definition.endpoints[1], nodes),
        mtu=mtu,
        labels=definition.labels,
        vars=definition.vars,
    )


def get_short_name(lab_name: str, prefix: str | None, container_name: str) -> str:
    """Recover a node's short name from its container name."""
    if prefix == "":
        return container_name
    parts = container_name.split(f"-{lab_name}-")
    if len(parts) != 2:
        raise TopologyError(f"failed to parse container name {container_name!r}")
    return parts[1]