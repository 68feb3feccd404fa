"""Dependencies between lab nodes and waiting on external containers."""

from __future__ import annotations

import enum
import logging
import time
from collections.abc import Callable, Collection, Mapping, MutableMapping, MutableSequence
from typing import Any, Protocol

from clabkit.topology import Link, NodeConfig

log = logging.getLogger(__name__)

DEFAULT_EXTERNAL_WAIT_TIMEOUT = 15 * 60.0
DEFAULT_EXTERNAL_WAIT_INTERVAL = 1.0


class ContainerStatus(enum.Enum):
    """Status of a container as reported by a container runtime."""

    RUNNING = "running"
    STOPPED = "stopped"
    NOT_FOUND = "notfound"


class IncorrectInputError(ValueError):
    """Raised when user input does not match the topology."""


class _Dependencies(Protocol):
    def add_dependency(self, dependee: str, depender: str) -> None: ...


def _container_reference(network_mode: str) -> str | None:
    """Return the container named by a "container:<name>" network mode."""
    kind, sep, name = network_mode.partition(":")
    if kind != "container" or not sep:
        return None
    return name


def filter_nodes(
    topology_nodes: MutableMapping[str, Any],
    links: MutableMapping[Any, Link] | MutableSequence[Link],
    node_filter: Collection[str],
) -> None:
    """Keep only the filtered nodes and the links between them, in place.

    An empty filter keeps everything.
    """
    if not node_filter:
        return

    for name in node_filter:
        if name not in topology_nodes:
            raise IncorrectInputError(
                f"node {name!r} is not present in the topology"
            )

    log.info("Applying node filter: %s", list(node_filter))

    for name in list(topology_nodes):
        if name not in node_filter:
            log.debug("Excluding node %s", name)
            del topology_nodes[name]

    def keep(link: Link) -> bool:
        return (
            link.a.node.short_name in node_filter
            and link.b.node.short_name in node_filter
        )

    if isinstance(links, MutableMapping):
        for key in [k for k, link in links.items() if not keep(link)]:
            del links[key]
    else:
        links[:] = [link for link in links if keep(link)]


def create_static_dynamic_dependency(
    nodes: Mapping[str, NodeConfig], dm: _Dependencies
) -> None:
    """Make every node with a dynamic mgmt IP wait for all static-IP nodes."""
    static = [
        name
        for name, node in nodes.items()
        if node.mgmt_ipv4_address or node.mgmt_ipv6_address
    ]
    dynamic = [name for name in nodes if name not in static]
    for dyn_name in dynamic:
        for static_name in static:
            dm.add_dependency(static_name, dyn_name)


def create_wait_for_dependency(
    nodes: Mapping[str, NodeConfig], dm: _Dependencies
) -> None:
    """Record the dependencies declared through the nodes' wait-for lists."""
    for waiter, node in nodes.items():
        for wait_for in node.wait_for:
            dm.add_dependency(wait_for, waiter)


def create_namespace_sharing_dependency(
    nodes: Mapping[str, NodeConfig], dm: _Dependencies
) -> None:
    """Make nodes in another lab node's network namespace wait for that node.

    References to containers outside the lab are left alone.
    """
    for name, node in nodes.items():
        referenced = _container_reference(node.network_mode)
        if referenced is None or referenced not in nodes:
            continue
        dm.add_dependency(referenced, name)


def create_serial_runtime_dependency(
    nodes: Mapping[str, NodeConfig], dm: _Dependencies, runtime_name: str
) -> None:
    """Chain the nodes of the given runtime so that they start one at a time."""
    previous: NodeConfig | None = None
    for node in nodes.values():
        if node.runtime != runtime_name:
            continue
        if previous is not None:
            dm.add_dependency(node.short_name, previous.short_name)
        previous = node


def wait_for_external_node_dependencies(
    nodes: Mapping[str, NodeConfig],
    node_name: str,
    get_status: Callable[[str], ContainerStatus],
    interval: float = DEFAULT_EXTERNAL_WAIT_INTERVAL,
    timeout: float = DEFAULT_EXTERNAL_WAIT_TIMEOUT,
) -> bool:
    """Wait until an external container whose namespace the node shares runs.

    Returns True once there is nothing (more) to wait for, False when the
    node is unknown or the container did not start within timeout.
    """
    node = nodes.get(node_name)
    if node is None:
        log.error("unable to find referenced node %r", node_name)
        return False

    container = _container_reference(node.network_mode)
    if container is None or container in nodes:
        return True

    deadline = time.monotonic() + timeout
    while True:
        if get_status(container) == ContainerStatus.RUNNING:
            log.debug("container %s is running, node %s can proceed", container, node_name)
            return True
        if time.monotonic() >= deadline:
            log.error(
                "node %s waited too long for container %s to be running",
                node_name,
                container,
            )
            return False
        log.info("node %s is waiting for container %s to be running", node_name, container)
        time.sleep(interval)