"""Ordering of node creation through dependencies between nodes."""

from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Iterable, Mapping, Sequence

log = logging.getLogger(__name__)


class NodeState(enum.IntEnum):
    """States a node reaches during deployment."""

    CREATED = 0


# internal state a depender waits on until all its dependees are created
_DEPENDENCY = 99

REGULAR_NODE_STATES: tuple[NodeState, ...] = (NodeState.CREATED,)


class DependencyError(Exception):
    """Raised for unknown nodes and cyclic dependencies."""


class _WaitCounter:
    """A counter that callers can wait on until it drops to zero."""

    def __init__(self) -> None:
        self._count = 0
        self._cond = threading.Condition()

    def add(self, delta: int = 1) -> None:
        with self._cond:
            if self._count + delta < 0:
                raise ValueError("negative wait counter")
            self._count += delta
            if self._count == 0:
                self._cond.notify_all()

    def done(self) -> None:
        self.add(-1)

    def wait(self) -> None:
        with self._cond:
            self._cond.wait_for(lambda: self._count == 0)


class _DependencyNode:
    def __init__(self, name: str) -> None:
        self.name = name
        self._states: dict[int, _WaitCounter] = {}
        self._lock = threading.Lock()
        self.dependers: dict[str, _DependencyNode] = {}
        # regular states start pending so that signalling them cannot go negative
        for state in REGULAR_NODE_STATES:
            self.state(state).add(1)

    def state(self, state: int) -> _WaitCounter:
        with self._lock:
            return self._states.setdefault(int(state), _WaitCounter())

    def wait_for(self, state: int) -> None:
        self.state(state).wait()

    def done(self, state: int) -> None:
        self.state(state).done()
        if state == NodeState.CREATED:
            for depender in list(self.dependers.values()):
                depender.done(_DEPENDENCY)

    def add_depender(self, depender: _DependencyNode) -> None:
        self.dependers[depender.name] = depender
        depender.state(_DEPENDENCY).add(1)


class DependencyManager:
    """Records which nodes wait for which, and lets them wait."""

    def __init__(self) -> None:
        self._nodes: dict[str, _DependencyNode] = {}

    def _node(self, name: str) -> _DependencyNode:
        try:
            return self._nodes[name]
        except KeyError:
            raise DependencyError(
                f"node {name!r} is not known to the dependency manager"
            ) from None

    def add_node(self, name: str) -> None:
        """Register a node."""
        self._nodes[name] = _DependencyNode(name)

    def add_dependency(self, dependee: str, depender: str) -> None:
        """Make depender wait until dependee is created."""
        depender_node = self._node(depender)
        dependee_node = self._node(dependee)
        dependee_node.add_depender(depender_node)

    def wait_for_node_dependencies(self, node_name: str) -> None:
        """Block until every node that node_name depends on is created."""
        self._node(node_name).wait_for(_DEPENDENCY)

    def signal_done(self, node_name: str, state: NodeState) -> None:
        """Mark node_name as having reached state, releasing its dependers."""
        node = self._nodes.get(node_name)
        if node is None:
            log.error(
                "tried to Signal Done for node %r but node is unknown to the DependencyManager",
                node_name,
            )
            return
        node.done(state)

    def wait_for_nodes(self, node_names: Sequence[str], state: NodeState) -> None:
        """Block until all the named nodes have reached state."""
        missing = [name for name in node_names if name not in self._nodes]
        if missing:
            raise DependencyError(
                "dependency manager has no notion of the following nodes "
                + ", ".join(missing)
            )
        for name in node_names:
            self._nodes[name].wait_for(state)

    def dependencies(self) -> dict[str, list[str]]:
        """Map every node to the names of the nodes that depend on it."""
        return {
            name: [depender.name for depender in node.dependers.values()]
            for name, node in self._nodes.items()
        }

    def check_acyclicity(self) -> None:
        """Raise DependencyError if the dependencies contain a cycle."""
        log.debug("Dependencies:\n%s", self)
        if not is_acyclic(self.dependencies()):
            raise DependencyError(f"cyclic dependencies found!\n{self}")

    def __str__(self) -> str:
        return "\n".join(
            f"{name} -> [ {', '.join(deps)} ]"
            for name, deps in self.dependencies().items()
        )


def is_acyclic(node_dependers: Mapping[str, Iterable[str]]) -> bool:
    """Tell whether a dependee -> dependers mapping is free of cycles."""
    remaining = {name: list(deps) for name, deps in node_dependers.items()}
    check_round = 1
    while remaining:
        log.debug(
            "- cycle check round %d - \n%s",
            check_round,
            "\n".join(f"{k} <- [ {', '.join(v)} ]" for k, v in remaining.items()),
        )
        leaves = {name for name, deps in remaining.items() if not deps}
        if not leaves:
            return False
        remaining = {
            name: [dep for dep in deps if dep not in leaves]
            for name, deps in remaining.items()
            if deps
        }
        check_round += 1
    log.debug("node creation graph is successfully validated as being acyclic")
    return True