"""Checks and defaults applied to a parsed topology."""

from __future__ import annotations

import os
import re
from collections.abc import Collection, Iterable, Mapping
from pathlib import Path

from clabkit.topology import Link, NodeConfig, TopologyError

CLAB_DIR_VAR = "__clabDir__"
NODE_DIR_VAR = "__clabNodeDir__"

CLAB_ENV_INTFS = "CLAB_INTFS"
LABEL_ENV_PREFIX = "CLAB_LABEL_"

LABEL_CONTAINERLAB = "containerlab"
LABEL_NODE_NAME = "clab-node-name"
LABEL_NODE_KIND = "clab-node-kind"
LABEL_NODE_TYPE = "clab-node-type"
LABEL_NODE_GROUP = "clab-node-group"
LABEL_NODE_LAB_DIR = "clab-node-lab-dir"
LABEL_TOPO_FILE = "clab-topo-file"

_VAR_PATTERN = re.compile(f"{re.escape(CLAB_DIR_VAR)}|{re.escape(NODE_DIR_VAR)}")
_ENV_KEY_INVALID = re.compile(r"[^A-Za-z0-9_]")


def _node_list(nodes: Mapping[str, NodeConfig] | Iterable[NodeConfig]) -> list[NodeConfig]:
    if isinstance(nodes, Mapping):
        return list(nodes.values())
    return list(nodes)


def _link_list(links: Mapping[object, Link] | Iterable[Link]) -> list[Link]:
    if isinstance(links, Mapping):
        return list(links.values())
    return list(links)


def verify_links(links: Mapping[object, Link] | Iterable[Link]) -> None:
    """Raise TopologyError if an endpoint appears in more than one link."""
    seen: set[str] = set()
    dups: list[str] = []
    for link in _link_list(links):
        for endpoint in (link.a, link.b):
            text = str(endpoint)
            if text in seen:
                # a macvlan interface can appear many times
                if "macvlan" in text:
                    continue
                dups.append(text)
            seen.add(text)
    if dups:
        quoted = " ".join(f'"{d}"' for d in sorted(dups))
        raise TopologyError(
            f"endpoints [{quoted}] appeared more than once in the links section "
            "of the topology file"
        )


def verify_duplicate_addresses(nodes: Mapping[str, NodeConfig] | Iterable[NodeConfig]) -> None:
    """Raise TopologyError if a static management address is used twice."""
    seen: set[str] = set()
    for node in _node_list(nodes):
        for ip in (node.mgmt_ipv4_address, node.mgmt_ipv6_address):
            if not ip:
                continue
            if ip in seen:
                raise TopologyError(
                    f"management IP address {ip} appeared more than once in the "
                    "topology file"
                )
            seen.add(ip)


def verify_root_netns_interface_uniqueness(
    links: Mapping[object, Link] | Iterable[Link],
) -> None:
    """Raise TopologyError if a root-namespace interface name is used twice."""
    seen: set[str] = set()
    for link in _link_list(links):
        for endpoint in (link.a, link.b):
            if not endpoint.node.is_root_namespace_based:
                continue
            if endpoint.endpoint_name in seen:
                raise TopologyError(
                    f"interface {endpoint.endpoint_name} defined for node "
                    f"{endpoint.node.short_name} has already been used in other "
                    "bridges, ovs-bridges or host interfaces. Make sure that nodes "
                    "of these kinds use unique interface names"
                )
            seen.add(endpoint.endpoint_name)


def verify_host_network_mode(links: Mapping[object, Link] | Iterable[Link]) -> None:
    """Raise TopologyError if a node in host network mode has links."""
    for link in _link_list(links):
        for endpoint in (link.a, link.b):
            if endpoint.node.network_mode == "host":
                name = endpoint.node.short_name
                raise TopologyError(
                    f"node '{name}' is defined with host network mode, it can't have "
                    f"any links. Remove '{name}' node links from the topology definition"
                )


def _resolve_path(path: str, base: str) -> str:
    if not path:
        return ""
    expanded = os.path.expanduser(path)
    if not os.path.isabs(expanded):
        expanded = os.path.join(base, expanded)
    return os.path.normpath(expanded)


def resolve_bind_paths(
    binds: Iterable[str],
    node_dir: str,
    lab_dir: str,
    topology_dir: str,
    exempt_paths: Collection[str] = (),
) -> list[str]:
    """Return binds with their host paths made absolute.

    Host paths may use ~, paths relative to topology_dir and the
    __clabDir__ / __clabNodeDir__ variables. A host path that does not
    exist raises TopologyError unless it is one of exempt_paths.
    """
    replacements = {CLAB_DIR_VAR: lab_dir, NODE_DIR_VAR: node_dir}
    resolved = []
    for bind in binds:
        host, *rest = bind.split(":")
        host = _VAR_PATTERN.sub(lambda m: replacements[m.group(0)], host)
        host = _resolve_path(host, topology_dir)
        try:
            os.stat(host)
        except OSError as exc:
            if host not in exempt_paths:
                raise TopologyError(f"failed to verify bind path: {exc}") from exc
        resolved.append(":".join([host, *rest]))
    return resolved


def to_env_key(key: str) -> str:
    """Turn a label key into a valid environment variable name."""
    return _ENV_KEY_INVALID.sub("_", key).upper()


def labels_to_env(node: NodeConfig) -> None:
    """Copy the node's labels into its env with a CLAB_LABEL_ prefix."""
    for key, value in node.labels.items():
        node.env[LABEL_ENV_PREFIX + to_env_key(key)] = value


def add_default_labels(node: NodeConfig, lab_name: str, topology_file: str) -> None:
    """Set the labels every lab node carries."""
    node.labels.update(
        {
            LABEL_CONTAINERLAB: lab_name,
            LABEL_NODE_NAME: node.short_name,
            LABEL_NODE_KIND: node.kind,
            LABEL_NODE_TYPE: node.node_type,
            LABEL_NODE_GROUP: node.group,
            LABEL_NODE_LAB_DIR: node.lab_dir,
            LABEL_TOPO_FILE: str(Path(topology_file).absolute()),
        }
    )


def set_link_count_env(nodes: Mapping[str, NodeConfig] | Iterable[NodeConfig]) -> None:
    """Tell every node through its env how many links it has."""
    for node in _node_list(nodes):
        node.env[CLAB_ENV_INTFS] = str(len(node.endpoints))