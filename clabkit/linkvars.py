"""Template variables for nodes and links, including automatic link addressing."""

from __future__ import annotations

import ipaddress
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

from clabkit.topology import Link, NodeConfig

log = logging.getLogger(__name__)

VK_NODE_NAME = "clab_node"
VK_NODES = "clab_nodes"
VK_LINKS = "clab_links"
VK_FAR_END = "clab_far"
VK_ROLE = "clab_role"
VK_MANAGEMENT_IPV4 = "clab_management_ipv4"
VK_MANAGEMENT_IPV6 = "clab_management_ipv6"
VK_KIND = "clab_kind"
VK_TYPE = "clab_type"

VK_SYSTEM_IP = "clab_system_ip"
VK_LINK_IP = "clab_link_ip"
VK_LINK_NAME = "clab_link_name"
VK_LINK_NUM = "clab_link_num"

Interface = Union[ipaddress.IPv4Interface, ipaddress.IPv6Interface]
Address = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


class LinkVarsError(ValueError):
    """Raised when node or link variables cannot be prepared."""


@dataclass
class NodeVars:
    """A node together with the variables used to render its templates."""

    target_node: NodeConfig
    vars: dict[str, Any] = field(default_factory=dict)
    credentials: list[str] = field(default_factory=list)
    data: list[str] = field(default_factory=list)
    info: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        return f"{self.target_node.short_name}: {self.info}"


def _fmt(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "<nil>"
    return str(value)


def _parse_prefix(text: str) -> Interface:
    """Parse "address/bits", keeping the host bits of the address."""
    _, sep, bits = text.partition("/")
    if not sep or not (bits.isascii() and bits.isdigit()):
        raise ValueError(f"no '/' followed by prefix length in {text!r}")
    return ipaddress.ip_interface(text)


def _step(addr: Address | None, delta: int) -> Address | None:
    if addr is None:
        return None
    try:
        return addr + delta
    except (ipaddress.AddressValueError, ValueError, OverflowError):
        return None


def ip_far_end(prefix: Interface | str) -> Interface | None:
    """Return the far-end address of a point-to-point prefix, or None."""
    iface = _parse_prefix(prefix) if isinstance(prefix, str) else prefix
    addr = iface.ip
    net = iface.network
    bits = net.prefixlen
    is_v4 = addr.version == 4

    def inside(candidate: Address | None) -> bool:
        return candidate is not None and candidate in net

    if is_v4 and bits == 32:
        return None

    nxt = _step(addr, 1)
    if is_v4 and bits <= 30:
        prev = _step(addr, -1)
        if not inside(nxt) or not inside(prev):
            return None
        if not inside(_step(nxt, 1)):
            nxt = prev
    if not inside(nxt):
        nxt = _step(addr, -1)
    if not inside(nxt):
        return None
    return ipaddress.ip_interface(f"{nxt}/{bits}")


def ip_far_end_str(value: str) -> str:
    """Return the far-end prefix of value as a string."""
    try:
        iface = _parse_prefix(value)
    except ValueError:
        raise LinkVarsError(f"invalid ip {value}") from None
    far = ip_far_end(iface)
    if far is None:
        raise LinkVarsError(f"invalid ip {value} - invalid Prefix")
    return str(far)


def ip_last_octet(address: Address | str) -> int:
    """Return the last dotted (or colon separated) part of an address as a number."""
    text = str(address)
    idx = text.rfind(".")
    if idx < 0:
        idx = text.rfind(":")
    tail = text[idx + 1 :]
    try:
        return int(tail)
    except ValueError:
        log.error("last octet %s from IP %s not a string", tail, text)
        return 0


def link_name(link: Link) -> tuple[str, str]:
    """Name both ends of a link after the far-end node and optional link number."""
    suffix = ""
    if VK_LINK_NUM in link.vars:
        suffix = f"_{_fmt(link.vars[VK_LINK_NUM])}"
    return (
        f"to_{link.b.node.short_name}{suffix}",
        f"to_{link.a.node.short_name}{suffix}",
    )


def link_ip(link: Link) -> tuple[str, str]:
    """Derive a /31 for the link from the system IPs of its two nodes.

    Returns two empty strings when either node lacks a system IP.
    """
    vars_a = link.a.node.vars
    vars_b = link.b.node.vars
    has_a = VK_SYSTEM_IP in vars_a
    has_b = VK_SYSTEM_IP in vars_b
    if has_a != has_b:
        log.warning(
            "to auto-generate link IPs, a %s variable is required on all nodes",
            VK_SYSTEM_IP,
        )
    if not (has_a and has_b):
        return "", ""

    systems = []
    for node, node_vars in ((link.a.node, vars_a), (link.b.node, vars_b)):
        try:
            systems.append(_parse_prefix(_fmt(node_vars[VK_SYSTEM_IP])))
        except ValueError as exc:
            raise LinkVarsError(
                f"no 'ip' on link & the '{VK_SYSTEM_IP}' of {node.short_name}: {exc}"
            ) from exc
    sys_a, sys_b = systems

    o4 = 0
    if VK_LINK_NUM in link.vars:
        raw = _fmt(link.vars[VK_LINK_NUM])
        try:
            o4 = int(raw)
        except ValueError:
            log.warning("%s is expected to contain a number, got %s", VK_LINK_NUM, raw)
            o4 = 0
        o4 *= 2

    o2, o3 = ip_last_octet(sys_a.ip), ip_last_octet(sys_b.ip)
    if o3 < o2:
        o2, o3, o4 = o3, o2, o4 + 1

    try:
        ip_a = _parse_prefix(f"1.{o2}.{o3}.{o4}/31")
    except ValueError as exc:
        raise LinkVarsError(f"could not create link IP from {VK_SYSTEM_IP}: {exc}") from exc
    far = ip_far_end(ip_a)
    if far is None:
        raise LinkVarsError(f"could not create link IP from {VK_SYSTEM_IP}: {ip_a}")
    return str(ip_a), str(far)


def _fill_link_vars(link: Link, vars_a: dict[str, Any], vars_b: dict[str, Any]) -> None:
    far_a: dict[str, Any] = {VK_NODE_NAME: link.b.node.short_name}
    far_b: dict[str, Any] = {VK_NODE_NAME: link.a.node.short_name}
    vars_a[VK_FAR_END] = far_a
    vars_b[VK_FAR_END] = far_b

    def add_values(key: str, value_a: Any, value_b: Any) -> None:
        vars_a[key] = value_a
        far_a[key] = value_b
        vars_b[key] = value_b
        far_b[key] = value_a

    for key, value in link.vars.items():
        if key in (VK_FAR_END, VK_NODE_NAME):
            raise LinkVarsError(f"{link}: reserved variable name '{key}' found")

        if isinstance(value, (list, tuple)):
            # one value for each end of the link
            if len(value) != 2:
                raise LinkVarsError(
                    f"{link}: variable {key} should contain 2 elements, "
                    f"found {len(value)}: {value}"
                )
            add_values(key, value[0], value[1])
            continue

        if key == VK_LINK_IP:
            text = _fmt(value)
            try:
                far = ip_far_end_str(text)
            except LinkVarsError as exc:
                raise LinkVarsError(f"{link}: {exc}") from exc
            add_values(key, text, far)
            continue

        add_values(key, value, value)

    for key, derive in ((VK_LINK_IP, link_ip), (VK_LINK_NAME, link_name)):
        if key in vars_a:
            continue
        try:
            value_a, value_b = derive(link)
        except LinkVarsError as exc:
            raise LinkVarsError(f"{link}: {exc}") from exc
        if value_a:
            add_values(key, value_a, value_b)


def prepare_link_vars(link: Link) -> tuple[dict[str, Any], dict[str, Any]]:
    """Return the variables for the A and B ends of a link."""
    vars_a: dict[str, Any] = {}
    vars_b: dict[str, Any] = {}
    _fill_link_vars(link, vars_a, vars_b)
    return vars_a, vars_b


def _values(items: Mapping[Any, Any] | Iterable[Any]) -> list[Any]:
    if isinstance(items, Mapping):
        return list(items.values())
    return list(items)


def prepare_vars(
    nodes: Mapping[str, NodeConfig] | Iterable[NodeConfig],
    links: Mapping[Any, Link] | Iterable[Link] = (),
    credentials: Mapping[str, Sequence[str]] | None = None,
) -> dict[str, NodeVars]:
    """Prepare the template variables of every node and its links.

    credentials maps a node kind to its credentials.
    """
    credentials = credentials or {}
    result: dict[str, NodeVars] = {}

    for node in _values(nodes):
        name = node.short_name
        node_vars: dict[str, Any] = {
            VK_NODE_NAME: name,
            VK_KIND: node.kind,
            VK_MANAGEMENT_IPV4: node.mgmt_ipv4_address,
            VK_MANAGEMENT_IPV6: node.mgmt_ipv6_address,
            VK_TYPE: node.node_type,
        }
        for key, value in node.vars.items():
            if key in (VK_NODES, VK_NODE_NAME):
                log.warning(
                    "the variable %s on %s will be ignored, it hides other nodes",
                    VK_NODES,
                    name,
                )
                continue
            node_vars[key] = value
        node_vars[VK_LINKS] = []
        node_vars.setdefault(VK_ROLE, node.kind)

        result[name] = NodeVars(
            target_node=node,
            vars=node_vars,
            credentials=list(credentials.get(node.kind, ())),
        )

    for index, link in enumerate(_values(links)):
        vars_a: dict[str, Any] = {}
        vars_b: dict[str, Any] = {}
        try:
            _fill_link_vars(link, vars_a, vars_b)
        except LinkVarsError as exc:
            log.error("cannot prepare link vars for %d. %s: %s", index, link, exc)
        for endpoint, end_vars in ((link.a, vars_a), (link.b, vars_b)):
            target = result.get(endpoint.node.short_name)
            if target is None:
                log.debug("no template variables for node %s", endpoint.node.short_name)
                continue
            target.vars[VK_LINKS].append(end_vars)

    # a one-level deep copy of every node's variables, shared by all nodes
    all_nodes = {name: dict(nv.vars) for name, nv in result.items()}
    for nv in result.values():
        nv.vars[VK_NODES] = all_nodes
    return result


def template_names_in_dirs(paths: Iterable[str | Path]) -> list[str]:
    """List template base names (<name>__<role>.tmpl) found directly in paths."""
    path_list = [str(p) for p in paths]
    names: list[str] = []
    for directory in path_list:
        found = sorted(p.name for p in Path(directory).glob("*__*.tmpl"))
        for filename in found:
            base = filename.split("__")[0]
            if names and names[-1] == base:
                continue
            names.append(base)
    if not names:
        raise LinkVarsError(
            "no templates files were found in specified paths: "
            f"[{' '.join(path_list)}]"
        )
    return names