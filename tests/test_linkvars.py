import ipaddress

import pytest

from clabkit.linkvars import (
    VK_FAR_END,
    VK_KIND,
    VK_LINK_IP,
    VK_LINK_NAME,
    VK_LINK_NUM,
    VK_LINKS,
    VK_NODE_NAME,
    VK_NODES,
    VK_ROLE,
    VK_SYSTEM_IP,
    LinkVarsError,
    NodeVars,
    ip_far_end,
    ip_far_end_str,
    ip_last_octet,
    link_ip,
    link_name,
    prepare_link_vars,
    prepare_vars,
    template_names_in_dirs,
)
from clabkit.topology import Endpoint, Link, NodeConfig


def make_link():
    a = NodeConfig(short_name="a", vars={VK_SYSTEM_IP: "10.0.0.1/32"})
    b = NodeConfig(short_name="b", vars={VK_SYSTEM_IP: "10.0.0.2/32"})
    return Link(
        a=Endpoint(node=a, endpoint_name="e1"),
        b=Endpoint(node=b, endpoint_name="e1"),
        vars={},
    )


@pytest.mark.parametrize(
    "prefix, expected",
    [
        ("10.0.0.1/32", ""),
        ("10.0.0.0/31", "10.0.0.1/31"),
        ("10.0.0.1/31", "10.0.0.0/31"),
        ("10.0.0.2/31", "10.0.0.3/31"),
        ("10.0.0.3/31", "10.0.0.2/31"),
        ("10.0.0.1/30", "10.0.0.2/30"),
        ("10.0.0.2/30", "10.0.0.1/30"),
        ("10.0.0.0/30", ""),
        ("10.0.0.3/30", ""),
        ("10.0.0.4/30", ""),
        ("10.0.0.5/30", "10.0.0.6/30"),
        ("10.0.0.6/30", "10.0.0.5/30"),
    ],
)
def test_far_end_ip(prefix, expected):
    far = ip_far_end(ipaddress.ip_interface(prefix))
    if expected == "":
        assert far is None
        with pytest.raises(LinkVarsError):
            ip_far_end_str(prefix)
    else:
        assert str(far) == expected
        assert ip_far_end_str(prefix) == expected


@pytest.mark.parametrize("prefix, expected", [("10.0.0.1/32", 1), ("::1/32", 1)])
def test_ip_last_octet(prefix, expected):
    assert ip_last_octet(ipaddress.ip_interface(prefix).ip) == expected


def test_ip_last_octet_non_numeric_is_zero():
    assert ip_last_octet("2001:db8::a") == 0


def test_link_name():
    link = make_link()
    assert link_name(link) == ("to_b", "to_a")
    link.vars[VK_LINK_NUM] = 1
    assert link_name(link) == ("to_b_1", "to_a_1")


def test_link_ip():
    link = make_link()
    assert link_ip(link) == ("1.1.2.0/31", "1.1.2.1/31")
    link.vars[VK_LINK_NUM] = 1
    assert link_ip(link) == ("1.1.2.2/31", "1.1.2.3/31")


def test_link_ip_swapped_order():
    link = make_link()
    link.a.node.vars[VK_SYSTEM_IP] = "10.0.0.2/32"
    link.b.node.vars[VK_SYSTEM_IP] = "10.0.0.1/32"
    assert link_ip(link) == ("1.1.2.1/31", "1.1.2.0/31")


def test_link_ip_missing_system_ip():
    link = make_link()
    del link.b.node.vars[VK_SYSTEM_IP]
    assert link_ip(link) == ("", "")


def test_link_ip_invalid_system_ip():
    link = make_link()
    link.a.node.vars[VK_SYSTEM_IP] = "not-an-ip"
    with pytest.raises(LinkVarsError, match="clab_system_ip' of a"):
        link_ip(link)


def test_prepare_link_vars():
    link = make_link()
    a, b = prepare_link_vars(link)
    assert a == {
        VK_FAR_END: {VK_LINK_IP: "1.1.2.1/31", VK_LINK_NAME: "to_a", VK_NODE_NAME: "b"},
        VK_LINK_IP: "1.1.2.0/31",
        VK_LINK_NAME: "to_b",
    }
    assert b == {
        VK_FAR_END: {VK_LINK_IP: "1.1.2.0/31", VK_LINK_NAME: "to_b", VK_NODE_NAME: "a"},
        VK_LINK_IP: "1.1.2.1/31",
        VK_LINK_NAME: "to_a",
    }

    link.vars[VK_LINK_IP] = ["1.1.2.0/16", "1.1.2.1/16"]
    link.vars[VK_LINK_NAME] = "the_same"
    a, b = prepare_link_vars(link)
    assert a == {
        VK_FAR_END: {VK_LINK_IP: "1.1.2.1/16", VK_LINK_NAME: "the_same", VK_NODE_NAME: "b"},
        VK_LINK_IP: "1.1.2.0/16",
        VK_LINK_NAME: "the_same",
    }
    assert b == {
        VK_FAR_END: {VK_LINK_IP: "1.1.2.0/16", VK_LINK_NAME: "the_same", VK_NODE_NAME: "a"},
        VK_LINK_IP: "1.1.2.1/16",
        VK_LINK_NAME: "the_same",
    }


def test_prepare_link_vars_scalar_link_ip():
    link = make_link()
    link.vars[VK_LINK_IP] = "10.9.0.0/31"
    a, b = prepare_link_vars(link)
    assert a[VK_LINK_IP] == "10.9.0.0/31"
    assert b[VK_LINK_IP] == "10.9.0.1/31"
    assert a[VK_FAR_END][VK_LINK_IP] == "10.9.0.1/31"


def test_prepare_link_vars_invalid_scalar_link_ip():
    link = make_link()
    link.vars[VK_LINK_IP] = "10.0.3.0/30"
    with pytest.raises(LinkVarsError, match="invalid ip 10.0.3.0/30"):
        prepare_link_vars(link)


def test_prepare_link_vars_reserved_name():
    link = make_link()
    link.vars[VK_FAR_END] = "x"
    with pytest.raises(LinkVarsError, match="reserved variable name"):
        prepare_link_vars(link)


def test_prepare_link_vars_wrong_list_length():
    link = make_link()
    link.vars["mtu"] = [1, 2, 3]
    with pytest.raises(LinkVarsError, match="should contain 2 elements, found 3"):
        prepare_link_vars(link)


def test_ip_far_end_str():
    assert ip_far_end_str("10.0.3.0/31") == "10.0.3.1/31"
    with pytest.raises(LinkVarsError) as excinfo:
        ip_far_end_str("10.0.3.0/30")
    assert str(excinfo.value) == "invalid ip 10.0.3.0/30 - invalid Prefix"


def test_ip_far_end_str_unparsable():
    with pytest.raises(LinkVarsError) as excinfo:
        ip_far_end_str("10.0.3.0")
    assert str(excinfo.value) == "invalid ip 10.0.3.0"


def test_prepare_vars():
    r1 = NodeConfig(
        short_name="r1",
        kind="srl",
        mgmt_ipv4_address="172.20.20.2",
        vars={VK_SYSTEM_IP: "10.0.0.1/32", VK_NODES: "hidden", "asn": 65001},
    )
    r2 = NodeConfig(
        short_name="r2",
        kind="linux",
        vars={VK_SYSTEM_IP: "10.0.0.2/32", VK_ROLE: "client"},
    )
    link = Link(
        a=Endpoint(node=r1, endpoint_name="e1-1"),
        b=Endpoint(node=r2, endpoint_name="eth1"),
        vars={},
    )
    result = prepare_vars({"r1": r1, "r2": r2}, {0: link}, {"srl": ["admin", "password"]})

    assert set(result) == {"r1", "r2"}
    nv1 = result["r1"]
    assert isinstance(nv1, NodeVars)
    assert nv1.credentials == ["admin", "password"]
    assert result["r2"].credentials == []
    assert nv1.vars[VK_ROLE] == "srl"
    assert result["r2"].vars[VK_ROLE] == "client"
    assert nv1.vars[VK_KIND] == "srl"
    assert nv1.vars["asn"] == 65001
    assert nv1.vars[VK_NODE_NAME] == "r1"

    links1 = nv1.vars[VK_LINKS]
    assert len(links1) == 1
    assert links1[0][VK_LINK_IP] == "1.1.2.0/31"
    assert links1[0][VK_FAR_END][VK_NODE_NAME] == "r2"
    assert result["r2"].vars[VK_LINKS][0][VK_LINK_NAME] == "to_r1"

    all_nodes = nv1.vars[VK_NODES]
    assert all_nodes is result["r2"].vars[VK_NODES]
    assert set(all_nodes) == {"r1", "r2"}
    assert all_nodes["r2"][VK_ROLE] == "client"
    assert VK_NODES not in all_nodes["r1"]
    assert str(nv1) == "r1: []"


def test_prepare_vars_keeps_partial_link_vars_on_error():
    n1 = NodeConfig(short_name="n1", kind="linux")
    n2 = NodeConfig(short_name="n2", kind="linux")
    link = Link(
        a=Endpoint(node=n1, endpoint_name="eth1"),
        b=Endpoint(node=n2, endpoint_name="eth1"),
        vars={VK_NODE_NAME: "bad"},
    )
    result = prepare_vars([n1, n2], [link])
    assert result["n1"].vars[VK_LINKS] == [{VK_FAR_END: {VK_NODE_NAME: "n2"}}]


def test_template_names_in_dirs(tmp_path):
    for name in ("base__srl.tmpl", "base__linux.tmpl", "intf__srl.tmpl", "other.txt"):
        (tmp_path / name).write_text("")
    assert template_names_in_dirs([tmp_path]) == ["base", "intf"]


def test_template_names_in_dirs_across_dirs(tmp_path):
    first = tmp_path / "one"
    second = tmp_path / "two"
    first.mkdir()
    second.mkdir()
    (first / "base__srl.tmpl").write_text("")
    (second / "base__linux.tmpl").write_text("")
    (second / "zeta__linux.tmpl").write_text("")
    assert template_names_in_dirs([first, second]) == ["base", "zeta"]


def test_template_names_in_dirs_none_found(tmp_path):
    with pytest.raises(LinkVarsError, match="no templates files were found"):
        template_names_in_dirs([tmp_path])