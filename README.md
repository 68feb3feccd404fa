# clabkit

Building blocks for container network labs: describe nodes and the links
between them, validate the topology, compute template variables for links,
and work out the order in which nodes may be brought up.

The package has no dependencies outside the Python standard library.

## Installation

```
pip install clabkit
```

For running the tests:

```
pip install "clabkit[test]"
pytest
```

## What is inside

- `clabkit.dependency_manager` – `DependencyManager` records which node waits
  for which (`add_node`, `add_dependency`, `dependencies`), rejects cycles
  (`check_acyclicity`, and the standalone `is_acyclic`), and lets threads
  block until their dependencies are created (`wait_for_node_dependencies`,
  `signal_done`, `wait_for_nodes`). Unknown nodes and cycles raise
  `DependencyError`. `NodeState.CREATED` is the state nodes signal.
- `clabkit.topology` – `NodeConfig`, `Endpoint`, `Link` and `LinkDefinition`.
  `new_endpoint` and `new_link` build links from `"node:iface"` strings and
  record each endpoint on its node. The names `host`, `macvlan` and
  `mgmt-net` stand for special nodes. `long_name` and `get_short_name`
  convert between container and node names. `gen_mac` makes MAC addresses
  under a given OUI. Bad input raises `TopologyError`.
- `clabkit.checks` – topology checks (`verify_links`,
  `verify_duplicate_addresses`, `verify_root_netns_interface_uniqueness`,
  `verify_host_network_mode`) and bind path resolution with `~`, relative
  paths and the `__clabDir__` / `__clabNodeDir__` variables
  (`resolve_bind_paths`). It also has label and environment helpers:
  `add_default_labels`, `labels_to_env`, `to_env_key` and
  `set_link_count_env`.
- `clabkit.linkvars` – per-node and per-link template variables
  (`prepare_vars`, `prepare_link_vars`, `NodeVars`). It has point-to-point
  address helpers (`ip_far_end`, `ip_far_end_str`, `ip_last_octet`) and
  automatic link naming and /31 addressing from node system IPs (`link_name`,
  `link_ip`). `template_names_in_dirs` finds templates named
  `<name>__<role>.tmpl`. Errors raise `LinkVarsError`.
- `clabkit.dependencies` – rules that feed a `DependencyManager`:
  - `create_static_dynamic_dependency`: nodes with static management
    addresses come before dynamic ones.
  - `create_wait_for_dependency`: follows the explicit `wait_for` lists.
  - `create_namespace_sharing_dependency`: handles `container:<name>`
    network modes.
  - `create_serial_runtime_dependency`: starts the nodes of one runtime one
    at a time.

  It also has `filter_nodes`, which narrows a topology to chosen nodes and
  raises `IncorrectInputError` for unknown names, and
  `wait_for_external_node_dependencies`. That function polls a status
  callable that you supply until it reports `ContainerStatus.RUNNING`.
- `clabkit.authz_keys` – gathers public keys from the running SSH agent,
  `~/.ssh/*.pub` and `~/.ssh/authorized_keys` into one de-duplicated file
  (`create_authz_keys_file`, `ssh_agent_keys`, `add_key`).

## Example

```python
from clabkit.dependency_manager import DependencyManager, NodeState

dm = DependencyManager()
for name in ("spine", "leaf1", "leaf2"):
    dm.add_node(name)
dm.add_dependency("spine", "leaf1")
dm.add_dependency("spine", "leaf2")
dm.check_acyclicity()

dm.signal_done("spine", NodeState.CREATED)
dm.wait_for_node_dependencies("leaf1")  # returns at once: spine is created
```

```python
from clabkit.linkvars import ip_far_end_str

ip_far_end_str("10.0.3.0/31")  # "10.0.3.1/31"
```

## What it does not do

clabkit does not talk to a container runtime and does not create, start or
remove containers. It does not create veth pairs or other wiring, and it
does not run deployment workers. You call `signal_done` and the wait methods
from your own code. It does not read topology files or render templates; it
prepares the variables that templates use. There is no command-line tool.