"""Topology modelling, validation and dependency ordering for container network labs."""

__version__ = "0.1.0"

__all__ = [
    "authz_keys",
    "checks",
    "dependencies",
    "dependency_manager",
    "linkvars",
    "topology",
]