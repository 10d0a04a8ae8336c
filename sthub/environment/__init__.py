"""STHub configuration endpoint: environment variables exposed as a JSON tree."""

from sthub.environment.tree import EnvironmentTree

__all__ = ["EnvironmentTree"]
