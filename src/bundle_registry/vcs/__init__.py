"""Version-control integration: the managed ``.git/info/exclude`` section."""

from bundle_registry.vcs.exclude import ExclusionManager

__all__ = ["ExclusionManager"]
