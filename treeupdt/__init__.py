"""treeupdt: keep version pins in project manifests current."""

__version__ = "0.1.0"
