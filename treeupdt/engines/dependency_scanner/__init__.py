"""Discover version-pinned dependency declarations in manifest files."""
