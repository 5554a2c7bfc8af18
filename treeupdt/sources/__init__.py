"""Upstream version sources: GitHub, crates.io, npm and plain git remotes."""
