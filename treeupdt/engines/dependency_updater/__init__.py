"""Rewrite dependency versions in manifest files."""
