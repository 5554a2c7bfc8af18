"""Custom exceptions for treeupdt."""


class TreeupdtError(Exception):
    """Base exception for all treeupdt errors."""


class ParseError(TreeupdtError):
    """Raised when a manifest file cannot be parsed."""


class StructuralQueryError(TreeupdtError):
    """Raised when the syntax-tree engine fails to load or walk a file."""


class ManifestIOError(TreeupdtError):
    """Raised when a manifest cannot be read or written."""


class DeclarationNotFound(TreeupdtError):
    """Raised when a mutation target can no longer be located in its file."""

    def __init__(self, name: str, path: str, reason: str | None = None):
        self.name = name
        self.path = path
        message = f"declaration '{name}' not found in {path}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class UnsupportedFormatError(TreeupdtError):
    """Raised when no scanner or updater is registered for a manifest format."""


class SourceError(TreeupdtError):
    """Raised when a version source cannot answer a query."""


class ConfigError(TreeupdtError):
    """Raised when a configuration file is invalid."""
