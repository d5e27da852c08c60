"""Exception types raised by the check-search pipeline."""


class CheckSearchError(Exception):
    """Base class for all check-search errors."""


class ScanError(CheckSearchError):
    """The corpus search backend failed to answer a query."""


class ConfigError(CheckSearchError):
    """The policy configuration could not be read or validated."""


class IdentityError(CheckSearchError):
    """A diagnostic identity token could not be encoded or decoded."""


class FixError(CheckSearchError):
    """A fix could not be computed for a diagnostic."""


class FindingNotFoundError(FixError):
    """The finding a diagnostic points at is no longer present in the document."""

    def __init__(self, document_uri: str, name: str):
        self.document_uri = document_uri
        self.name = name
        super().__init__(f"'{name}' not found in {document_uri}")


class UnsupportedDiagnosticError(FixError):
    """The diagnostic was not produced by any registered check."""
