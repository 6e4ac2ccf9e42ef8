"""Domain exceptions surfaced by the ledger, callback ingress and resume gate.

Each exception carries the HTTP status the API layer answers with, so route
handlers can simply let them propagate.
"""


class LedgerError(Exception):
    """Base class for all expected, client-visible failures."""

    http_status = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LedgerError):
    """Missing or invalid field, or unknown enum value. Nothing was written."""

    http_status = 400


class NotFoundError(LedgerError):
    """Unknown session (or other ledger row) id."""

    http_status = 404


class ConflictError(LedgerError):
    """Row exists but is not in a state that allows the requested change."""

    http_status = 409


class UpstreamError(LedgerError):
    """Workflow engine unreachable, timed out, or answered non-2xx."""

    http_status = 502


class StorageUnavailable(LedgerError):
    """Relational store unreachable; ledger-dependent endpoints degrade."""

    http_status = 503


class AuthenticationError(LedgerError):
    """Missing, expired or invalid access token."""

    http_status = 401
