"""Custom exception classes for the application."""
from __future__ import annotations

from typing import Optional, Sequence


class IntakeError(Exception):
    """Base class for document intake failures."""
    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class RosterError(IntakeError):
    """Raised when a roster edit addresses an unknown role, index or field."""


class ArtifactNotFound(IntakeError):
    """Raised when an artifact id is not present in the collection."""


class CatalogUnavailable(IntakeError):
    """Raised when no seller/buyer pair produced a requirement set."""
    def __init__(
        self,
        message: str,
        code: str | None = "catalog_unavailable",
        failures: Optional[Sequence["PairFailure"]] = None,
    ) -> None:
        super().__init__(message, code)
        self.failures = list(failures or [])


class CatalogPartial(IntakeError):
    """Some pairs failed; the checklist was consolidated from the rest.

    Recorded on the checklist rather than raised.
    """
    def __init__(self, failures: Sequence["PairFailure"]) -> None:
        super().__init__(
            f"{len(failures)} pair request(s) failed; checklist is partial",
            "catalog_partial",
        )
        self.failures = list(failures)


class UploadFailed(IntakeError):
    """Raised when the submission endpoint rejects or loses an artifact."""


class LinkFailed(IntakeError):
    """Raised when an artifact cannot be linked to another requirement."""


class StatusTimeout(IntakeError):
    """Raised when a status query does not answer within its short timeout."""


class RemovalFailed(IntakeError):
    """Raised when the backend refuses to remove an artifact."""


class PairFailure:
    """One failed catalog pair request."""

    __slots__ = ("seller_id", "buyer_id", "reason")

    def __init__(self, seller_id: str, buyer_id: str, reason: str) -> None:
        self.seller_id = seller_id
        self.buyer_id = buyer_id
        self.reason = reason

    def __repr__(self) -> str:
        return f"PairFailure(seller_id={self.seller_id!r}, buyer_id={self.buyer_id!r}, reason={self.reason!r})"
