from __future__ import annotations

from typing import Sequence


class IpamError(Exception):
    """Base class for every error the CLI reports to the operator."""


class ValidationError(IpamError):
    pass


class ResolutionError(IpamError):
    """A parent reference could not be turned into exactly one subnet ID."""

    def __init__(self, reference: str, message: str) -> None:
        super().__init__(message)
        self.reference = reference


class ReferenceNotFoundError(ResolutionError):
    def __init__(self, reference: str) -> None:
        super().__init__(reference, f"no subnet found matching reference: {reference}")


class AmbiguousReferenceError(ResolutionError):
    def __init__(self, reference: str, candidates: Sequence[str]) -> None:
        self.candidates = list(candidates)
        super().__init__(
            reference,
            f"multiple subnets match reference '{reference}' ({', '.join(self.candidates)}). "
            "Please use a more specific reference (ID, unique name, or exact CIDR)",
        )


class RecordNotFoundError(IpamError):
    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind} {record_id} not found")
        self.kind = kind
        self.record_id = record_id


class StorageError(IpamError):
    pass
