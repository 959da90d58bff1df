"""
Exception taxonomy for the Bitcoin adaptor.

Every failure surfaced by a public operation is an ``AdaptorError``.
"""

from __future__ import annotations


class AdaptorError(Exception):
    """Base class for all adaptor errors."""


class InvalidAddress(AdaptorError, ValueError):
    """Address does not decode for the configured network."""

    def __init__(self, address: str, reason: str = "") -> None:
        self.address = address
        self.reason = reason
        message = f"Invalid address: {address!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class InvalidAmount(AdaptorError, ValueError):
    """Non-positive target amount or malformed exclusion entry."""


class InvalidArgument(AdaptorError, ValueError):
    """Out-of-range query parameter or inconsistent builder input."""


class InsufficientFunds(AdaptorError):
    """Spendable outputs cannot cover the requested amount."""

    def __init__(self, required: int, available: int) -> None:
        self.required = required
        self.available = available
        super().__init__(f"Insufficient funds: need {required}, have {available}")


class LookupFailure(AdaptorError):
    """Ledger query failed at the transport or protocol level."""

    def __init__(self, method: str, message: str, code: int | None = None) -> None:
        self.method = method
        self.code = code
        super().__init__(f"{method}: {message}")


class MalformedLedgerData(AdaptorError):
    """Ledger returned data in a shape the adaptor cannot interpret."""


class NoInputsSelected(AdaptorError):
    pass


class NoOutputsProduced(AdaptorError):
    pass


class NotImplementedCapability(AdaptorError, NotImplementedError):
    """Capability intentionally not provided by this adaptor."""

    def __init__(self, capability: str) -> None:
        self.capability = capability
        super().__init__(f"{capability} is not supported by the Bitcoin adaptor")
