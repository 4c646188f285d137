# Overview: Typed failure modes of the inventory ledger.

"""
Inventory Ledger error kinds (authoritative)

- InvariantViolation: a write would break 0 <= allocated <= on_hand.
  Fatal to the current transaction; never clamped.
- InsufficientStock: transfer/issue exceeds what the source row can give.
  A business-rule rejection; retrying is the caller's decision.
- InvalidQuantity: zero/negative quantity, same source and destination.
  Raised before any database write.
- MissingInventoryRecord: a (lot, location) balance row the operation needs
  does not exist. Carries the IDs involved for upstream diagnosis.
- UnknownReference: product/location/lot reference that does not resolve.
- StockTakeStateError: stock-take state machine transition not allowed.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class; routes translate these into JSON errors."""

    status_code = 400

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> dict:
        payload = {"error": self.message, "kind": type(self).__name__}
        if self.context:
            payload["context"] = self.context
        return payload


class InvariantViolation(LedgerError):
    status_code = 409


class InsufficientStock(LedgerError):
    status_code = 409


class InvalidQuantity(LedgerError):
    status_code = 400


class MissingInventoryRecord(LedgerError):
    status_code = 404


class UnknownReference(LedgerError):
    status_code = 404


class StockTakeStateError(LedgerError):
    status_code = 409


def require_positive_quantity(quantity, field: str = "quantity") -> int:
    """Reject bools, non-integers and values <= 0 before touching the database."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantity(f"{field} must be an integer", **{field: quantity})
    if quantity <= 0:
        raise InvalidQuantity(f"{field} must be positive", **{field: quantity})
    return quantity
