"""Rental domain exceptions.

Raised by the core modules when a business rule is violated. Every
error carries its kind and the id of the aggregate it concerns; the
routers translate them into HTTP responses.
"""

from __future__ import annotations

from typing import Any, Optional


class RentalError(Exception):
    kind = "RentalError"

    def __init__(self, message: str, aggregate_id: Any = None, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.aggregate_id = aggregate_id
        self.context = context

    def to_dict(self) -> dict:
        body = {"error": self.kind, "message": self.message, "id": self.aggregate_id}
        body.update(self.context)
        return body


class NotFound(RentalError):
    """A referenced product, quotation, order, invoice or line does not exist."""

    kind = "NotFound"


class Forbidden(RentalError):
    """The caller does not own the target aggregate and is not an admin."""

    kind = "Forbidden"


class InvalidState(RentalError):
    """The aggregate's current status does not allow the operation."""

    kind = "InvalidState"


class Unavailable(RentalError):
    """Requested quantity exceeds free stock for the interval."""

    kind = "Unavailable"

    def __init__(self, message: str, aggregate_id: Any = None, availability: Optional[dict] = None) -> None:
        super().__init__(message, aggregate_id, availability=availability)
        self.availability = availability


class InvalidAmount(RentalError):
    """A monetary amount is non-positive or exceeds the open balance."""

    kind = "InvalidAmount"


class EmptyCart(RentalError):
    kind = "EmptyCart"


class AlreadyExists(RentalError):
    kind = "AlreadyExists"


class InvalidRequest(RentalError):
    """Input rejected before touching any aggregate (bad interval, bad rate card)."""

    kind = "InvalidRequest"


class StoreFailure(RentalError):
    """The store failed mid-transaction; the unit of work was rolled back."""

    kind = "StoreFailure"
