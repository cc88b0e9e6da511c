# grocery_service/exceptions.py


class OrderPlacementError(Exception):
    code = "ORDER_PLACEMENT_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class OrderValidationError(OrderPlacementError):
    """The requested order is malformed or its total is out of range; nothing is written."""

    code = "VALIDATION_ERROR"


class InsufficientAvailabilityError(OrderPlacementError):
    """One or more items do not exist or lack stock for the requested quantity."""

    code = "INSUFFICIENT_AVAILABILITY"

    def __init__(self, unavailable_items, message: str = "One or more items are not available in sufficient quantity"):
        super().__init__(message)
        self.unavailable_items = list(unavailable_items)


class PersistenceError(OrderPlacementError):
    code = "PERSISTENCE_ERROR"


class OrderTimeoutError(PersistenceError):
    """Placement did not commit in time and was rolled back."""


class StockConflictError(Exception):
    """A conditional decrement lost against a concurrent order.

    Internal to the order engine: it is either retried or converted into
    InsufficientAvailabilityError before reaching callers.
    """

    def __init__(self, item_ids):
        super().__init__(f"Stock changed for items {list(item_ids)}")
        self.item_ids = list(item_ids)
