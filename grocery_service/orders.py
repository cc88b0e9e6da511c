# grocery_service/orders.py
import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from grocery_service.db import functions
from grocery_service.db.models import MAX_MONEY, Order, OrderItem, OrderStatus
from grocery_service.exceptions import (
    InsufficientAvailabilityError,
    OrderTimeoutError,
    OrderValidationError,
    PersistenceError,
    StockConflictError,
)

logger = logging.getLogger("grocery_service.orders")


@dataclass
class PlacedOrder:
    order: Order
    order_items: List[OrderItem]


def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def parse_lines(lines) -> List[Tuple[int, int]]:
    """Turn requested lines into (item_id, quantity) pairs.

    Accepts objects with `item_id`/`quantity` attributes (the request schema)
    or plain 2-tuples. Anything else is an OrderValidationError.
    """
    if not lines:
        raise OrderValidationError("Order must contain at least one item")

    parsed = []
    for line in lines:
        if isinstance(line, (tuple, list)) and len(line) == 2:
            item_id, quantity = line
        else:
            item_id = getattr(line, "item_id", None)
            quantity = getattr(line, "quantity", None)
        if not _is_positive_int(item_id) or not _is_positive_int(quantity):
            raise OrderValidationError(f"Invalid order line: {line!r}")
        parsed.append((item_id, quantity))
    return parsed


class OrderEngine:
    """Places orders against the catalog without overselling.

    Availability is first checked on a snapshot read; every decrement is then
    re-validated by a conditional update inside the same transaction, so two
    orders racing for the same item can never both take the last units.
    """

    def __init__(self, session_factory: async_sessionmaker, timeout: float = None, conflict_retries: int = 1):
        self.session_factory = session_factory
        self.timeout = timeout
        self.conflict_retries = conflict_retries

    async def place_order(self, user_id: int, lines) -> PlacedOrder:
        if not _is_positive_int(user_id):
            raise OrderValidationError(f"Invalid user id: {user_id!r}")
        parsed = parse_lines(lines)

        attempt = 0
        while True:
            try:
                placed = await asyncio.wait_for(self._place(user_id, parsed), timeout=self.timeout)
            except StockConflictError as exc:
                if attempt < self.conflict_retries:
                    attempt += 1
                    logger.warning(f"Stock conflict on items {exc.item_ids} for user {user_id}, retrying ({attempt}/{self.conflict_retries})")
                    continue
                logger.warning(f"Stock conflict on items {exc.item_ids} for user {user_id}, giving up")
                raise InsufficientAvailabilityError(exc.item_ids) from exc
            except asyncio.TimeoutError as exc:
                logger.error(f"Order placement for user {user_id} timed out after {self.timeout}s, rolled back")
                raise OrderTimeoutError("Order placement timed out") from exc

            logger.info(
                f"Order {placed.order.id} placed for user {user_id}: "
                f"{len(placed.order_items)} lines, total {placed.order.total_amount}"
            )
            return placed

    async def _place(self, user_id: int, lines: List[Tuple[int, int]]) -> PlacedOrder:
        # Requested units per item, in first-seen order
        demand = {}
        for item_id, quantity in lines:
            demand[item_id] = demand.get(item_id, 0) + quantity

        async with self.session_factory() as session:
            try:
                async with session.begin():
                    snapshot = await functions.get_items_by_ids(session, demand.keys())

                    unavailable = [
                        item_id for item_id, quantity in demand.items()
                        if item_id not in snapshot or snapshot[item_id].quantity < quantity
                    ]
                    if unavailable:
                        logger.info(f"Order for user {user_id} rejected, unavailable items {unavailable}")
                        raise InsufficientAvailabilityError(unavailable)

                    # Prices are captured from the snapshot and stored on the lines
                    priced = []
                    for item_id, quantity in lines:
                        price = snapshot[item_id].price
                        priced.append((item_id, quantity, price, price * quantity))
                    total_amount = sum((line[3] for line in priced), Decimal("0"))
                    if total_amount > MAX_MONEY:
                        raise OrderValidationError(f"Order total {total_amount} exceeds the maximum of {MAX_MONEY}")

                    order = await functions.create_order(session, user_id, total_amount, OrderStatus.placed)
                    order_items = await functions.create_order_items(session, order.id, priced)

                    # Ascending id order keeps row locks from deadlocking across orders
                    conflicts = []
                    for item_id in sorted(demand):
                        if not await functions.decrement_item_quantity(session, item_id, demand[item_id]):
                            conflicts.append(item_id)
                    if conflicts:
                        raise StockConflictError(conflicts)
            except SQLAlchemyError as exc:
                logger.exception(f"Database error while placing order for user {user_id}")
                raise PersistenceError("Failed to persist order") from exc

        return PlacedOrder(order=order, order_items=order_items)
