# tests/test_orders.py
import asyncio
from decimal import Decimal

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.future import select

from grocery_service.db import functions
from grocery_service.db.models import GroceryItem, Order, OrderItem, OrderStatus
from grocery_service.db.schemas import OrderLine
from grocery_service.exceptions import (
    InsufficientAvailabilityError,
    OrderTimeoutError,
    OrderValidationError,
    PersistenceError,
)
from grocery_service.orders import OrderEngine, PlacedOrder
from tests.helpers import count_rows, item_quantities


async def assert_nothing_written(factory):
    assert await count_rows(factory, Order) == 0
    assert await count_rows(factory, OrderItem) == 0
    assert await item_quantities(factory) == {1: 5, 2: 10}


@pytest.mark.asyncio
async def test_place_order_success(order_engine, session_factory):
    placed = await order_engine.place_order(1, [(1, 2), (2, 3)])

    assert placed.order.id is not None
    assert placed.order.user_id == 1
    assert placed.order.status == OrderStatus.placed
    assert placed.order.total_amount == Decimal("65")
    assert placed.order.created_at is not None

    lines = {item.item_id: item for item in placed.order_items}
    assert lines[1].price == Decimal("10") and lines[1].total_price == Decimal("20")
    assert lines[2].price == Decimal("15") and lines[2].total_price == Decimal("45")
    assert all(item.order_id == placed.order.id for item in placed.order_items)

    assert await item_quantities(session_factory) == {1: 3, 2: 7}


@pytest.mark.asyncio
async def test_total_is_sum_of_line_totals(order_engine, session_factory):
    async with session_factory() as session:
        await session.execute(update(GroceryItem).where(GroceryItem.id == 1).values(price=Decimal("0.10")))
        await session.execute(update(GroceryItem).where(GroceryItem.id == 2).values(price=Decimal("0.20")))
        await session.commit()

    placed = await order_engine.place_order(1, [(1, 3), (2, 1)])

    assert placed.order.total_amount == Decimal("0.50")
    assert placed.order.total_amount == sum(item.price * item.quantity for item in placed.order_items)


@pytest.mark.asyncio
async def test_accepts_request_schema_lines(order_engine):
    placed = await order_engine.place_order(2, [OrderLine(item_id=2, quantity=1)])
    assert isinstance(placed, PlacedOrder)
    assert placed.order.total_amount == Decimal("15")


@pytest.mark.asyncio
async def test_insufficient_quantity(order_engine, session_factory):
    with pytest.raises(InsufficientAvailabilityError) as exc_info:
        await order_engine.place_order(1, [(1, 10)])

    assert exc_info.value.unavailable_items == [1]
    assert exc_info.value.code == "INSUFFICIENT_AVAILABILITY"
    await assert_nothing_written(session_factory)


@pytest.mark.asyncio
async def test_all_unavailable_items_reported_and_nothing_written(order_engine, session_factory):
    with pytest.raises(InsufficientAvailabilityError) as exc_info:
        await order_engine.place_order(1, [(2, 1), (99, 1), (1, 6)])

    assert exc_info.value.unavailable_items == [99, 1]
    await assert_nothing_written(session_factory)


@pytest.mark.asyncio
async def test_duplicate_lines_are_checked_together(order_engine, session_factory):
    with pytest.raises(InsufficientAvailabilityError) as exc_info:
        await order_engine.place_order(1, [(1, 3), (1, 3)])
    assert exc_info.value.unavailable_items == [1]
    await assert_nothing_written(session_factory)

    placed = await order_engine.place_order(1, [(1, 2), (1, 3)])
    assert len(placed.order_items) == 2
    assert placed.order.total_amount == Decimal("50")
    assert (await item_quantities(session_factory))[1] == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("lines", [
    [],
    None,
    [(1, 0)],
    [(1, -2)],
    [(0, 1)],
    [("1", 1)],
    [(1, 1.5)],
    [(1, True)],
    [{"itemId": 1}],
])
async def test_malformed_lines_rejected(order_engine, session_factory, lines):
    with pytest.raises(OrderValidationError):
        await order_engine.place_order(1, lines)
    await assert_nothing_written(session_factory)


@pytest.mark.asyncio
async def test_invalid_user_id_rejected(order_engine):
    with pytest.raises(OrderValidationError):
        await order_engine.place_order(0, [(1, 1)])


@pytest.mark.asyncio
async def test_recorded_prices_survive_catalog_price_change(order_engine, session_factory):
    placed = await order_engine.place_order(1, [(1, 2)])

    async with session_factory() as session:
        await session.execute(update(GroceryItem).where(GroceryItem.id == 1).values(price=Decimal("99")))
        await session.commit()

    async with session_factory() as session:
        order = (await session.execute(select(Order).filter(Order.id == placed.order.id))).scalar_one()
        order_item = (await session.execute(select(OrderItem).filter(OrderItem.order_id == order.id))).scalar_one()

    assert order.total_amount == Decimal("20")
    assert order_item.price == Decimal("10")
    assert order_item.total_price == Decimal("20")


@pytest.mark.asyncio
async def test_concurrent_orders_for_last_units(order_engine, session_factory):
    results = await asyncio.gather(
        order_engine.place_order(1, [(1, 3)]),
        order_engine.place_order(2, [(1, 3)]),
        return_exceptions=True,
    )

    placed = [result for result in results if isinstance(result, PlacedOrder)]
    failed = [result for result in results if isinstance(result, InsufficientAvailabilityError)]
    assert len(placed) == 1
    assert len(failed) == 1
    assert failed[0].unavailable_items == [1]

    assert (await item_quantities(session_factory))[1] == 2
    assert await count_rows(session_factory, Order) == 1
    assert await count_rows(session_factory, OrderItem) == 1


@pytest.mark.asyncio
async def test_no_oversell_under_contention(order_engine, session_factory):
    results = await asyncio.gather(
        *[order_engine.place_order(1 + n % 2, [(1, 2)]) for n in range(5)],
        return_exceptions=True,
    )

    placed = [result for result in results if isinstance(result, PlacedOrder)]
    assert all(isinstance(result, (PlacedOrder, InsufficientAvailabilityError)) for result in results)
    assert len(placed) == 2

    remaining = (await item_quantities(session_factory))[1]
    assert remaining == 1
    assert sum(line.quantity for p in placed for line in p.order_items) == 5 - remaining


@pytest.mark.asyncio
async def test_disjoint_orders_both_succeed(order_engine, session_factory):
    results = await asyncio.gather(
        order_engine.place_order(1, [(1, 5)]),
        order_engine.place_order(2, [(2, 10)]),
    )

    assert all(isinstance(result, PlacedOrder) for result in results)
    assert await item_quantities(session_factory) == {1: 0, 2: 0}


def stale_snapshot(monkeypatch, session_factory, calls):
    """Make another buyer take stock right after each snapshot read."""
    original = functions.get_items_by_ids

    async def get_items_then_sell_out(db, item_ids):
        calls.append(sorted(item_ids))
        items = await original(db, item_ids)
        async with session_factory() as other:
            await other.execute(update(GroceryItem).where(GroceryItem.id == 1).values(quantity=1))
            await other.commit()
        return items

    monkeypatch.setattr(functions, "get_items_by_ids", get_items_then_sell_out)


@pytest.mark.asyncio
async def test_stock_conflict_is_retried_then_reported(monkeypatch, order_engine, session_factory):
    calls = []
    stale_snapshot(monkeypatch, session_factory, calls)

    with pytest.raises(InsufficientAvailabilityError) as exc_info:
        await order_engine.place_order(1, [(1, 3), (2, 1)])

    assert exc_info.value.unavailable_items == [1]
    assert len(calls) == 2
    assert await count_rows(session_factory, Order) == 0
    assert await count_rows(session_factory, OrderItem) == 0
    assert await item_quantities(session_factory) == {1: 1, 2: 10}


@pytest.mark.asyncio
async def test_stock_conflict_without_retry(monkeypatch, session_factory):
    calls = []
    stale_snapshot(monkeypatch, session_factory, calls)
    engine = OrderEngine(session_factory, conflict_retries=0)

    with pytest.raises(InsufficientAvailabilityError) as exc_info:
        await engine.place_order(1, [(1, 3)])

    assert exc_info.value.unavailable_items == [1]
    assert len(calls) == 1
    assert await count_rows(session_factory, Order) == 0


@pytest.mark.asyncio
async def test_database_failure_rolls_back(monkeypatch, order_engine, session_factory):
    async def broken_decrement(db, item_id, amount):
        raise OperationalError("UPDATE grocery_items", {}, Exception("disk I/O error"))

    monkeypatch.setattr(functions, "decrement_item_quantity", broken_decrement)

    with pytest.raises(PersistenceError) as exc_info:
        await order_engine.place_order(1, [(1, 2), (2, 3)])

    assert exc_info.value.code == "PERSISTENCE_ERROR"
    await assert_nothing_written(session_factory)


@pytest.mark.asyncio
async def test_timeout_rolls_back(monkeypatch, session_factory):
    original = functions.decrement_item_quantity

    async def slow_decrement(db, item_id, amount):
        await asyncio.sleep(2)
        return await original(db, item_id, amount)

    monkeypatch.setattr(functions, "decrement_item_quantity", slow_decrement)
    engine = OrderEngine(session_factory, timeout=0.2)

    with pytest.raises(OrderTimeoutError):
        await engine.place_order(1, [(1, 2)])

    await assert_nothing_written(session_factory)


@pytest.mark.asyncio
async def test_total_above_money_limit_rejected(order_engine, session_factory):
    async with session_factory() as session:
        await session.execute(update(GroceryItem).where(GroceryItem.id == 1).values(price=Decimal("9999999999.99")))
        await session.commit()

    with pytest.raises(OrderValidationError):
        await order_engine.place_order(1, [(1, 2)])

    assert await count_rows(session_factory, Order) == 0
    assert await count_rows(session_factory, OrderItem) == 0
    assert await item_quantities(session_factory) == {1: 5, 2: 10}
