# grocery_service/db/functions.py
from decimal import Decimal
from typing import Dict, Iterable, List

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from grocery_service.db.models import GroceryItem, Order, OrderItem, OrderStatus, RoleEnum, User


# ---- Catalog ----

async def get_items_by_ids(db: AsyncSession, item_ids: Iterable[int]) -> Dict[int, GroceryItem]:
    """Fetch every requested item in a single query, keyed by id.

    Missing ids are simply absent from the result.
    """
    item_ids = set(item_ids)
    if not item_ids:
        return {}
    result = await db.execute(select(GroceryItem).filter(GroceryItem.id.in_(item_ids)))
    return {item.id: item for item in result.scalars().all()}


async def decrement_item_quantity(db: AsyncSession, item_id: int, amount: int) -> bool:
    """Take `amount` units off an item only if that many are still in stock.

    Returns False when the persisted quantity is lower than `amount` at the
    moment of the write, the row is left untouched in that case.
    """
    result = await db.execute(
        update(GroceryItem)
        .where(GroceryItem.id == item_id, GroceryItem.quantity >= amount)
        .values(quantity=GroceryItem.quantity - amount)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def get_item_by_id(db: AsyncSession, item_id: int):
    result = await db.execute(select(GroceryItem).filter(GroceryItem.id == item_id))
    return result.scalar_one_or_none()


async def increment_item_quantity(db: AsyncSession, item_id: int, amount: int) -> bool:
    result = await db.execute(
        update(GroceryItem)
        .where(GroceryItem.id == item_id)
        .values(quantity=GroceryItem.quantity + amount)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def clear_item_quantity(db: AsyncSession, item_id: int) -> bool:
    result = await db.execute(
        update(GroceryItem)
        .where(GroceryItem.id == item_id)
        .values(quantity=0)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def get_available_items(db: AsyncSession, search: str = '', skip: int = 0, limit: int = 100):
    query = select(GroceryItem).filter(GroceryItem.quantity > 0)
    if search != '':
        query = query.filter(GroceryItem.name.ilike(f"%{search}%"))

    count_result = await db.execute(select(func.count()).select_from(query.subquery()))
    total_count = count_result.scalar_one()

    result = await db.execute(query.order_by(GroceryItem.name, GroceryItem.id).offset(skip).limit(limit))
    return total_count, result.scalars().all()


# ---- Orders ----

async def create_order(db: AsyncSession, user_id: int, total_amount: Decimal, status: OrderStatus = OrderStatus.placed) -> Order:
    order = Order(user_id=user_id, total_amount=total_amount, status=status)
    db.add(order)
    await db.flush()  # assigns id and created_at
    return order


async def create_order_item(db: AsyncSession, order_id: int, item_id: int, quantity: int,
                            price: Decimal, total_price: Decimal) -> OrderItem:
    # written on the next flush
    order_item = OrderItem(order_id=order_id, item_id=item_id, quantity=quantity, price=price, total_price=total_price)
    db.add(order_item)
    return order_item


async def create_order_items(db: AsyncSession, order_id: int, lines) -> List[OrderItem]:
    """Insert all line items of an order with one flush.

    `lines` yields (item_id, quantity, price, total_price) tuples.
    """
    order_items = [
        await create_order_item(db, order_id, item_id, quantity, price, total_price)
        for item_id, quantity, price, total_price in lines
    ]
    await db.flush()
    return order_items


async def get_user_orders(db: AsyncSession, user_id: int, skip: int = 0, limit: int = 100):
    count_result = await db.execute(select(func.count(Order.id)).filter(Order.user_id == user_id))
    total_count = count_result.scalar_one()

    result = await db.execute(
        select(Order)
        .filter(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset(skip)
        .limit(limit)
    )
    return total_count, result.scalars().all()


async def get_order_items(db: AsyncSession, user_id: int, order_id: int = None, skip: int = 0, limit: int = 100):
    """Order lines of a user's orders together with the item name.

    Restricting on `Order.user_id` keeps users from reading each other's
    orders even when they guess an order id.
    """
    query = (
        select(OrderItem, GroceryItem.name)
        .join(Order, OrderItem.order_id == Order.id)
        .join(GroceryItem, OrderItem.item_id == GroceryItem.id)
        .filter(Order.user_id == user_id)
    )
    if order_id is not None:
        query = query.filter(OrderItem.order_id == order_id)

    count_result = await db.execute(select(func.count()).select_from(query.subquery()))
    total_count = count_result.scalar_one()

    result = await db.execute(query.order_by(OrderItem.order_id.desc(), OrderItem.id).offset(skip).limit(limit))
    rows = [
        {
            "id": order_item.id,
            "order_id": order_item.order_id,
            "item_id": order_item.item_id,
            "item_name": item_name,
            "quantity": order_item.quantity,
            "price": order_item.price,
            "total_price": order_item.total_price,
        }
        for order_item, item_name in result.all()
    ]
    return total_count, rows


# ---- Users ----

async def get_all_users(db: AsyncSession, skip: int = 0, limit: int = 100):
    count_result = await db.execute(select(func.count(User.id)))
    total_count = count_result.scalar_one()

    result = await db.execute(select(User).order_by(User.id).offset(skip).limit(limit))
    return total_count, result.scalars().all()


async def get_user_by_username(db: AsyncSession, username: str):
    result = await db.execute(select(User).filter(User.username == username))
    return result.scalar_one_or_none()


async def create_user(db: AsyncSession, username: str, hashed_password: str, role: RoleEnum = RoleEnum.user):
    db_user = User(username=username, hashed_password=hashed_password, role=role)
    db.add(db_user)
    await db.commit()
    await db.refresh(db_user)
    return db_user
