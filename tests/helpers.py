# tests/helpers.py
from decimal import Decimal

from sqlalchemy import func, select

from grocery_service.auth_utils import create_access_token, hash_password
from grocery_service.db.models import GroceryItem, RoleEnum, User


def seed_rows():
    return [
        User(id=1, username="alice", hashed_password=hash_password("alice-pass"), role=RoleEnum.user),
        User(id=2, username="bob", hashed_password=hash_password("bob-pass"), role=RoleEnum.user),
        User(id=3, username="admin", hashed_password=hash_password("admin-pass"), role=RoleEnum.admin),
        GroceryItem(id=1, name="Apples", price=Decimal("10"), quantity=5),
        GroceryItem(id=2, name="Bananas", price=Decimal("15"), quantity=10),
    ]


async def item_quantities(factory):
    async with factory() as session:
        result = await session.execute(select(GroceryItem.id, GroceryItem.quantity).order_by(GroceryItem.id))
        return dict(result.all())


async def count_rows(factory, model):
    async with factory() as session:
        result = await session.execute(select(func.count()).select_from(model))
        return result.scalar_one()


def auth_headers(user_id=1, username="alice", role=RoleEnum.user):
    token = create_access_token({"sub": username, "id": user_id, "role": role.value})
    return {"Authorization": f"Bearer {token}"}
