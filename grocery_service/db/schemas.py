# grocery_service/db/schemas.py
from datetime import datetime
from enum import Enum
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator
from pydantic.alias_generators import to_camel

from grocery_service.db.models import OrderStatus, RoleEnum


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


# Grocery item as shown to users browsing the catalog
class GroceryItemSchema(CamelModel):
    id: int
    name: str
    price: Decimal
    quantity: int


class AvailableItemsPage(CamelModel):
    total_count: int
    skip: int
    limit: int
    grocery_items: List[GroceryItemSchema]


# Request body for placing an order
class OrderLine(CamelModel):
    item_id: int = Field(gt=0, strict=True)
    quantity: int = Field(gt=0, strict=True)


class PlaceOrderRequest(CamelModel):
    user_id: int = Field(gt=0, strict=True)
    items: List[OrderLine] = Field(min_length=1)


class OrderSchema(CamelModel):
    id: int
    user_id: int
    total_amount: Decimal
    status: OrderStatus
    created_at: Optional[datetime] = None


class OrderItemSchema(CamelModel):
    id: int
    order_id: int
    item_id: int
    quantity: int
    price: Decimal
    total_price: Decimal


class OrderItemDetail(OrderItemSchema):
    item_name: str


class PlaceOrderResponse(CamelModel):
    message: str
    order: OrderSchema
    order_items: List[OrderItemSchema]


class UnavailableItemsResponse(CamelModel):
    message: str
    unavailable_items: List[int]


class OrdersPage(CamelModel):
    total_count: int
    orders: List[OrderSchema]


class OrderItemsPage(CamelModel):
    total_count: int
    skip: int
    limit: int
    order_items: List[OrderItemDetail]


# Users and authentication
class SignUpRequest(BaseModel):
    username: str = Field(min_length=1, max_length=50)
    password: str = Field(min_length=1)
    role: RoleEnum = RoleEnum.user


class LoginRequest(BaseModel):
    username: str
    password: str


class UserSchema(CamelModel):
    id: int
    username: str
    role: RoleEnum


class TokenData(BaseModel):
    token: str
    user: UserSchema


class AuthResponse(BaseModel):
    success: bool
    message: str
    data: TokenData


class UsersPage(CamelModel):
    total_count: int
    skip: int
    limit: int
    users: List[UserSchema]


# Admin inventory management
class InventoryOperation(str, Enum):
    increase = "increase"
    decrease = "decrease"
    set_zero = "setZero"


class ManageInventoryRequest(CamelModel):
    item_id: int = Field(gt=0, strict=True)
    operation: InventoryOperation
    quantity: Optional[int] = Field(default=None, gt=0, le=1_000_000, strict=True)

    @model_validator(mode="after")
    def quantity_required_for_changes(self):
        if self.operation != InventoryOperation.set_zero and self.quantity is None:
            raise ValueError(f"quantity is required for operation '{self.operation.value}'")
        return self
