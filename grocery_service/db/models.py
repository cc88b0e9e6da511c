# grocery_service/db/models.py
import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Column, DateTime, Enum, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from grocery_service.db.database import Base

# Largest amount a money column holds
MAX_MONEY = Decimal("9999999999.99")
MONEY = Numeric(12, 2)


class RoleEnum(str, enum.Enum):
    admin = "Admin"
    user = "User"


class OrderStatus(str, enum.Enum):
    placed = "Placed"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    hashed_password = Column(String(100), nullable=False)
    role = Column(Enum(RoleEnum), nullable=False, default=RoleEnum.user)
    created_at = Column(DateTime, default=datetime.utcnow)

    orders = relationship("Order", back_populates="user")


class GroceryItem(Base):
    __tablename__ = "grocery_items"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_grocery_items_quantity_non_negative"),
        CheckConstraint("price >= 0", name="ck_grocery_items_price_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, index=True, nullable=False)
    price = Column(MONEY, nullable=False)
    quantity = Column(Integer, nullable=False, default=0)  # units in stock
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    order_items = relationship("OrderItem", back_populates="grocery_item")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    total_amount = Column(MONEY, nullable=False)
    status = Column(Enum(OrderStatus), nullable=False, default=OrderStatus.placed)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="orders")
    order_items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    item_id = Column(Integer, ForeignKey("grocery_items.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(MONEY, nullable=False)  # unit price captured when the order was placed
    total_price = Column(MONEY, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    order = relationship("Order", back_populates="order_items")
    grocery_item = relationship("GroceryItem", back_populates="order_items")
