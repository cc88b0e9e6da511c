# grocery_service/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException

from grocery_service.auth_utils import (
    authorize_user,
    create_access_token,
    hash_password,
    require_role,
    verify_password,
)
from grocery_service.config import (
    LOG_LEVEL,
    get_cors_origins,
    get_order_conflict_retries,
    get_order_placement_timeout,
)
from grocery_service.db.database import create_db_engine, create_session_factory, get_db
from grocery_service.db.functions import (
    clear_item_quantity,
    create_user,
    decrement_item_quantity,
    get_all_users,
    get_available_items,
    get_item_by_id,
    get_order_items,
    get_user_by_username,
    get_user_orders,
    increment_item_quantity,
)
from grocery_service.db.init_db import init_db
from grocery_service.db.models import RoleEnum
from grocery_service.db.schemas import (
    AuthResponse,
    AvailableItemsPage,
    GroceryItemSchema,
    InventoryOperation,
    LoginRequest,
    ManageInventoryRequest,
    OrderItemDetail,
    OrderItemSchema,
    OrderItemsPage,
    OrderSchema,
    OrdersPage,
    PlaceOrderRequest,
    PlaceOrderResponse,
    SignUpRequest,
    TokenData,
    UnavailableItemsResponse,
    UserSchema,
    UsersPage,
)
from grocery_service.exceptions import (
    InsufficientAvailabilityError,
    OrderPlacementError,
    OrderValidationError,
    PersistenceError,
)
from grocery_service.orders import OrderEngine

logging.basicConfig(level=LOG_LEVEL, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger("grocery_service")


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = create_db_engine()
    await init_db(engine)
    app.state.session_factory = create_session_factory(engine)
    app.state.order_engine = OrderEngine(
        app.state.session_factory,
        timeout=get_order_placement_timeout(),
        conflict_retries=get_order_conflict_retries(),
    )
    logger.info("Grocery service started")
    yield
    await engine.dispose()


app = FastAPI(title="Grocery Service", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

require_user = require_role(RoleEnum.user)
require_admin = require_role(RoleEnum.admin)


def get_order_engine(request: Request) -> OrderEngine:
    return request.app.state.order_engine


# ---- Error mapping ----

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"message": "Invalid request payload", "errors": [
            {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]} for error in exc.errors()
        ]},
    )


@app.exception_handler(OrderValidationError)
async def order_validation_handler(request: Request, exc: OrderValidationError):
    return JSONResponse(status_code=400, content={"message": exc.message, "code": exc.code})


@app.exception_handler(InsufficientAvailabilityError)
async def insufficient_availability_handler(request: Request, exc: InsufficientAvailabilityError):
    content = UnavailableItemsResponse(message=exc.message, unavailable_items=exc.unavailable_items)
    return JSONResponse(status_code=400, content=content.model_dump(by_alias=True))


@app.exception_handler(PersistenceError)
async def persistence_error_handler(request: Request, exc: PersistenceError):
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


# ---- Auth ----

@app.post("/api/auth/signup", status_code=201, response_model=AuthResponse)
async def signup(payload: SignUpRequest, db: AsyncSession = Depends(get_db)):
    if await get_user_by_username(db, payload.username):
        raise HTTPException(status_code=409, detail=f"User {payload.username} already exists")

    user = await create_user(db, payload.username, hash_password(payload.password), payload.role)
    logger.info(f"Registered user {user.id} with role {user.role.value}")
    token = create_access_token({"sub": user.username, "id": user.id, "role": user.role.value})
    return AuthResponse(
        success=True,
        message="User registered successfully",
        data=TokenData(token=token, user=UserSchema.model_validate(user)),
    )


@app.post("/api/auth/login", response_model=AuthResponse)
async def login(payload: LoginRequest, db: AsyncSession = Depends(get_db)):
    user = await get_user_by_username(db, payload.username)
    if user is None or not verify_password(payload.password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Incorrect username or password")

    token = create_access_token({"sub": user.username, "id": user.id, "role": user.role.value})
    return AuthResponse(
        success=True,
        message="User logged in successfully",
        data=TokenData(token=token, user=UserSchema.model_validate(user)),
    )


# ---- User ----

@app.get("/api/user/grocery-items/available")
async def read_available_items(
    search: str = Query(default='', alias="q"),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=10, ge=1, le=100),
    user: dict = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    total_count, items = await get_available_items(db, search, skip, limit)
    if not items:
        raise HTTPException(status_code=404, detail="No available grocery items found")

    page = AvailableItemsPage(
        total_count=total_count,
        skip=skip,
        limit=limit,
        grocery_items=[GroceryItemSchema.model_validate(item) for item in items],
    )
    return {
        "status": "success",
        "message": "Available grocery items retrieved successfully",
        "data": page.model_dump(by_alias=True, mode="json"),
    }


@app.post(
    "/api/user/grocery-items/order",
    status_code=201,
    response_model=PlaceOrderResponse,
    responses={400: {"model": UnavailableItemsResponse}},
)
async def place_order(
    payload: PlaceOrderRequest,
    user: dict = Depends(require_user),
    order_engine: OrderEngine = Depends(get_order_engine),
):
    authorize_user(user, payload.user_id)
    try:
        placed = await order_engine.place_order(payload.user_id, payload.items)
    except OrderPlacementError:
        raise
    except Exception:
        logger.exception(f"Error placing order for user {payload.user_id}")
        return JSONResponse(status_code=500, content={"message": "Internal server error"})

    return PlaceOrderResponse(
        message="Order placed successfully",
        order=OrderSchema.model_validate(placed.order),
        order_items=[OrderItemSchema.model_validate(item) for item in placed.order_items],
    )


@app.get("/api/user/orders/{user_id}")
async def read_user_orders(
    user_id: int,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=10, ge=1, le=100),
    user: dict = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    authorize_user(user, user_id)
    total_count, orders = await get_user_orders(db, user_id, skip, limit)
    page = OrdersPage(total_count=total_count, orders=[OrderSchema.model_validate(order) for order in orders])
    return {
        "status": "success",
        "message": "Orders retrieved successfully",
        "data": page.model_dump(by_alias=True, mode="json"),
    }


@app.get("/api/user/orders/{user_id}/items")
@app.get("/api/user/orders/{user_id}/items/{order_id}")
async def read_order_items(
    user_id: int,
    order_id: int = None,
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=10, ge=1, le=100),
    user: dict = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    authorize_user(user, user_id)
    total_count, rows = await get_order_items(db, user_id, order_id, skip, limit)
    if not rows:
        raise HTTPException(status_code=404, detail="No order items found")

    page = OrderItemsPage(
        total_count=total_count,
        skip=skip,
        limit=limit,
        order_items=[OrderItemDetail.model_validate(row) for row in rows],
    )
    return {
        "status": "success",
        "message": "Order items retrieved successfully",
        "data": page.model_dump(by_alias=True, mode="json"),
    }


# ---- Admin ----

@app.post("/api/admin/grocery-items/manage-inventory")
async def manage_inventory(
    payload: ManageInventoryRequest,
    user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    item = await get_item_by_id(db, payload.item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Grocery item not found")

    if payload.operation == InventoryOperation.increase:
        await increment_item_quantity(db, item.id, payload.quantity)
    elif payload.operation == InventoryOperation.decrease:
        if not await decrement_item_quantity(db, item.id, payload.quantity):
            await db.rollback()
            raise HTTPException(status_code=400, detail="Insufficient quantity")
    else:
        await clear_item_quantity(db, item.id)

    await db.commit()
    await db.refresh(item)
    logger.info(f"Admin {user['id']} applied {payload.operation.value} to item {item.id}, quantity now {item.quantity}")
    return {
        "status": "success",
        "message": "Inventory managed successfully",
        "data": GroceryItemSchema.model_validate(item).model_dump(by_alias=True, mode="json"),
    }


@app.get("/api/admin/users")
async def read_users(
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=10, ge=1, le=100),
    user: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    total_count, users = await get_all_users(db, skip, limit)
    page = UsersPage(
        total_count=total_count,
        skip=skip,
        limit=limit,
        users=[UserSchema.model_validate(db_user) for db_user in users],
    )
    return {
        "status": "success",
        "message": "Users retrieved successfully",
        "data": page.model_dump(by_alias=True, mode="json"),
    }


@app.get("/")
async def health_check():
    """Health check endpoint."""
    return {"status": "grocery_service running"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("grocery_service.main:app", host="0.0.0.0", port=8000, reload=True)
