import sys
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from settlement_api.app import create_app  # noqa: E402
from settlement_api.db.base import Base  # noqa: E402
from settlement_api.db.session import get_session  # noqa: E402
from settlement_api.models import (  # noqa: E402
    PointsBalance,
    Product,
    Reward,
    RewardType,
    Store,
    User,
    UserRoleEnum,
)
from settlement_api.observability.settlement import get_settlement_store  # noqa: E402
from settlement_api.services.settlement import InMemoryPendingTransactionStore  # noqa: E402


@dataclass
class SettlementWorld:
    store_id: int
    other_store_id: int
    vendor_id: int
    other_vendor_id: int
    customer_id: int
    latte_id: int
    croissant_id: int
    muffin_id: int
    discount_reward_id: int
    free_item_reward_id: int
    bxgy_reward_id: int
    other_store_reward_id: int


@pytest.fixture(autouse=True)
def reset_settlement_metrics():
    get_settlement_store().reset()
    yield
    get_settlement_store().reset()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def world(session_factory) -> SettlementWorld:
    """Two stores, their vendors, one customer, products and rewards."""

    async with session_factory() as session:
        store = Store(name="Corner Coffee", is_active=True)
        other_store = Store(name="Harbor Bakery", is_active=True)
        session.add_all([store, other_store])
        await session.flush()

        vendor = User(email="vendor@example.com", role=UserRoleEnum.VENDOR.value, store_id=store.id)
        other_vendor = User(email="other-vendor@example.com", role=UserRoleEnum.VENDOR.value, store_id=other_store.id)
        customer = User(email="customer@example.com", role=UserRoleEnum.CUSTOMER.value)
        session.add_all([vendor, other_vendor, customer])
        await session.flush()
        store.owner_id = vendor.id
        other_store.owner_id = other_vendor.id

        latte = Product(store_id=store.id, name="Latte", price=Decimal("4.50"), points_cost=Decimal("40"))
        croissant = Product(store_id=store.id, name="Croissant", price=Decimal("3.00"), points_cost=Decimal("25"))
        muffin = Product(store_id=store.id, name="Muffin", price=Decimal("2.50"))
        session.add_all([latte, croissant, muffin])
        await session.flush()

        discount = Reward(
            store_id=store.id,
            name="Half off",
            reward_type=RewardType.DISCOUNT,
            points_cost=Decimal("0"),
            discount_value=Decimal("50"),
        )
        free_item = Reward(
            store_id=store.id,
            name="Free croissant",
            reward_type=RewardType.FREE_ITEM,
            points_cost=Decimal("30"),
            free_item_product_id=croissant.id,
        )
        bxgy = Reward(
            store_id=store.id,
            name="Two lattes, one muffin",
            reward_type=RewardType.BUY_X_GET_Y,
            points_cost=Decimal("0"),
            buy_x_product_id=latte.id,
            buy_x_quantity=2,
            get_y_product_id=muffin.id,
            get_y_quantity=1,
        )
        foreign = Reward(
            store_id=other_store.id,
            name="Bakery discount",
            reward_type=RewardType.DISCOUNT,
            points_cost=Decimal("0"),
            discount_value=Decimal("0.1"),
        )
        session.add_all([discount, free_item, bxgy, foreign])
        await session.commit()

        return SettlementWorld(
            store_id=store.id,
            other_store_id=other_store.id,
            vendor_id=vendor.id,
            other_vendor_id=other_vendor.id,
            customer_id=customer.id,
            latte_id=latte.id,
            croissant_id=croissant.id,
            muffin_id=muffin.id,
            discount_reward_id=discount.id,
            free_item_reward_id=free_item.id,
            bxgy_reward_id=bxgy.id,
            other_store_reward_id=foreign.id,
        )


@pytest.fixture
def grant_points(session_factory):
    """Seed a balance row directly, bypassing settlement."""

    async def _grant(user_id: int, store_id: int, points: str, *, version: int = 1) -> None:
        async with session_factory() as session:
            session.add(
                PointsBalance(
                    user_id=user_id,
                    store_id=store_id,
                    total_points=Decimal(points),
                    redeemed_points=Decimal("0"),
                    version=version,
                )
            )
            await session.commit()

    return _grant


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()
    app.state.pending_store = InMemoryPendingTransactionStore()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()
