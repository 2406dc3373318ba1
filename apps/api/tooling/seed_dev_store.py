"""Seed a development store, its vendor, a customer, products and rewards."""

from __future__ import annotations

import asyncio
from decimal import Decimal
import os
from typing import TypedDict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from settlement_api.core.settings import settings
from settlement_api.models import Product, Reward, RewardType, Store, User, UserRoleEnum


class SeedUser(TypedDict):
    email: str
    display_name: str
    role: str


class SeedProduct(TypedDict):
    name: str
    price: Decimal
    points_cost: Decimal | None


DEV_USERS: list[SeedUser] = [
    {
        "email": os.getenv("DEV_VENDOR_EMAIL", "vendor@settlement.dev").lower(),
        "display_name": "Vendor QA",
        "role": UserRoleEnum.VENDOR.value,
    },
    {
        "email": os.getenv("DEV_CUSTOMER_EMAIL", "customer@settlement.dev").lower(),
        "display_name": "Customer QA",
        "role": UserRoleEnum.CUSTOMER.value,
    },
    {
        "email": os.getenv("DEV_ADMIN_EMAIL", "admin@settlement.dev").lower(),
        "display_name": "Admin QA",
        "role": UserRoleEnum.ADMIN.value,
    },
]

DEV_PRODUCTS: list[SeedProduct] = [
    {"name": "Latte", "price": Decimal("4.50"), "points_cost": Decimal("40")},
    {"name": "Croissant", "price": Decimal("3.00"), "points_cost": Decimal("25")},
    {"name": "Sandwich", "price": Decimal("9.00"), "points_cost": None},
]


async def _upsert_user(session: AsyncSession, seed: SeedUser, store_id: int | None) -> User:
    with session.no_autoflush:
        existing = await session.execute(select(User).where(User.email == seed["email"]))
    record = existing.scalar_one_or_none()
    if record:
        record.display_name = seed["display_name"]
        record.role = seed["role"]
    else:
        record = User(email=seed["email"], display_name=seed["display_name"], role=seed["role"])
        session.add(record)
    if seed["role"] == UserRoleEnum.VENDOR.value:
        record.store_id = store_id
    await session.flush()
    return record


async def seed_store(session: AsyncSession) -> None:
    store_name = os.getenv("DEV_STORE_NAME", "Corner Coffee")
    store = (await session.execute(select(Store).where(Store.name == store_name))).scalar_one_or_none()
    if store is None:
        store = Store(name=store_name, is_active=True)
        session.add(store)
        await session.flush()

    for seed in DEV_USERS:
        user = await _upsert_user(session, seed, store.id)
        if seed["role"] == UserRoleEnum.VENDOR.value:
            store.owner_id = user.id

    products: dict[str, Product] = {}
    for seed in DEV_PRODUCTS:
        product = (
            await session.execute(select(Product).where(Product.store_id == store.id, Product.name == seed["name"]))
        ).scalar_one_or_none()
        if product is None:
            product = Product(store_id=store.id, name=seed["name"])
            session.add(product)
        product.price = seed["price"]
        product.points_cost = seed["points_cost"]
        product.is_available = True
        products[seed["name"]] = product
    await session.flush()

    existing_rewards = (await session.execute(select(Reward.name).where(Reward.store_id == store.id))).scalars().all()
    rewards = [
        Reward(
            store_id=store.id,
            name="10% off",
            reward_type=RewardType.DISCOUNT,
            points_cost=Decimal("0"),
            discount_value=Decimal("10"),
        ),
        Reward(
            store_id=store.id,
            name="Free croissant",
            reward_type=RewardType.FREE_ITEM,
            points_cost=Decimal("30"),
            free_item_product_id=products["Croissant"].id,
        ),
        Reward(
            store_id=store.id,
            name="Buy 2 lattes get 1",
            reward_type=RewardType.BUY_X_GET_Y,
            points_cost=Decimal("20"),
            buy_x_product_id=products["Latte"].id,
            buy_x_quantity=2,
            get_y_product_id=products["Latte"].id,
            get_y_quantity=1,
        ),
    ]
    session.add_all([reward for reward in rewards if reward.name not in existing_rewards])
    await session.commit()


async def main() -> None:
    engine = create_async_engine(settings.database_url, future=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        async with session_factory() as session:
            await seed_store(session)
        print("Development store ready")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
