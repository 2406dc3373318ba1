"""Identity, store and product lookups consulted during settlement."""

from __future__ import annotations

from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from settlement_api.models.store import Product, Store
from settlement_api.models.user import User, UserRoleEnum

from .exceptions import (
    CustomerNotFound,
    NotACustomer,
    NotAVendor,
    ProductNotFound,
    StoreInactive,
    StoreNotFound,
    VendorNotFound,
    VendorStoreMismatch,
)


class SettlementDirectory:
    """Resolve users, stores and products and enforce the roles settlement relies on."""

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def get_user(self, user_id: int) -> User | None:
        return await self._db.get(User, user_id)

    async def get_store(self, store_id: int) -> Store | None:
        return await self._db.get(Store, store_id)

    async def require_customer(self, customer_id: int) -> User:
        user = await self.get_user(customer_id)
        if user is None:
            raise CustomerNotFound()
        if user.role != UserRoleEnum.CUSTOMER.value:
            raise NotACustomer()
        return user

    async def require_active_store(self, store_id: int) -> Store:
        store = await self.get_store(store_id)
        if store is None:
            raise StoreNotFound()
        if not store.is_active:
            raise StoreInactive()
        return store

    async def require_vendor_for_store(self, vendor_id: int, store_id: int) -> tuple[User, Store]:
        """Return the vendor and the active store they are affiliated with."""

        vendor = await self.get_user(vendor_id)
        if vendor is None:
            raise VendorNotFound()
        if vendor.role != UserRoleEnum.VENDOR.value:
            raise NotAVendor()

        store = await self.get_store(store_id)
        if store is None:
            raise StoreNotFound()
        # Affiliation is either the vendor's assigned store or ownership.
        if vendor.store_id != store.id and store.owner_id != vendor.id:
            raise VendorStoreMismatch()
        if not store.is_active:
            raise StoreInactive()
        return vendor, store

    async def require_products(self, store_id: int, product_ids: Iterable[int]) -> dict[int, Product]:
        """Return the store's available products keyed by id, or fail on the first missing one."""

        wanted = set(product_ids)
        if not wanted:
            return {}
        result = await self._db.execute(
            select(Product).where(
                Product.id.in_(wanted),
                Product.store_id == store_id,
                Product.is_available.is_(True),
            )
        )
        products = {product.id: product for product in result.scalars()}
        missing = sorted(wanted - products.keys())
        if missing:
            raise ProductNotFound(f"Product {missing[0]} is not sold at this store")
        return products


__all__ = ["SettlementDirectory"]
