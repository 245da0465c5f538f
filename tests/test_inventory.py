"""
库存扣减/回补测试
"""
import asyncio

import pytest

from sh_core.services import InventoryService, ItemRef
from sh_core.utils.errors import InsufficientStockError, NotFoundError, ValidationError


async def _stock(db_manager, ref):
    async with db_manager.get_session() as session:
        return await InventoryService.get_stock(session, ref)


async def test_reserve_product_stock(db_manager, seed):
    ref = ItemRef(1, name="Oolong Tea")
    async with db_manager.get_transaction() as session:
        await InventoryService.reserve(session, ref, 3)

    assert await _stock(db_manager, ref) == 7


async def test_reserve_variant_uses_variant_stock(db_manager, seed):
    ref = ItemRef(2, 21, "T-Shirt")
    async with db_manager.get_transaction() as session:
        await InventoryService.reserve(session, ref, 2)

    assert await _stock(db_manager, ref) == 3
    assert await _stock(db_manager, ItemRef(2)) == 0


async def test_reserve_insufficient_stock(db_manager, seed):
    ref = ItemRef(2, 22, "T-Shirt")
    with pytest.raises(InsufficientStockError) as exc_info:
        async with db_manager.get_transaction() as session:
            await InventoryService.reserve(session, ref, 2)

    assert exc_info.value.code == "INSUFFICIENT_STOCK"
    assert await _stock(db_manager, ref) == 1


async def test_reserve_unknown_variant(db_manager, seed):
    with pytest.raises(NotFoundError) as exc_info:
        async with db_manager.get_transaction() as session:
            await InventoryService.reserve(session, ItemRef(2, 999), 1)

    assert exc_info.value.code == "VARIANT_NOT_FOUND"


async def test_reserve_rejects_non_positive_quantity(db_manager, seed):
    with pytest.raises(ValidationError):
        async with db_manager.get_transaction() as session:
            await InventoryService.reserve(session, ItemRef(1), 0)


async def test_release_restores_stock(db_manager, seed):
    ref = ItemRef(1)
    async with db_manager.get_transaction() as session:
        await InventoryService.reserve(session, ref, 4)
        await InventoryService.release(session, ref, 4)

    assert await _stock(db_manager, ref) == 10


async def test_concurrent_reserve_never_oversells(db_manager, seed):
    ref = ItemRef(2, 22, "T-Shirt")

    async def reserve_one():
        async with db_manager.get_transaction() as session:
            await InventoryService.reserve(session, ref, 1)

    results = await asyncio.gather(*(reserve_one() for _ in range(3)), return_exceptions=True)

    failures = [r for r in results if isinstance(r, InsufficientStockError)]
    assert results.count(None) == 1
    assert len(failures) == 2
    assert await _stock(db_manager, ref) == 0
