"""
订单服务测试：建单、取消、后台改状态
"""
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from sh_core.models import Order, PointTransaction
from sh_core.services import InventoryService, ItemRef, OrdersService, PointService, site_today
from sh_core.utils.errors import (
    ConflictError, InsufficientStockError, InvalidStateError, NotFoundError, ValidationError
)


@pytest.fixture
def service(db_manager):
    return OrdersService()


async def _stock(db_manager, ref):
    async with db_manager.get_session() as session:
        return await InventoryService.get_stock(session, ref)


async def _balance(db_manager, member_id=1):
    async with db_manager.get_session() as session:
        return await PointService.balance(session, member_id)


class TestCreateOrder:
    """建立订单"""

    async def test_cvs_order_with_checkout_params(self, db_manager, seed, service, order_payload):
        result = await service.create_order(1, order_payload())

        today = site_today().strftime("%Y%m%d")
        assert result["order_no"] == f"ORD{today}001"
        assert result["subtotal"] == "250.00"
        assert result["shipping_fee"] == "60.00"
        assert result["total"] == "310.00"

        params = result["gateway_checkout_params"]
        assert params["MerchantTradeNo"] == result["order_no"]
        assert params["TotalAmount"] == 310
        assert params["CheckMacValue"]
        assert params["actionUrl"].startswith("https://payment-stage.ecpay.com.tw")

        assert await _stock(db_manager, ItemRef(1)) == 8

    async def test_order_numbers_increase(self, db_manager, seed, service, order_payload):
        first = await service.create_order(1, order_payload())
        second = await service.create_order(1, order_payload())
        assert second["order_no"][-3:] == "002"
        assert first["order_no"][:-3] == second["order_no"][:-3]

    async def test_cod_order_has_no_checkout(self, db_manager, seed, service, order_payload):
        result = await service.create_order(1, order_payload(payment_method="cod"))
        assert result["gateway_checkout_params"] is None

    async def test_home_delivery_uses_site_setting(self, db_manager, seed, home_fee_setting, service, order_payload):
        result = await service.create_order(1, order_payload(shipping_method="home"))
        assert result["shipping_fee"] == "150.00"
        assert result["total"] == "400.00"

    async def test_free_shipping_over_threshold(self, db_manager, seed, service, order_payload):
        items = [{"product_id": 1, "variant_id": None, "quantity": 4, "price": Decimal("125")}]
        result = await service.create_order(1, order_payload(items=items))
        assert result["shipping_fee"] == "0.00"
        assert result["total"] == "500.00"

    async def test_variant_snapshot(self, db_manager, seed, service, order_payload):
        items = [{
            "product_id": 2, "variant_id": 21, "quantity": 1, "price": Decimal("300"),
            "variant_name": "M", "image": "https://cdn.example.com/shirt.jpg",
        }]
        result = await service.create_order(1, order_payload(items=items))

        order = await service.get_order(1, result["order_no"])
        item = order["items"][0]
        assert item["product_name"] == "T-Shirt"
        assert item["variant_name"] == "M"
        assert item["subtotal"] == "300.00"
        assert await _stock(db_manager, ItemRef(2, 21)) == 4

    async def test_oversell_rolls_back_everything(self, db_manager, seed, service, order_payload):
        items = [
            {"product_id": 1, "variant_id": None, "quantity": 2, "price": Decimal("125")},
            {"product_id": 2, "variant_id": 22, "quantity": 2, "price": Decimal("300")},
        ]
        with pytest.raises(InsufficientStockError):
            await service.create_order(1, order_payload(items=items))

        assert await _stock(db_manager, ItemRef(1)) == 10
        async with db_manager.get_session() as session:
            assert (await session.execute(select(func.count()).select_from(Order))).scalar_one() == 0

        # 流水号随事务回滚
        result = await service.create_order(1, order_payload())
        assert result["order_no"].endswith("001")

    async def test_subtotal_mismatch(self, db_manager, seed, service, order_payload):
        with pytest.raises(ValidationError) as exc_info:
            await service.create_order(1, order_payload(subtotal=Decimal("1")))
        assert exc_info.value.code == "SUBTOTAL_MISMATCH"

    async def test_empty_items(self, db_manager, seed, service, order_payload):
        with pytest.raises(ValidationError) as exc_info:
            await service.create_order(1, order_payload(items=[]))
        assert exc_info.value.code == "EMPTY_ORDER_ITEMS"

    async def test_cvs_requires_known_sub_type(self, db_manager, seed, service, order_payload):
        with pytest.raises(ValidationError) as exc_info:
            await service.create_order(1, order_payload(shipping_sub_type="SEVEN"))
        assert exc_info.value.code == "INVALID_LOGISTICS_SUB_TYPE"

    async def test_blank_receiver_name(self, db_manager, seed, service, order_payload):
        payload = order_payload()
        payload["shipping_info"]["name"] = "  "
        with pytest.raises(ValidationError) as exc_info:
            await service.create_order(1, payload)
        assert exc_info.value.code == "MISSING_REQUIRED_FIELDS"

    async def test_unknown_member(self, db_manager, seed, service, order_payload):
        with pytest.raises(NotFoundError):
            await service.create_order(404, order_payload())
        assert await _stock(db_manager, ItemRef(1)) == 10


class TestMemberCancel:
    """会员取消"""

    async def test_cancel_restores_stock(self, db_manager, seed, service, order_payload):
        result = await service.create_order(1, order_payload())
        assert await _stock(db_manager, ItemRef(1)) == 8

        order = await service.cancel_by_member(1, result["order_no"])

        assert order["status"] == "cancelled"
        assert await _stock(db_manager, ItemRef(1)) == 10

    async def test_cancel_twice_conflicts(self, db_manager, seed, service, order_payload):
        result = await service.create_order(1, order_payload())
        await service.cancel_by_member(1, result["order_no"])

        with pytest.raises(ConflictError) as exc_info:
            await service.cancel_by_member(1, result["order_no"])
        assert exc_info.value.code == "ORDER_NOT_CANCELLABLE"
        assert await _stock(db_manager, ItemRef(1)) == 10

    async def test_cannot_cancel_shipped_order(self, db_manager, seed, service, order_payload):
        result = await service.create_order(1, order_payload())
        await service.admin_set_status(result["order_no"], "shipped")

        with pytest.raises(ConflictError):
            await service.cancel_by_member(1, result["order_no"])
        assert await _stock(db_manager, ItemRef(1)) == 8

    async def test_cannot_cancel_other_members_order(self, db_manager, seed, service, order_payload):
        result = await service.create_order(1, order_payload())
        with pytest.raises(NotFoundError):
            await service.cancel_by_member(2, result["order_no"])


class TestAdminStatus:
    """后台改状态"""

    async def test_complete_issues_points_once(self, db_manager, seed, service, order_payload):
        result = await service.create_order(1, order_payload())
        order_no = result["order_no"]

        order = await service.admin_set_status(order_no, "completed")
        assert order["status"] == "completed"
        assert await _balance(db_manager) == 2

        await service.admin_set_status(order_no, "completed")
        await service.admin_set_status(order_no, "arrived")
        await service.admin_set_status(order_no, "completed")
        assert await _balance(db_manager) == 2

        async with db_manager.get_session() as session:
            earned = await PointService.total_earned_for(session, order_no)
        assert earned == 2

    async def test_cancel_after_completion_reverses_clamped(self, db_manager, seed, service, order_payload):
        items = [{"product_id": 1, "variant_id": None, "quantity": 4, "price": Decimal("125")}]
        result = await service.create_order(1, order_payload(items=items))
        order_no = result["order_no"]
        await service.admin_set_status(order_no, "completed")
        assert await _balance(db_manager) == 5

        # 会员先花掉 3 点
        async with db_manager.get_transaction() as session:
            await PointService.deduct(session, 1, None, 3, description="兑换")

        await service.admin_set_status(order_no, "cancelled")

        assert await _balance(db_manager) == 0
        async with db_manager.get_session() as session:
            rows = (await session.execute(
                select(PointTransaction.points)
                .where(PointTransaction.order_no == order_no)
                .order_by(PointTransaction.id)
            )).scalars().all()
        assert rows == [5, -2]
        # 已完成订单取消不回补库存
        assert await _stock(db_manager, ItemRef(1)) == 6

    async def test_cancel_paid_order_releases_stock(self, db_manager, seed, service, order_payload):
        result = await service.create_order(1, order_payload())
        order = await service.admin_set_status(result["order_no"], "paid")
        assert order["payment_status"] == "paid"

        await service.admin_set_status(result["order_no"], "cancelled")
        assert await _stock(db_manager, ItemRef(1)) == 10

    async def test_reopen_cancelled_order_reserves_stock_again(self, db_manager, seed, service, order_payload):
        result = await service.create_order(1, order_payload())
        order_no = result["order_no"]

        await service.admin_set_status(order_no, "cancelled")
        assert await _stock(db_manager, ItemRef(1)) == 10

        order = await service.admin_set_status(order_no, "pending")
        assert order["stock_released"] is False
        assert await _stock(db_manager, ItemRef(1)) == 8

        await service.cancel_by_member(1, order_no)
        assert await _stock(db_manager, ItemRef(1)) == 10

    async def test_reopen_fails_when_stock_is_gone(self, db_manager, seed, service, order_payload):
        items = [{"product_id": 2, "variant_id": 22, "quantity": 1, "price": Decimal("300")}]
        first = await service.create_order(1, order_payload(items=items))
        await service.admin_set_status(first["order_no"], "cancelled")
        await service.create_order(2, order_payload(items=items))

        with pytest.raises(InsufficientStockError):
            await service.admin_set_status(first["order_no"], "paid")

        order = await service.admin_get_order(first["order_no"])
        assert order["status"] == "cancelled"
        assert order["stock_released"] is True
        assert await _stock(db_manager, ItemRef(2, 22)) == 0

    async def test_cancel_from_shipped_then_reopen_keeps_stock(self, db_manager, seed, service, order_payload):
        result = await service.create_order(1, order_payload())
        order_no = result["order_no"]
        await service.admin_set_status(order_no, "shipped")
        await service.admin_set_status(order_no, "cancelled")
        await service.admin_set_status(order_no, "pending")

        assert await _stock(db_manager, ItemRef(1)) == 8

    async def test_unknown_status(self, db_manager, seed, service, order_payload):
        result = await service.create_order(1, order_payload())
        with pytest.raises(InvalidStateError):
            await service.admin_set_status(result["order_no"], "teleported")

    async def test_unknown_order(self, db_manager, seed, service):
        with pytest.raises(NotFoundError):
            await service.admin_set_status("ORD20260101999", "paid")


class TestAdminQueries:
    """后台查询"""

    async def test_list_search_and_paginate(self, db_manager, seed, service, order_payload):
        for _ in range(3):
            await service.create_order(1, order_payload())
        other = order_payload()
        other["shipping_info"]["name"] = "Ben Wang"
        await service.create_order(2, other)

        page = await service.admin_list_orders(page=1, limit=2)
        assert page["total"] == 4
        assert len(page["items"]) == 2

        found = await service.admin_list_orders(search="Ben")
        assert found["total"] == 1
        assert found["items"][0]["receiver_name"] == "Ben Wang"

        pending = await service.admin_list_orders(status="pending")
        assert pending["total"] == 4

    async def test_dashboard_stats(self, db_manager, seed, service, order_payload):
        first = await service.create_order(1, order_payload())
        await service.create_order(1, order_payload())
        await service.cancel_by_member(1, first["order_no"])

        stats = await service.dashboard_stats()
        assert stats["total_products"] == 2
        assert stats["total_members"] == 3
        assert stats["total_orders"] == 2
        assert stats["pending_orders"] == 1
        assert Decimal(stats["total_revenue"]) == Decimal("310")

    async def test_member_list_only_own_orders(self, db_manager, seed, service, order_payload):
        await service.create_order(1, order_payload())
        await service.create_order(2, order_payload())

        mine = await service.list_member_orders(1)
        assert len(mine) == 1
        assert mine[0]["member_id"] == 1

    async def test_delete_order(self, db_manager, seed, service, order_payload):
        result = await service.create_order(1, order_payload())
        await service.delete_order(result["order_no"])

        with pytest.raises(NotFoundError):
            await service.admin_get_order(result["order_no"])
