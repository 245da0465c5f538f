"""
Pytest 配置和 fixtures

每个测试使用独立的 SQLite 文件库，建表并写入基础会员/商品数据。
"""
from decimal import Decimal
from typing import Any, Dict

import pytest
import pytest_asyncio

from sh_core.config import get_settings
from sh_core.database import get_db_manager, reset_db_manager
from sh_core.models import Member, Product, ProductVariant, SiteSetting

MEMBER_ID = 1
OTHER_MEMBER_ID = 2
ADMIN_ID = 99


@pytest_asyncio.fixture
async def db_manager(tmp_path, monkeypatch):
    """数据库管理器 fixture（独立的 SQLite 文件）"""
    monkeypatch.setenv("SH__DB_URL", f"sqlite+aiosqlite:///{tmp_path / 'shophub.db'}")
    monkeypatch.setenv("SH__API_DEBUG", "false")
    get_settings.cache_clear()
    reset_db_manager()

    manager = get_db_manager()
    await manager.create_tables()

    yield manager

    await manager.drop_tables()
    await manager.close()
    reset_db_manager()
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def seed(db_manager) -> Dict[str, Any]:
    """基础数据：两个会员、一个无规格商品、一个带规格商品"""
    async with db_manager.get_transaction() as session:
        session.add_all([
            Member(id=MEMBER_ID, email="amy@example.com", name="Amy", phone="0912000111", points=0),
            Member(id=OTHER_MEMBER_ID, email="ben@example.com", name="Ben", phone="0912000222", points=0),
            Member(id=ADMIN_ID, email="admin@example.com", name="Admin", points=0),
        ])
        tea = Product(id=1, name="Oolong Tea", price=Decimal("125"), stock=10)
        shirt = Product(id=2, name="T-Shirt", price=Decimal("300"), stock=0)
        shirt.variants.append(ProductVariant(id=21, name="M", price=Decimal("300"), stock=5))
        shirt.variants.append(ProductVariant(id=22, name="L", price=Decimal("300"), stock=1))
        session.add_all([tea, shirt])

    return {"member_id": MEMBER_ID, "other_member_id": OTHER_MEMBER_ID, "admin_id": ADMIN_ID}


@pytest_asyncio.fixture
async def home_fee_setting(db_manager):
    """宅配运费站点设置"""
    async with db_manager.get_transaction() as session:
        session.add(SiteSetting(setting_key="home_delivery_fee", setting_value="150"))


def make_order_payload(
    items=None,
    shipping_method: str = "cvs",
    payment_method: str = "credit",
    shipping_sub_type: str = "UNIMART",
    **overrides
) -> Dict[str, Any]:
    """下单数据（服务层 snake_case 格式）"""
    items = items if items is not None else [
        {"product_id": 1, "variant_id": None, "quantity": 2, "price": Decimal("125")}
    ]
    subtotal = sum(Decimal(str(i["price"])) * i["quantity"] for i in items)
    payload = {
        "shipping_info": {
            "name": "Amy Chen",
            "phone": "0912000111",
            "email": "amy@example.com",
            "address": "台北市信義區松仁路 100 號",
            "store_id": "131386",
            "store_name": "松仁門市",
            "store_address": "台北市信義區松仁路 90 號",
        },
        "shipping_method": shipping_method,
        "shipping_sub_type": shipping_sub_type if shipping_method == "cvs" else None,
        "payment_method": payment_method,
        "subtotal": subtotal,
        "items": items,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def order_payload():
    """工厂 fixture"""
    return make_order_payload
