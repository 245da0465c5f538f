"""
订单状态机与运费规则测试
"""
from decimal import Decimal

import pytest

from sh_core.config import Settings
from sh_core.services.order_state import (
    OrderStatus, calculate_shipping_fee, can_apply_logistics, parse_status,
    shippable_states, status_for_logistics_code,
)
from sh_core.utils.errors import InvalidStateError, ValidationError


@pytest.fixture
def settings():
    return Settings(db_url="sqlite+aiosqlite://")


def test_parse_status_accepts_known_values():
    assert parse_status(" Paid ") == OrderStatus.PAID
    assert parse_status(OrderStatus.SHIPPED) == OrderStatus.SHIPPED


def test_parse_status_rejects_unknown():
    with pytest.raises(InvalidStateError):
        parse_status("lost")


@pytest.mark.parametrize("code,expected", [
    ("3001", OrderStatus.SHIPPED),
    ("2030", OrderStatus.ARRIVED),
    ("2067", OrderStatus.COMPLETED),
    ("2063", OrderStatus.RETURNED),
    ("300", None),
    (None, None),
])
def test_logistics_code_mapping(code, expected):
    assert status_for_logistics_code(code) == expected


def test_logistics_only_moves_forward():
    assert can_apply_logistics(OrderStatus.PAID, OrderStatus.SHIPPED, "credit")
    assert can_apply_logistics(OrderStatus.SHIPPED, OrderStatus.COMPLETED, "credit")
    assert not can_apply_logistics(OrderStatus.COMPLETED, OrderStatus.SHIPPED, "credit")
    assert not can_apply_logistics(OrderStatus.CANCELLED, OrderStatus.ARRIVED, "cod")


@pytest.mark.parametrize("target", [OrderStatus.SHIPPED, OrderStatus.ARRIVED, OrderStatus.COMPLETED])
def test_logistics_moves_pending_only_for_cod(target):
    assert can_apply_logistics(OrderStatus.PENDING, target, "cod")
    assert not can_apply_logistics(OrderStatus.PENDING, target, "credit")
    assert not can_apply_logistics(OrderStatus.PENDING, target, "atm")


def test_cod_orders_ship_before_payment():
    assert OrderStatus.PENDING in shippable_states("cod")
    assert shippable_states("credit") == frozenset({OrderStatus.PAID})


@pytest.mark.parametrize("method,subtotal,home_fee,expected", [
    ("cvs", 499, None, Decimal("60")),
    ("cvs", 500, None, Decimal("0")),
    ("home", 999, None, Decimal("100")),
    ("home", 999, Decimal("150"), Decimal("150")),
    ("home", 1000, Decimal("150"), Decimal("0")),
    ("pickup", 10, None, Decimal("0")),
])
def test_shipping_fee(settings, method, subtotal, home_fee, expected):
    assert calculate_shipping_fee(method, subtotal, home_fee, settings) == expected


def test_shipping_fee_unknown_method(settings):
    with pytest.raises(ValidationError):
        calculate_shipping_fee("drone", 100, settings=settings)
