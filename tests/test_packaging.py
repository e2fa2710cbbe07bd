"""Tests for weight-based package selection and the international carrier rule."""

from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from shipnote.shipstation.packaging import (
    BOX_LARGE,
    BOX_MEDIUM,
    BOX_SMALL,
    INTERNATIONAL_CARRIER_CODE,
    INTERNATIONAL_SERVICE_CODE,
    build_order_update,
    is_international,
    select_package,
    weight_in_kg,
)

_ORDER = [BOX_SMALL, BOX_MEDIUM, BOX_LARGE]


class TestWeightConversion:

    @pytest.mark.parametrize("units,value,expected", [
        ("ounces", 16, 0.453592),
        ("oz", 1, 0.0283495),
        ("pounds", 2, 0.907184),
        ("lbs", 1, 0.453592),
        ("lb", 1, 0.453592),
        ("grams", 1500, 1.5),
        ("g", 500, 0.5),
        ("kilograms", 2, 2.0),
        ("kg", 2, 2.0),
        ("Pounds", 1, 0.453592),
        ("stone", 3, 3.0),
    ])
    def test_units(self, units, value, expected):
        assert weight_in_kg({"value": value, "units": units}) == pytest.approx(expected)

    def test_missing_weight_is_zero(self):
        assert weight_in_kg(None) == 0.0
        assert weight_in_kg({}) == 0.0
        assert weight_in_kg({"value": None, "units": "ounces"}) == 0.0


class TestSelectPackage:

    @pytest.mark.parametrize("kg,package", [
        (0.0, BOX_SMALL),
        (1.49, BOX_SMALL),
        (1.5, BOX_MEDIUM),
        (2.49, BOX_MEDIUM),
        (2.5, BOX_LARGE),
        (40.0, BOX_LARGE),
    ])
    def test_thresholds(self, kg, package):
        assert select_package(kg) is package

    @given(a=st.floats(0, 100), b=st.floats(0, 100))
    def test_monotonic_in_weight(self, a, b):
        light, heavy = sorted((a, b))
        assert _ORDER.index(select_package(light)) <= _ORDER.index(select_package(heavy))


class TestInternational:

    @pytest.mark.parametrize("country", ["US", "us", "USA", "CA", "CAN", "Canada"])
    def test_domestic(self, country):
        assert is_international({"country": country}) is False

    @pytest.mark.parametrize("country", ["GB", "AU", "MX", "DE"])
    def test_international(self, country):
        assert is_international({"country": country}) is True

    def test_unknown_destination_is_domestic(self):
        assert is_international(None) is False
        assert is_international({}) is False
        assert is_international({"country": ""}) is False


class TestBuildOrderUpdate:

    def test_keeps_full_order_and_sets_gift_message(self):
        order = {
            "orderId": 1,
            "orderKey": "abc",
            "items": [{"sku": "X"}],
            "weight": {"value": 3, "units": "pounds"},
            "shipTo": {"country": "US"},
            "carrierCode": "usps",
        }
        update = build_order_update(order, "NOTE")

        assert update["giftMessage"] == "NOTE"
        assert update["items"] == [{"sku": "X"}]
        assert update["orderKey"] == "abc"
        assert update["dimensions"] == BOX_MEDIUM.dimensions()
        assert update["carrierCode"] == "usps"
        assert "giftMessage" not in order

    def test_international_override(self):
        update = build_order_update({"orderId": 1, "shipTo": {"country": "FR"}}, "N")
        assert update["carrierCode"] == INTERNATIONAL_CARRIER_CODE
        assert update["serviceCode"] == INTERNATIONAL_SERVICE_CODE
        assert update["dimensions"] == BOX_SMALL.dimensions()

    def test_dimensions_in_centimeters(self):
        dims = BOX_LARGE.dimensions()
        assert dims == {"length": 29.21, "width": 24.13, "height": 15.24, "units": "centimeters"}
