# Overview: Pytest coverage for the error taxonomy, ServiceResult and number coercion.

import pytest

from atlaspos.errors import (
    ConsistencyError, ErrorKind, NegativeStockError, NotFoundError, PosError,
    ServiceResult, ValidationError, as_result,
)
from atlaspos.money import round_money, round_qty, to_decimal
from atlaspos.services import order_service


class TestErrorKinds:
    def test_kinds(self):
        assert ValidationError("x").kind is ErrorKind.VALIDATION
        assert NotFoundError("x").kind is ErrorKind.NOT_FOUND
        assert ConsistencyError("x").kind is ErrorKind.CONSISTENCY

    def test_negative_stock_is_both(self):
        err = NegativeStockError("Stock cannot go below zero.", field="qty")
        assert err.kind is ErrorKind.CONSISTENCY
        assert isinstance(err, ValidationError)
        assert isinstance(err, ConsistencyError)

    def test_to_dict(self):
        err = ValidationError("Bad qty", field="qty", details={"min": 1})
        assert err.to_dict() == {
            "error": "validation",
            "message": "Bad qty",
            "field": "qty",
            "details": {"min": 1},
        }
        assert NotFoundError("Order not found").to_dict() == {
            "error": "not_found",
            "message": "Order not found",
        }


class TestServiceResult:
    def test_success(self):
        result = as_result(lambda a, b: a + b, 2, b=3)
        assert result.ok
        assert result.unwrap() == 5

    def test_domain_error_is_captured(self):
        def boom():
            raise ConsistencyError("Register already has an open shift.")

        result = as_result(boom)

        assert not result.ok
        assert isinstance(result.error, ConsistencyError)
        with pytest.raises(ConsistencyError):
            result.unwrap()

    def test_other_errors_propagate(self):
        def boom():
            raise RuntimeError("disk on fire")

        with pytest.raises(RuntimeError):
            as_result(boom)

    def test_with_service_call(self, db_session, ctx_a):
        result = as_result(order_service.find, ctx_a, 424242)
        assert isinstance(result, ServiceResult)
        assert isinstance(result.error, PosError)
        assert result.error.kind is ErrorKind.NOT_FOUND


class TestNumberCoercion:
    @pytest.mark.parametrize("raw", ["abc", "", "NaN", "sNaN", "Infinity", "-inf", float("nan"), [1]])
    def test_non_numbers_are_validation_errors(self, raw):
        with pytest.raises(ValidationError) as exc_info:
            to_decimal(raw, field="price")
        assert exc_info.value.field == "price"

    def test_rounding_helpers_carry_the_field(self):
        with pytest.raises(ValidationError) as exc_info:
            round_qty("lots", field="qty")
        assert exc_info.value.field == "qty"
        with pytest.raises(ValidationError):
            round_money("1e999999")

    def test_valid_inputs(self):
        assert to_decimal(None) == 0
        assert to_decimal(0.1) == to_decimal("0.1")
        assert round_money(" 2.345 ") == to_decimal("2.35")
