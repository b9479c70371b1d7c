# Overview: Pytest coverage for payload validation and integer coercion.

import pytest

from stockwatch.models import Inventory, Product
from stockwatch.validation import (
    INT_MAX,
    INT_MIN,
    ModelValidationPolicy,
    ValidationError,
    coerce_int,
    validate_payload,
)


class TestCoerceInt:
    def test_accepts_ints_and_plain_strings(self):
        assert coerce_int(5, "n") == 5
        assert coerce_int(" -3 ", "n") == -3
        assert coerce_int(INT_MAX, "n") == INT_MAX
        assert coerce_int(str(INT_MIN), "n") == INT_MIN

    @pytest.mark.parametrize("value", [True, 1.5, "1.0", "1e3", "", "abc", None])
    def test_rejects_non_integers(self, value):
        with pytest.raises(ValidationError):
            coerce_int(value, "n")

    @pytest.mark.parametrize("value", [INT_MAX + 1, INT_MIN - 1, 10**20, str(10**20)])
    def test_rejects_values_outside_64_bit(self, value):
        with pytest.raises(ValidationError, match="out of range"):
            coerce_int(value, "n")


class TestValidatePayload:
    POLICY = ModelValidationPolicy(
        writable_fields={"name", "description", "min_threshold"},
        required_on_create={"name"},
    )

    def test_coerces_by_column_type(self):
        patch = validate_payload(
            model=Product,
            payload={"name": "  Widget  ", "min_threshold": "7"},
            policy=self.POLICY,
            partial=True,
        )

        assert patch == {"name": "Widget", "min_threshold": 7}

    def test_rejects_fields_outside_policy(self):
        with pytest.raises(ValidationError, match="Field not allowed"):
            validate_payload(model=Product, payload={"created_at": "2024-01-01T00:00:00Z"},
                             policy=self.POLICY, partial=True)

    def test_missing_required_on_create(self):
        with pytest.raises(ValidationError, match="Missing required fields: name"):
            validate_payload(model=Product, payload={}, policy=self.POLICY, partial=False)

    def test_non_nullable_integer_cannot_be_null(self):
        policy = ModelValidationPolicy(writable_fields={"current_stock"})

        with pytest.raises(ValidationError, match="cannot be null"):
            validate_payload(model=Inventory, payload={"current_stock": None}, policy=policy, partial=True)
