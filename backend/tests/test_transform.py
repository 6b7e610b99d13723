"""Unit tests for transform_model_output."""

from __future__ import annotations

from datetime import date

import pytest

from finparse.core.exceptions import MalformedFieldError, MalformedOutputError, TransformError
from finparse.pipeline.transform import transform_model_output


def _item(**overrides):
    item = {
        "date": "2024-03-01",
        "description": "COFFEE #1",
        "amount": -3.2,
        "currency": "GBP",
        "category": "Food & Dining",
        "subcategory": "Coffee Shops",
    }
    item.update(overrides)
    return item


class TestTransformModelOutput:
    def test_converts_sample_output(self, sample_model_output):
        transactions = transform_model_output(sample_model_output)

        assert len(transactions) == 3
        first = transactions[0]
        assert first.date == date(2024, 1, 15)
        assert first.description == "TESCO STORES 2041"
        assert first.amount == -42.17
        assert first.balance_after == 957.83
        assert first.account_number == "20-00-00 12345678"
        assert first.direction == "OUT"
        assert transactions[1].direction == "IN"
        assert transactions[1].subcategory == "salary"
        assert transactions[2].account_name is None
        assert transactions[2].balance_after is None

    def test_empty_transaction_list(self):
        assert transform_model_output({"transactions": []}) == []

    def test_integer_amount_becomes_float(self):
        [tx] = transform_model_output({"transactions": [_item(amount=10)]})
        assert tx.amount == 10.0
        assert isinstance(tx.amount, float)

    def test_null_subcategory_means_none(self):
        [tx] = transform_model_output({"transactions": [_item(subcategory=None)]})
        assert tx.subcategory == ""

    def test_empty_account_fields_collapse_to_none(self):
        [tx] = transform_model_output({"transactions": [_item(account_name="  ", account_number="")]})
        assert tx.account_name is None
        assert tx.account_number is None


class TestMalformedOutput:
    @pytest.mark.parametrize("raw", [None, [], "text", {"items": []}, {"transactions": {"a": 1}}])
    def test_bad_top_level_shape(self, raw):
        with pytest.raises(MalformedOutputError):
            transform_model_output(raw)

    def test_non_object_element_names_index(self):
        with pytest.raises(MalformedOutputError) as exc_info:
            transform_model_output({"transactions": [_item(), "oops"]})
        assert exc_info.value.details["index"] == 1

    @pytest.mark.parametrize("field", ["date", "description", "currency", "category", "amount", "subcategory"])
    def test_missing_required_field(self, field):
        item = _item()
        del item[field]
        with pytest.raises(MalformedFieldError) as exc_info:
            transform_model_output({"transactions": [item]})
        assert exc_info.value.field == field
        assert exc_info.value.index == 0

    @pytest.mark.parametrize("value", ["01/03/2024", "2024-13-01", 20240301])
    def test_invalid_date(self, value):
        with pytest.raises(MalformedFieldError) as exc_info:
            transform_model_output({"transactions": [_item(date=value)]})
        assert exc_info.value.field == "date"

    @pytest.mark.parametrize("value", ["12.50", True, None])
    def test_amount_must_be_number(self, value):
        with pytest.raises(MalformedFieldError) as exc_info:
            transform_model_output({"transactions": [_item(amount=value)]})
        assert exc_info.value.field == "amount"

    def test_blank_description_rejected(self):
        with pytest.raises(MalformedFieldError):
            transform_model_output({"transactions": [_item(description="   ")]})

    def test_balance_after_must_be_number_or_null(self):
        with pytest.raises(MalformedFieldError) as exc_info:
            transform_model_output({"transactions": [_item(balance_after="1,000")]})
        assert exc_info.value.field == "balance_after"

    def test_error_reports_second_element(self):
        with pytest.raises(TransformError) as exc_info:
            transform_model_output({"transactions": [_item(), _item(currency=5)]})
        assert "transaction 1" in str(exc_info.value)
