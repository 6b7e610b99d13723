"""Turn the AI service's raw output into typed transactions."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from finparse.core.exceptions import MalformedFieldError, MalformedOutputError
from finparse.schemas.models import Transaction

DATE_FORMAT = "%Y-%m-%d"
REQUIRED_TEXT_FIELDS = ("description", "currency", "category")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _parse_date(index: int, value: Any) -> date:
    if value is None:
        raise MalformedFieldError(index, "date", "is missing")
    if not isinstance(value, str):
        raise MalformedFieldError(index, "date", f"must be a string, got {type(value).__name__}")
    try:
        return datetime.strptime(value.strip(), DATE_FORMAT).date()
    except ValueError:
        raise MalformedFieldError(index, "date", f"must be YYYY-MM-DD, got {value!r}")


def _required_text(index: int, item: dict, field: str) -> str:
    value = item.get(field)
    if value is None:
        raise MalformedFieldError(index, field, "is missing")
    if not isinstance(value, str):
        raise MalformedFieldError(index, field, f"must be a string, got {type(value).__name__}")
    value = value.strip()
    if not value:
        raise MalformedFieldError(index, field, "is empty")
    return value


def _optional_text(index: int, item: dict, field: str) -> str | None:
    value = item.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise MalformedFieldError(index, field, f"must be a string or null, got {type(value).__name__}")
    return value.strip() or None


def _transform_item(index: int, item: Any) -> Transaction:
    if not isinstance(item, dict):
        raise MalformedOutputError(
            f"transaction {index} is not an object",
            details={"index": index, "type": type(item).__name__},
        )

    tx_date = _parse_date(index, item.get("date"))
    description = _required_text(index, item, "description")
    currency = _required_text(index, item, "currency")
    category = _required_text(index, item, "category")

    amount = item.get("amount")
    if amount is None:
        raise MalformedFieldError(index, "amount", "is missing")
    if not _is_number(amount):
        raise MalformedFieldError(index, "amount", f"must be a number, got {type(amount).__name__}")

    if "subcategory" not in item:
        raise MalformedFieldError(index, "subcategory", "is missing")
    subcategory = item["subcategory"]
    if subcategory is not None and not isinstance(subcategory, str):
        raise MalformedFieldError(
            index, "subcategory", f"must be a string or null, got {type(subcategory).__name__}"
        )

    balance_after = item.get("balance_after")
    if balance_after is not None and not _is_number(balance_after):
        raise MalformedFieldError(
            index, "balance_after", f"must be a number or null, got {type(balance_after).__name__}"
        )

    return Transaction(
        date=tx_date,
        description=description,
        amount=float(amount),
        currency=currency,
        balance_after=float(balance_after) if balance_after is not None else None,
        account_name=_optional_text(index, item, "account_name"),
        account_number=_optional_text(index, item, "account_number"),
        category=category,
        subcategory=(subcategory or "").strip(),
    )


def transform_model_output(raw: Any) -> list[Transaction]:
    """Convert raw model output into a list of transactions.

    Args:
        raw: Decoded model output; expected to be ``{"transactions": [...]}``

    Returns:
        Transactions in the order they appear in the output

    Raises:
        MalformedOutputError: If the top-level shape or an element is not an object
        MalformedFieldError: If a required field is missing or has the wrong type
    """
    if not isinstance(raw, dict):
        raise MalformedOutputError(
            f"model output must be an object, got {type(raw).__name__}",
        )
    items = raw.get("transactions")
    if not isinstance(items, list):
        raise MalformedOutputError(
            "model output is missing a 'transactions' list",
            details={"keys": sorted(raw.keys())},
        )

    return [_transform_item(index, item) for index, item in enumerate(items)]
