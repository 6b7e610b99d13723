from __future__ import annotations

from typing import Iterable

from finparse.schemas.models import CategoryRow


STATEMENT_PROMPT = """
You are a financial statement parser for {source_system} PDF bank statements.

Task:
- Parse ALL transactions in the attached statement.
- Output STRICT JSON only (no comments, no trailing commas, no extra text).
- Output a JSON array of objects.

Each object must have these fields:
- "account_name": string or null
- "account_number": string or null
- "date": string, ISO format "YYYY-MM-DD"
- "description": string
- "amount": number (positive for money IN, negative for money OUT)
- "currency": string (e.g. "GBP")
- "balance_after": number or null
- "category": string (one of the predefined categories)
- "subcategory": string (one of the predefined subcategories below)

{categories}

Rules:
- Classify each transaction into the most appropriate category/subcategory.
- If the statement has separate "paid out" / "paid in" columns, convert to a single signed "amount".
- If the running balance is missing, set "balance_after" to null.
- If account name or number cannot be determined, set them to null.
- If the PDF contains multiple accounts, attribute transactions correctly.

Return ONLY valid raw JSON.
Do NOT wrap the response in code fences.
Output must begin with "[" and end with "]".
"""

CATEGORY_RULES = """CATEGORY ASSIGNMENT RULES:
1. Category must be EXACTLY one of the category names shown above.
2. If a category has subcategories listed, you MUST choose one of them; never use an empty string.
3. If a category shows "(no subcategories)", use empty string "" for subcategory.
4. If you are unsure, use category "Uncategorized" with subcategory "".
"""


def group_categories(rows: Iterable[CategoryRow]) -> dict[str, list[str]]:
    """Group taxonomy rows by category name, keeping first-seen order."""
    grouped: dict[str, list[str]] = {}
    for row in rows:
        subcategories = grouped.setdefault(row.category_name, [])
        if row.subcategory_name:
            subcategories.append(row.subcategory_name)
    return grouped


def build_category_prompt(rows: Iterable[CategoryRow]) -> str:
    """Build the taxonomy section of the statement prompt.

    Args:
        rows: Active category rows, one per category/subcategory pair
    """
    lines = ["Use ONLY the following Categories and Subcategories:", ""]
    for category, subcategories in group_categories(rows).items():
        lines.append(f"{category}:")
        if not subcategories:
            lines.append('  (no subcategories - use empty string "")')
        else:
            lines.extend(f"  - {name}" for name in subcategories)
        lines.append("")
    lines.append(CATEGORY_RULES)
    return "\n".join(lines)


def build_statement_prompt(rows: Iterable[CategoryRow], source_system: str = "BARCLAYS") -> str:
    return STATEMENT_PROMPT.format(
        source_system=source_system.title(),
        categories=build_category_prompt(rows),
    )
