"""
COICOP category code helpers.

Category codes are dot-separated paths ("4.4.1"); a code "X.Y" is a
descendant of "X". Codes are always handled as strings because "4.10" and
"4.1" are different categories.
"""

from typing import Iterable, Literal

import pandas as pd

MatchMode = Literal["exact", "prefix"]

# Top-level COICOP divisions, used for labels in reports
COICOP_DIVISIONS = {
    "1": "Food and non-alcoholic beverages",
    "2": "Alcoholic beverages, tobacco and narcotics",
    "3": "Clothing and footwear",
    "4": "Housing, water, electricity, gas and other fuels",
    "5": "Furnishings, household equipment and maintenance",
    "6": "Health",
    "7": "Transport",
    "8": "Communication",
    "9": "Recreation and culture",
    "10": "Education",
    "11": "Restaurants and hotels",
    "12": "Miscellaneous goods and services",
}


def normalise_code(value: object) -> str:
    """
    Canonical string form of a category code.

    Whole numbers that arrive as floats from spreadsheets ("7.0", 7.0) become
    "7". Other codes are only stripped.
    """
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        raise ValueError("Category code is missing")
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    text = str(value).strip()
    if text.endswith(".0") and text[:-2].isdigit():
        return text[:-2]
    return text


def depth(code: str) -> int:
    """Number of levels in a code ("4" -> 1, "4.4.1" -> 3)."""
    return len(code.split("."))


def parent(code: str) -> str | None:
    """Parent code, or None for a top-level division."""
    if "." not in code:
        return None
    return code.rsplit(".", 1)[0]


def division(code: str) -> str:
    """Top-level division of a code."""
    return code.split(".", 1)[0]


def is_descendant(code: str, ancestor: str) -> bool:
    """True if ``code`` lies strictly below ``ancestor`` in the tree."""
    return code.startswith(ancestor + ".")


def matches_category(code: str, category: str, mode: MatchMode = "exact") -> bool:
    """
    Whether ``code`` is selected by ``category``.

    Modes:
        exact: code equals category
        prefix: code equals category or is one of its descendants
            ("14.1" is not selected by "1" or "4")
    """
    if mode == "exact":
        return code == category
    if mode == "prefix":
        return code == category or is_descendant(code, category)
    raise ValueError(f"Unknown match mode: {mode}")


def select_matching(codes: Iterable[str], category: str, mode: MatchMode = "exact") -> list[str]:
    """All codes selected by ``category``, in input order."""
    return [c for c in codes if matches_category(c, category, mode)]


def category_mask(codes: pd.Series, category: str, mode: MatchMode = "exact") -> pd.Series:
    """Vectorised :func:`matches_category` over a Series of codes."""
    codes = codes.astype("string")
    if mode == "exact":
        return (codes == category).fillna(False).astype(bool)
    if mode == "prefix":
        mask = (codes == category) | codes.str.startswith(category + ".")
        return mask.fillna(False).astype(bool)
    raise ValueError(f"Unknown match mode: {mode}")


def division_label(code: str) -> str:
    """Label of a code's top-level division, or the code itself."""
    return COICOP_DIVISIONS.get(division(code), code)
