"""
Code bridge: survey expenditure codes -> COICOP categories.

The builder proposes one category per expenditure code by Jaro-Winkler
distance between labels, and flags whether the survey documentation lists
the code as used. The proposal is written as a spreadsheet for manual
review; downstream stages only read the reviewed copy.

Ties in distance go to the first category in listing order. This is a
default for the reviewer, not a rule later stages depend on.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

import numpy as np
import pandas as pd
from rapidfuzz import process
from rapidfuzz.distance import JaroWinkler
from rapidfuzz.utils import default_process

from shared.data.base import read_table, write_table
from shared.data.schema import BRIDGE, SchemaError
from studies.household_emissions.src.coicop import normalise_code

logger = logging.getLogger(__name__)

BRIDGE_COLUMNS = [
    "code",
    "label",
    "category",
    "category_label",
    "distance",
    "documented",
    "use",
    "needs_review",
]


class BridgeValidationError(ValueError):
    """Raised when a reviewed bridge breaks its invariants."""


@dataclass
class BridgeSummary:
    """Counts describing a bridge table."""

    n_codes: int
    n_documented: int
    n_accepted: int
    n_needs_review: int
    n_categories: int
    undocumented_accepted: list[str] = field(default_factory=list)

    def summary(self) -> str:
        lines = [
            "=" * 60,
            "Code Bridge",
            "=" * 60,
            f"Expenditure codes:        {self.n_codes:,}",
            f"Documented as used:       {self.n_documented:,}",
            f"Accepted (use = true):    {self.n_accepted:,}",
            f"Flagged for review:       {self.n_needs_review:,}",
            f"Categories referenced:    {self.n_categories:,}",
        ]
        if self.undocumented_accepted:
            lines.append(
                f"Accepted without documentation: {', '.join(self.undocumented_accepted)}"
            )
        return "\n".join(lines)


class BridgeBuilder:
    """
    Proposes a category for every expenditure code.

    Args:
        categories: Reference table with ``category`` and ``label`` columns,
            in listing order
        documented_codes: Codes the survey documentation lists as used
    """

    def __init__(self, categories: pd.DataFrame, documented_codes: Iterable[str] = ()):
        if categories.empty:
            raise ValueError("At least one category is required to build a bridge")

        self.categories = categories.reset_index(drop=True).copy()
        self.categories["category"] = self.categories["category"].map(normalise_code)
        self.documented = {str(c).strip() for c in documented_codes}

    def distances(self, labels: Iterable[str]) -> np.ndarray:
        """Jaro-Winkler distance matrix (expenditure labels x category labels)."""
        queries = [_label_text(v) for v in labels]
        choices = [_label_text(v) for v in self.categories["label"]]
        matrix = process.cdist(
            queries,
            choices,
            scorer=JaroWinkler.distance,
            processor=default_process,
        )
        return np.asarray(matrix, dtype=float)

    def build(self, expenditure_codes: pd.DataFrame) -> pd.DataFrame:
        """
        Propose one bridge entry per expenditure code.

        Args:
            expenditure_codes: Table with ``code`` and ``label`` columns

        Returns:
            Bridge proposal; ``use`` defaults to the documentation flag and
            ``needs_review`` marks every undocumented code
        """
        codes = expenditure_codes.reset_index(drop=True)
        if codes.empty:
            return pd.DataFrame(columns=BRIDGE_COLUMNS)

        matrix = self.distances(codes["label"])
        # argmin returns the first minimum: ties go to listing order
        best = matrix.argmin(axis=1)

        bridge = pd.DataFrame({
            "code": codes["code"].astype(str).str.strip(),
            "label": codes["label"],
            "category": self.categories["category"].iloc[best].to_numpy(),
            "category_label": self.categories["label"].iloc[best].to_numpy(),
            "distance": matrix[np.arange(len(codes)), best],
        })
        bridge["documented"] = bridge["code"].isin(self.documented)
        bridge["use"] = bridge["documented"]
        bridge["needs_review"] = ~bridge["documented"]

        n_review = int(bridge["needs_review"].sum())
        logger.info(
            f"Proposed categories for {len(bridge):,} codes "
            f"({len(bridge) - n_review:,} documented, {n_review:,} need review)"
        )
        missing_docs = self.documented - set(bridge["code"])
        if missing_docs:
            logger.warning(
                f"{len(missing_docs)} documented codes not in the expenditure list: "
                f"{sorted(missing_docs)[:10]}"
            )
        return bridge[BRIDGE_COLUMNS]


def _label_text(value: object) -> str:
    return "" if value is None or pd.isna(value) else str(value)


def apply_overrides(bridge: pd.DataFrame, overrides: list[dict]) -> pd.DataFrame:
    """
    Apply recorded manual corrections to a bridge.

    Each override names a ``code`` and may set ``category``, ``category_label``
    and/or ``use``. Overridden rows are marked as reviewed.

    Raises:
        BridgeValidationError: If an override names an unknown code
    """
    result = bridge.copy()
    known = set(result["code"])
    for override in overrides:
        code = str(override["code"]).strip()
        if code not in known:
            raise BridgeValidationError(f"Override for unknown code '{code}'")
        row = result["code"] == code
        if "category" in override:
            result.loc[row, "category"] = normalise_code(override["category"])
        if "category_label" in override:
            result.loc[row, "category_label"] = override["category_label"]
        if "use" in override:
            result.loc[row, "use"] = bool(override["use"])
        if "needs_review" in result.columns:
            result.loc[row, "needs_review"] = False

    if overrides:
        logger.info(f"Applied {len(overrides)} bridge overrides")
    return result


def validate_bridge(
    bridge: pd.DataFrame,
    categories: pd.DataFrame | None = None,
) -> pd.DataFrame:
    """
    Check a reviewed bridge and return it with normalised category codes.

    Invariants:
        - ``use`` is boolean
        - each accepted code maps to exactly one category
        - accepted categories exist in the reference list (when given)

    Raises:
        BridgeValidationError
    """
    result = bridge.copy()
    try:
        result["category"] = result["category"].map(normalise_code)
    except ValueError as e:
        raise BridgeValidationError(f"Bridge has a missing category: {e}") from e

    if not pd.api.types.is_bool_dtype(result["use"]):
        raise BridgeValidationError("Bridge column 'use' must be boolean")

    accepted = result[result["use"]]
    dup = accepted["code"][accepted["code"].duplicated()]
    if not dup.empty:
        logger.error(f"Codes accepted more than once: {sorted(set(dup))}")
        raise BridgeValidationError(
            f"Each accepted code must map to one category; duplicated: {sorted(set(dup))}"
        )

    if categories is not None:
        reference = set(categories["category"].map(normalise_code))
        unknown = sorted(set(accepted["category"]) - reference)
        if unknown:
            raise BridgeValidationError(f"Accepted categories not in reference list: {unknown}")

    return result


def load_bridge(path: Path, categories: pd.DataFrame | None = None) -> pd.DataFrame:
    """
    Read and validate a reviewed bridge spreadsheet.

    Raises:
        BridgeValidationError: If a cell is unreadable, e.g. a blank ``use``
    """
    try:
        bridge = read_table(path, BRIDGE, string_columns=("code", "category"))
    except SchemaError as e:
        raise BridgeValidationError(str(e)) from e
    return validate_bridge(bridge, categories)


def save_bridge(bridge: pd.DataFrame, path: Path) -> Path:
    """Write a bridge spreadsheet for review."""
    return write_table(bridge, path)


def accepted_entries(bridge: pd.DataFrame) -> pd.DataFrame:
    """Only the entries with ``use = true``."""
    return bridge[bridge["use"]].reset_index(drop=True)


def code_category_map(bridge: pd.DataFrame) -> dict[str, str]:
    """Accepted code -> category."""
    accepted = accepted_entries(bridge)
    return dict(zip(accepted["code"], accepted["category"]))


def summarise_bridge(bridge: pd.DataFrame) -> BridgeSummary:
    """Counts of proposed, documented, accepted and flagged entries."""
    accepted = bridge[bridge["use"]]
    needs_review = bridge["needs_review"] if "needs_review" in bridge.columns else ~bridge["documented"]
    undocumented = accepted.loc[~accepted["documented"], "code"].tolist()
    return BridgeSummary(
        n_codes=len(bridge),
        n_documented=int(bridge["documented"].sum()),
        n_accepted=len(accepted),
        n_needs_review=int(needs_review.sum()),
        n_categories=int(accepted["category"].nunique()),
        undocumented_accepted=undocumented,
    )
