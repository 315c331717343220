"""
Attribution of category emissions to household expenditure.

Each household's weekly spend on an accepted code is multiplied by the
intensity of the code's category:

    emission[i, k] = weekly_value[i, k] * intensity[category(k)]

Weighting and annualising the attributed emissions must reproduce the
calculator's category totals (expenditure_c * intensity_c). The
conservation check compares the two.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable

import numpy as np
import pandas as pd

from config.settings import get_settings
from studies.household_emissions.src.bridge import accepted_entries
from studies.household_emissions.src.coicop import MatchMode, category_mask, normalise_code
from studies.household_emissions.src.multipliers import IntensityTable

logger = logging.getLogger(__name__)


class ConservationError(RuntimeError):
    """Attributed emissions do not add up to the category totals."""


def attribute_emissions(
    households: pd.DataFrame,
    bridge: pd.DataFrame,
    intensities: IntensityTable,
    case: str = "case",
) -> pd.DataFrame:
    """
    Weekly emissions per household and accepted code.

    Missing weekly values are treated as zero spend.

    Returns:
        DataFrame with ``case`` followed by one column per accepted code
    """
    per_code = intensities.for_codes(bridge)
    codes = list(per_code.index)

    missing = [c for c in codes if c not in households.columns]
    if missing:
        raise ValueError(f"Accepted codes not in household table: {missing}")

    values = households[codes].apply(pd.to_numeric, errors="coerce").fillna(0.0)
    emissions = values.mul(per_code.to_numpy(), axis=1)
    emissions.insert(0, case, households[case].to_numpy())

    logger.info(f"Attributed emissions for {len(emissions):,} households over {len(codes)} codes")
    return emissions.reset_index(drop=True)


def select_codes(bridge: pd.DataFrame, category: str, mode: MatchMode = "exact") -> list[str]:
    """Accepted codes whose category is selected by ``category`` (may be empty)."""
    accepted = accepted_entries(bridge)
    mask = category_mask(accepted["category"], normalise_code(category), mode)
    return accepted.loc[mask.to_numpy(), "code"].tolist()


def household_category_emissions(
    emissions: pd.DataFrame,
    bridge: pd.DataFrame,
    category: str,
    mode: MatchMode = "prefix",
) -> pd.Series:
    """
    Per-household emissions for one category.

    A category with no matching codes gives zero for every household.
    """
    codes = [c for c in select_codes(bridge, category, mode) if c in emissions.columns]
    if not codes:
        logger.debug(f"No accepted codes for category '{category}' ({mode})")
        return pd.Series(0.0, index=emissions.index, name=str(category))
    return emissions[codes].sum(axis=1).rename(str(category))


def footprint_column(category: str) -> str:
    """Column name for a category roll-up, usable in ``DataFrame.eval``."""
    return "emissions_" + normalise_code(category).replace(".", "_")


def household_footprints(
    emissions: pd.DataFrame,
    bridge: pd.DataFrame,
    categories: Iterable[str] = (),
    case: str = "case",
    mode: MatchMode = "prefix",
) -> pd.DataFrame:
    """
    Household totals plus one column per requested category roll-up.

    Returns:
        DataFrame with ``case``, ``total`` and ``emissions_<category>`` columns
        (dots in the category replaced by underscores, e.g. ``emissions_4_5``)
    """
    codes = [c for c in emissions.columns if c != case]
    result = pd.DataFrame({case: emissions[case], "total": emissions[codes].sum(axis=1)})
    for category in categories:
        name = footprint_column(category)
        result[name] = household_category_emissions(emissions, bridge, category, mode)
    return result


def weighted_annual_total(
    values: pd.Series | np.ndarray,
    weights: pd.Series | np.ndarray,
    weeks_per_year: int = 52,
) -> float:
    """sum(weight * weeks_per_year * value), missing values as zero."""
    v = np.nan_to_num(np.asarray(values, dtype=float))
    w = np.asarray(weights, dtype=float)
    return float(np.sum(w * weeks_per_year * v))


@dataclass
class ConservationReport:
    """Bottom-up attributed totals against calculator totals."""

    bottom_up: float
    top_down: float
    relative_error: float
    passed: bool
    rtol: float
    by_category: pd.DataFrame = field(default_factory=pd.DataFrame)

    def validate_or_fail(self) -> "ConservationReport":
        if not self.passed:
            logger.error(
                f"Conservation check failed: bottom-up {self.bottom_up:,.6f} vs "
                f"top-down {self.top_down:,.6f} (relative error {self.relative_error:.2e})"
            )
            raise ConservationError(
                f"Attributed emissions ({self.bottom_up:,.6f}) differ from category "
                f"totals ({self.top_down:,.6f}) by {self.relative_error:.2e} > {self.rtol:.0e}"
            )
        return self

    def summary(self) -> str:
        status = "PASSED" if self.passed else "FAILED"
        return "\n".join([
            "=" * 60,
            f"Conservation Check: {status}",
            "=" * 60,
            f"Bottom-up (attributed):   {self.bottom_up:,.4f}",
            f"Top-down (calculator):    {self.top_down:,.4f}",
            f"Relative error:           {self.relative_error:.2e} (rtol {self.rtol:.0e})",
        ])


def _relative_error(a: float, b: float) -> float:
    scale = max(abs(a), abs(b))
    return abs(a - b) / scale if scale > 0 else 0.0


def check_conservation(
    emissions: pd.DataFrame,
    households: pd.DataFrame,
    bridge: pd.DataFrame,
    intensities: IntensityTable,
    rtol: float | None = None,
    weeks_per_year: int | None = None,
    weight: str = "weight",
    case: str = "case",
) -> ConservationReport:
    """
    Compare weighted annual attributed emissions with expenditure x intensity.

    Rows of ``emissions`` are matched to ``households`` on ``case``.
    """
    settings = get_settings()
    rtol = settings.conservation_rtol if rtol is None else rtol
    weeks = weeks_per_year or settings.weeks_per_year

    weights = (
        households.set_index(case)[weight]
        .reindex(emissions[case].to_numpy())
        .to_numpy(dtype=float)
    )
    if np.isnan(weights).any():
        raise ValueError("Emissions table has cases missing from the household table")

    accepted = accepted_entries(bridge)
    rows = []
    for category, group in accepted.groupby("category", sort=True):
        codes = [c for c in group["code"] if c in emissions.columns]
        bottom = weighted_annual_total(emissions[codes].sum(axis=1), weights, weeks)
        selected = intensities.select(category, mode="exact")
        top = float((selected["expenditure"] * selected["intensity"]).sum())
        rows.append({
            "category": category,
            "bottom_up": bottom,
            "top_down": top,
            "relative_error": _relative_error(bottom, top),
        })

    by_category = pd.DataFrame(rows, columns=["category", "bottom_up", "top_down", "relative_error"])
    bottom_up = float(by_category["bottom_up"].sum())
    t = intensities.table
    top_down = float((t["expenditure"] * t["intensity"]).sum())
    error = _relative_error(bottom_up, top_down)

    report = ConservationReport(
        bottom_up=bottom_up,
        top_down=top_down,
        relative_error=error,
        passed=bool(error <= rtol),
        rtol=rtol,
        by_category=by_category,
    )
    logger.info(
        f"Conservation: bottom-up {bottom_up:,.4f}, top-down {top_down:,.4f}, "
        f"relative error {error:.2e}"
    )
    return report
