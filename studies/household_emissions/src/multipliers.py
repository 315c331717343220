"""
Emission intensities per COICOP category.

For each category c:

    expenditure_c = sum over accepted codes k in c of
                    sum over households i of weight_i * 52 * weekly_value_ik
    intensity_c   = unit_scale * emissions_kt_c / expenditure_c

Units: external emissions are in kilotonnes. Survey weights gross each
household up in thousands of households, so the population expenditure is
1000 * expenditure_c. Converting kt to kg multiplies by 1e6; dividing by the
1000-scaled expenditure leaves a single factor of 1000:

    kg per currency unit = 1e6 * kt / (1000 * expenditure_c)
                         = 1000 * kt / expenditure_c

Applying only one of the two conversions is off by a factor of 1000.

Where expenditure_c is exactly zero the intensity is set to zero explicitly.
"""

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from config.settings import get_settings
from studies.household_emissions.src.bridge import accepted_entries
from studies.household_emissions.src.coicop import MatchMode, category_mask, normalise_code

logger = logging.getLogger(__name__)


def code_expenditure(
    households: pd.DataFrame,
    bridge: pd.DataFrame,
    weeks_per_year: int = 52,
    weight: str = "weight",
) -> pd.Series:
    """
    Population-weighted annual expenditure per accepted code.

    Missing weekly values count as zero spend.

    Returns:
        Series indexed by code
    """
    codes = accepted_entries(bridge)["code"].tolist()
    missing = [c for c in codes if c not in households.columns]
    if missing:
        raise ValueError(f"Accepted codes not in household table: {missing}")

    values = households[codes].apply(pd.to_numeric, errors="coerce").fillna(0.0)
    weights = households[weight].to_numpy(dtype=float)
    totals = values.mul(weights * weeks_per_year, axis=0).sum(axis=0)
    totals.index.name = "code"
    return totals.astype(float)


def category_expenditure(code_totals: pd.Series, bridge: pd.DataFrame) -> pd.Series:
    """Sum code expenditure by the category each accepted code maps to."""
    accepted = accepted_entries(bridge).set_index("code")["category"]
    categories = accepted.reindex(code_totals.index)
    totals = code_totals.groupby(categories.to_numpy()).sum()
    totals.index.name = "category"
    return totals.astype(float)


def compute_intensities(
    category_totals: pd.Series,
    category_emissions: pd.DataFrame,
    unit_scale: float = 1000.0,
) -> pd.DataFrame:
    """
    Intensity per category from emissions totals and expenditure.

    Args:
        category_totals: Weighted annual expenditure per category
        category_emissions: Table with ``category`` and ``emissions_kt``
        unit_scale: Combined kt->kg and weight grossing factor

    Returns:
        DataFrame with category, expenditure, emissions_kt, intensity; one
        row per category in either input
    """
    emissions = category_emissions.copy()
    emissions["category"] = emissions["category"].map(normalise_code)
    emissions = emissions.set_index("category")["emissions_kt"].astype(float)

    categories = list(dict.fromkeys(list(category_totals.index) + list(emissions.index)))

    no_emissions = [c for c in category_totals.index if c not in emissions.index]
    if no_emissions:
        logger.warning(f"Categories without emissions totals (set to 0): {no_emissions}")

    table = pd.DataFrame({"category": categories})
    table["expenditure"] = category_totals.reindex(categories).fillna(0.0).to_numpy()
    table["emissions_kt"] = emissions.reindex(categories).fillna(0.0).to_numpy()

    zero = table["expenditure"] == 0
    if (zero & (table["emissions_kt"] != 0)).any():
        logger.warning(
            "Categories with emissions but no accepted expenditure (intensity 0): "
            f"{table.loc[zero & (table['emissions_kt'] != 0), 'category'].tolist()}"
        )

    intensity = np.zeros(len(table))
    nonzero = ~zero.to_numpy()
    intensity[nonzero] = (
        unit_scale
        * table["emissions_kt"].to_numpy()[nonzero]
        / table["expenditure"].to_numpy()[nonzero]
    )
    table["intensity"] = intensity
    return table


@dataclass
class IntensityTable:
    """
    Intensity lookup by category.

    Supports exact lookup of one category and prefix lookup of a category
    together with all its descendants.
    """

    table: pd.DataFrame

    def __post_init__(self):
        self.table = self.table.reset_index(drop=True)
        self.table["category"] = self.table["category"].map(normalise_code)
        self._by_category = self.table.set_index("category")["intensity"]

    @property
    def categories(self) -> list[str]:
        return self.table["category"].tolist()

    def lookup(self, category: str) -> float:
        """Intensity of one category; zero for unknown categories."""
        return float(self._by_category.get(normalise_code(category), 0.0))

    def select(self, category: str, mode: MatchMode = "prefix") -> pd.DataFrame:
        """Rows selected by ``category`` (may be empty)."""
        mask = category_mask(self.table["category"], normalise_code(category), mode)
        return self.table[mask.to_numpy()]

    def for_codes(self, bridge: pd.DataFrame) -> pd.Series:
        """Intensity for each accepted code, via its category."""
        accepted = accepted_entries(bridge)
        values = accepted["category"].map(self._by_category).fillna(0.0)
        return pd.Series(values.to_numpy(dtype=float), index=accepted["code"].to_numpy(), name="intensity")

    def category_total(self, category: str, mode: MatchMode = "prefix") -> float:
        """Expenditure x intensity summed over the selected categories."""
        rows = self.select(category, mode)
        return float((rows["expenditure"] * rows["intensity"]).sum())


@dataclass
class MultiplierResult:
    """Output of the multiplier calculation."""

    intensities: IntensityTable
    code_expenditure: pd.Series
    unit_scale: float
    weeks_per_year: int

    def summary(self) -> str:
        t = self.intensities.table
        lines = [
            "=" * 60,
            "Category Emission Intensities",
            "=" * 60,
            f"Categories:            {len(t):,}",
            f"Accepted codes:        {len(self.code_expenditure):,}",
            f"Zero-expenditure:      {int((t['expenditure'] == 0).sum()):,}",
            f"Total emissions (kt):  {t['emissions_kt'].sum():,.1f}",
            "",
            f"{'Category':<12} {'Expenditure':>16} {'kt':>12} {'Intensity':>12}",
            "-" * 56,
        ]
        for _, row in t.iterrows():
            lines.append(
                f"{row['category']:<12} {row['expenditure']:>16,.0f} "
                f"{row['emissions_kt']:>12,.2f} {row['intensity']:>12.4f}"
            )
        return "\n".join(lines)


class MultiplierCalculator:
    """
    Derives emission intensities from the reviewed bridge and survey data.

    Only accepted bridge entries contribute.
    """

    def __init__(
        self,
        weeks_per_year: int | None = None,
        unit_scale: float | None = None,
        weight: str = "weight",
    ):
        settings = get_settings()
        self.weeks_per_year = weeks_per_year or settings.weeks_per_year
        self.unit_scale = unit_scale or settings.emissions_unit_scale
        self.weight = weight

    def fit(
        self,
        households: pd.DataFrame,
        bridge: pd.DataFrame,
        category_emissions: pd.DataFrame,
    ) -> MultiplierResult:
        code_totals = code_expenditure(households, bridge, self.weeks_per_year, self.weight)
        category_totals = category_expenditure(code_totals, bridge)
        table = compute_intensities(category_totals, category_emissions, self.unit_scale)

        logger.info(
            f"Computed intensities for {len(table)} categories from "
            f"{len(code_totals)} accepted codes"
        )
        return MultiplierResult(
            intensities=IntensityTable(table),
            code_expenditure=code_totals,
            unit_scale=self.unit_scale,
            weeks_per_year=self.weeks_per_year,
        )
