"""
Social class assignment from income and education.

Rules are evaluated in order and the first match wins:

    1. income <= lower_ratio x median  -> "lower"
    2. income >  upper_ratio x median  -> "upper"
    3. education missing              -> missing
    4. degree or in full-time study   -> "new middle"
    5. otherwise                      -> "old middle"

The weighted median income is fitted once on the original dataset and
reused for every imputed variant so that class boundaries do not move
between imputations.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Sequence

import numpy as np
import pandas as pd

from config.settings import get_settings
from shared.model.survey import weighted_quantile
from studies.household_emissions.src.imputation import Education

logger = logging.getLogger(__name__)

CLASS_LABELS = ["lower", "old middle", "new middle", "upper"]
NEW_MIDDLE_EDUCATION = (int(Education.DEGREE), int(Education.IN_FULL_TIME_STUDY))

Predicate = Callable[[pd.DataFrame, float], pd.Series]


@dataclass(frozen=True)
class ClassRule:
    """One row of the decision table; ``label`` None means missing."""

    name: str
    predicate: Predicate
    label: str | None


def build_rules(
    lower_ratio: float,
    upper_ratio: float,
    income: str = "income",
    education: str = "education",
) -> list[ClassRule]:
    """Decision table in evaluation order."""
    return [
        ClassRule(
            "missing income",
            lambda d, median: d[income].isna(),
            None,
        ),
        ClassRule(
            "low income",
            lambda d, median: d[income] <= lower_ratio * median,
            "lower",
        ),
        ClassRule(
            "high income",
            lambda d, median: d[income] > upper_ratio * median,
            "upper",
        ),
        ClassRule(
            "missing education",
            lambda d, median: d[education].isna(),
            None,
        ),
        ClassRule(
            "degree or in study",
            lambda d, median: d[education].isin(NEW_MIDDLE_EDUCATION),
            "new middle",
        ),
        ClassRule(
            "other education",
            lambda d, median: pd.Series(True, index=d.index),
            "old middle",
        ),
    ]


class ClassAssigner:
    """
    Assigns a class label per household.

    Usage:
        assigner = ClassAssigner().fit(imputed.original)
        labels = assigner.assign_all(imputed.datasets)
    """

    def __init__(
        self,
        lower_ratio: float | None = None,
        upper_ratio: float | None = None,
        income: str = "income",
        education: str = "education",
        weight: str = "weight",
        case: str = "case",
    ):
        settings = get_settings()
        self.lower_ratio = settings.lower_income_ratio if lower_ratio is None else lower_ratio
        self.upper_ratio = settings.upper_income_ratio if upper_ratio is None else upper_ratio
        if self.upper_ratio <= self.lower_ratio:
            raise ValueError(
                f"upper_ratio ({self.upper_ratio}) must exceed lower_ratio ({self.lower_ratio})"
            )
        self.income = income
        self.education = education
        self.weight = weight
        self.case = case
        self.rules = build_rules(self.lower_ratio, self.upper_ratio, income, education)
        self.median_income: float | None = None

    def fit(self, original: pd.DataFrame) -> "ClassAssigner":
        """Weighted median income of the original dataset."""
        income = pd.to_numeric(original[self.income], errors="coerce").to_numpy(dtype=float)
        weights = original[self.weight].to_numpy(dtype=float)
        observed = ~np.isnan(income)
        self.median_income = weighted_quantile(income[observed], weights[observed], 0.5)
        if not np.isfinite(self.median_income):
            raise ValueError("Cannot fit class boundaries: no observed income")

        logger.info(
            f"Median income {self.median_income:,.2f}; lower <= "
            f"{self.lower_ratio * self.median_income:,.2f}, upper > "
            f"{self.upper_ratio * self.median_income:,.2f}"
        )
        return self

    def assign(self, dataset: pd.DataFrame) -> pd.Series:
        """
        Class label for every row, as an ordered categorical.

        Raises:
            RuntimeError: If called before ``fit``
        """
        if self.median_income is None:
            raise RuntimeError("ClassAssigner must be fitted on the original dataset first")

        data = dataset[[self.income, self.education]].copy()
        data[self.income] = pd.to_numeric(data[self.income], errors="coerce")

        labels = pd.Series(pd.NA, index=data.index, dtype="object")
        unresolved = pd.Series(True, index=data.index)
        for rule in self.rules:
            hit = rule.predicate(data, self.median_income).fillna(False).astype(bool) & unresolved
            if rule.label is not None:
                labels[hit] = rule.label
            unresolved &= ~hit

        return pd.Series(
            pd.Categorical(labels, categories=CLASS_LABELS, ordered=True),
            index=dataset.index,
            name="social_class",
        )

    def assign_all(self, datasets: Sequence[pd.DataFrame]) -> pd.DataFrame:
        """
        Labels for every dataset, stacked with an ``imputation`` column.

        Returns:
            DataFrame with imputation, case, social_class
        """
        frames = []
        for i, dataset in enumerate(datasets):
            frames.append(pd.DataFrame({
                "imputation": i,
                self.case: dataset[self.case].to_numpy(),
                "social_class": self.assign(dataset).to_numpy(),
            }))
        result = pd.concat(frames, ignore_index=True)
        result["social_class"] = pd.Categorical(
            result["social_class"], categories=CLASS_LABELS, ordered=True
        )
        return result


def class_counts(classes: pd.DataFrame) -> pd.DataFrame:
    """Unweighted label counts per imputation, missing included."""
    labels = classes["social_class"].astype(object).fillna("missing")
    counts = pd.crosstab(classes["imputation"], labels)
    counts.columns.name = None
    return counts.reindex(columns=CLASS_LABELS + ["missing"], fill_value=0)
