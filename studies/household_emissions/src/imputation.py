"""
Multiple imputation of missing education.

Education is imputed at person level with chained equations and predictive
mean matching (statsmodels ``MICEData``), then reduced to one value per
household. The result is M+1 household datasets: index 0 keeps the missing
values (after rule-based corrections), indices 1..M are completed.

Reproducibility: each ``impute`` call hands ``MICEData`` its own generator
seeded from the spec, so the same seed and input give identical completed
datasets. Persons in a listed full-time programme are left out of the
imputation model; their value comes from the schooling rule or is observed,
so the reserved in-study value never enters the donor pool.
"""

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Sequence

import numpy as np
import pandas as pd
from statsmodels.imputation.mice import MICEData

from config.settings import get_settings

logger = logging.getLogger(__name__)


class Education(IntEnum):
    """
    Highest qualification, ordered from most to least advantaged.

    IN_FULL_TIME_STUDY is a reserved value for people currently in a listed
    full-time programme; it is set by rule, never imputed from scratch.
    """

    IN_FULL_TIME_STUDY = 0
    DEGREE = 1
    HIGHER_BELOW_DEGREE = 2
    A_LEVEL = 3
    GCSE = 4
    NO_QUALIFICATION = 5


@dataclass
class ImputationSpec:
    """
    Configuration for the education imputation.

    Attributes:
        target: Person-level education column
        predictors: Predictor columns (all numeric codes or values)
        categorical: Predictors entered as factors in the conditional model
        schooling: Column with the current schooling programme code
        full_time_programs: Schooling codes that imply full-time study
        n_imputations: Number of completed datasets M
        iterations: Chained-equation cycles before each completed dataset
        pmm_donors: Donor pool size for predictive mean matching
        seed: Random seed
    """

    target: str = "education"
    predictors: list[str] = field(default_factory=list)
    categorical: list[str] = field(default_factory=list)
    schooling: str = "schooling"
    full_time_programs: list[int] = field(default_factory=list)
    n_imputations: int = 6
    iterations: int = 5
    pmm_donors: int = 5
    seed: int = 20191122
    case: str = "case"
    person: str = "person"

    @classmethod
    def from_settings(cls, **kwargs) -> "ImputationSpec":
        """Spec with M, iterations, donors and seed taken from settings."""
        settings = get_settings()
        defaults = dict(
            n_imputations=settings.n_imputations,
            iterations=settings.imputation_iterations,
            pmm_donors=settings.pmm_donors,
            seed=settings.imputation_seed,
        )
        defaults.update(kwargs)
        return cls(**defaults)

    def __post_init__(self):
        unknown = [c for c in self.categorical if c not in self.predictors]
        if unknown:
            raise ValueError(f"Categorical predictors not in predictor list: {unknown}")
        if self.target in self.predictors:
            raise ValueError(f"Target '{self.target}' cannot also be a predictor")
        if self.n_imputations < 1:
            raise ValueError("n_imputations must be at least 1")

    @property
    def formula(self) -> str:
        """Right-hand side of the conditional model for the target."""
        terms = [f"C({p})" if p in self.categorical else p for p in self.predictors]
        return " + ".join(terms) if terms else "1"


def apply_rule_based_corrections(persons: pd.DataFrame, spec: ImputationSpec) -> pd.DataFrame:
    """
    Fill education where it follows directly from the schooling code.

    Persons in a listed full-time programme whose education is missing get
    ``Education.IN_FULL_TIME_STUDY``. Observed values are never overwritten.
    """
    result = persons.copy()
    in_study = result[spec.schooling].isin(spec.full_time_programs)
    fill = in_study & result[spec.target].isna()
    result.loc[fill, spec.target] = int(Education.IN_FULL_TIME_STUDY)

    logger.info(
        f"Rule-based corrections: {int(fill.sum()):,} persons set to in full-time study; "
        f"{int(result[spec.target].isna().sum()):,} still missing"
    )
    return result


def reduce_to_households(
    persons: pd.DataFrame,
    target: str = "education",
    case: str = "case",
) -> pd.DataFrame:
    """
    One row per household with the minimum (most advantaged) member value.

    The result is missing only when every member is missing.
    """
    reduced = persons.groupby(case, sort=True)[target].min().reset_index()
    return reduced


class AttributeImputer:
    """
    Person-level multiple imputation of education by PMM.

    Usage:
        imputer = AttributeImputer(spec)
        person_sets = imputer.impute(persons)   # M+1 person tables
    """

    def __init__(self, spec: ImputationSpec):
        self.spec = spec

    def _model_data(self, persons: pd.DataFrame) -> pd.DataFrame:
        columns = [self.spec.target] + list(self.spec.predictors)
        missing = [c for c in columns + [self.spec.case, self.spec.person] if c not in persons.columns]
        if missing:
            raise ValueError(f"Person table missing columns: {missing}")

        data = persons[columns].apply(pd.to_numeric, errors="coerce").astype(float)
        # MICEData requires object-dtype column names
        data.columns = pd.Index([str(c) for c in data.columns], dtype=object)

        empty = [c for c in data.columns if data[c].notna().sum() == 0]
        if empty:
            raise ValueError(f"Columns with no observed values cannot be imputed: {empty}")
        all_missing = data.isna().all(axis=1)
        if all_missing.any():
            raise ValueError(
                f"{int(all_missing.sum())} persons have no observed values in "
                f"{columns}; they cannot be imputed"
            )
        return data.reset_index(drop=True)

    def impute(self, persons: pd.DataFrame) -> list[pd.DataFrame]:
        """
        Produce the original plus M completed person tables.

        Args:
            persons: Person-level table with case, person, target, schooling
                and predictor columns

        Returns:
            List of M+1 DataFrames with the same rows and columns as the
            corrected input; element 0 keeps missing education
        """
        spec = self.spec
        corrected = apply_rule_based_corrections(persons, spec).reset_index(drop=True)
        n_missing = int(corrected[spec.target].isna().sum())

        datasets = [corrected]
        if n_missing == 0:
            logger.info("No missing education after corrections; completed sets equal the original")
            return datasets + [corrected.copy() for _ in range(spec.n_imputations)]

        # Reserved in-study values stay out of the donor pool
        in_study = corrected[spec.schooling].isin(spec.full_time_programs) | (
            corrected[spec.target] == int(Education.IN_FULL_TIME_STUDY)
        )
        model_rows = corrected.index[~in_study]

        data = self._model_data(corrected.loc[model_rows])
        mice = MICEData(data, k_pmm=spec.pmm_donors, rng=np.random.default_rng(spec.seed))
        mice.set_imputer(spec.target, formula=spec.formula, k_pmm=spec.pmm_donors)
        if len(mice.data) != len(model_rows):
            raise ValueError("Imputation model dropped rows; check for empty person records")

        logger.info(
            f"Imputing {spec.target} for {n_missing:,} persons "
            f"(M={spec.n_imputations}, iterations={spec.iterations}, donors={spec.pmm_donors})"
        )
        for m in range(1, spec.n_imputations + 1):
            mice.update_all(spec.iterations)
            completed = corrected.copy()
            completed.loc[model_rows, spec.target] = mice.data[spec.target].to_numpy()
            datasets.append(completed)
            logger.debug(f"Completed dataset {m}/{spec.n_imputations}")

        return datasets

    def impute_households(self, persons: pd.DataFrame) -> "ImputedDatasets":
        """Impute and reduce each dataset to one education value per household."""
        person_sets = self.impute(persons)
        frames = [
            reduce_to_households(p, self.spec.target, self.spec.case) for p in person_sets
        ]
        return ImputedDatasets(frames, case=self.spec.case)


class ImputedDatasets:
    """
    The original plus M completed household datasets.

    All datasets share the same ``case`` key space. Index 0 is the original
    with missing values retained.
    """

    def __init__(self, datasets: Sequence[pd.DataFrame], case: str = "case"):
        if len(datasets) < 2:
            raise ValueError("Need the original and at least one completed dataset")
        self.case = case
        self.datasets = [d.reset_index(drop=True) for d in datasets]
        self._validate_keys()

    def _validate_keys(self) -> None:
        reference = set(self.datasets[0][self.case])
        if self.datasets[0][self.case].duplicated().any():
            raise ValueError("Duplicate case identifiers in the original dataset")
        for i, d in enumerate(self.datasets[1:], start=1):
            if set(d[self.case]) != reference or d[self.case].duplicated().any():
                logger.error(f"Dataset {i} does not share the original case key space")
                raise ValueError(f"Imputed dataset {i} has a different set of cases")

    def __len__(self) -> int:
        return len(self.datasets)

    def __getitem__(self, index: int) -> pd.DataFrame:
        return self.datasets[index]

    @property
    def n_imputations(self) -> int:
        return len(self.datasets) - 1

    @property
    def original(self) -> pd.DataFrame:
        return self.datasets[0]

    @property
    def completed(self) -> list[pd.DataFrame]:
        return self.datasets[1:]

    def merge(self, households: pd.DataFrame) -> "ImputedDatasets":
        """
        Join imputed columns onto every household by case.

        Every household is kept. Households without person records get
        missing imputed values in all datasets, so they carry a missing
        class rather than dropping out of the analysis.
        """
        overlap = [c for c in households.columns if c != self.case and c in self.original.columns]
        extra = households.drop(columns=overlap)
        merged = [extra.merge(d, on=self.case, how="left", validate="one_to_one") for d in self.datasets]

        no_persons = int((~extra[self.case].isin(self.original[self.case])).sum())
        if no_persons:
            logger.warning(f"{no_persons:,} households have no person records; imputed values missing")
        orphans = int((~self.original[self.case].isin(extra[self.case])).sum())
        if orphans:
            logger.warning(f"{orphans:,} imputed cases not in the household table are dropped")
        return ImputedDatasets(merged, case=self.case)

    def to_long(self) -> pd.DataFrame:
        """Stack into one table with an ``imputation`` column (0..M)."""
        frames = []
        for i, d in enumerate(self.datasets):
            frame = d.copy()
            frame.insert(0, "imputation", i)
            frames.append(frame)
        return pd.concat(frames, ignore_index=True)

    @classmethod
    def from_long(cls, table: pd.DataFrame, case: str = "case") -> "ImputedDatasets":
        """Split a stacked table back into datasets ordered by imputation index."""
        if "imputation" not in table.columns:
            raise ValueError("Stacked imputation table needs an 'imputation' column")
        indices = sorted(table["imputation"].unique())
        if list(indices) != list(range(len(indices))):
            raise ValueError(f"Imputation indices must be 0..M, got {indices}")
        datasets = [
            table[table["imputation"] == i].drop(columns="imputation").reset_index(drop=True)
            for i in indices
        ]
        return cls(datasets, case=case)
