"""
Synthetic household survey data for tests.

Deterministic generators with fixed seeds. Category and expenditure labels
are chosen so that the bridge proposal is unambiguous.
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd
import yaml

CATEGORIES = [
    ("1.1", "Food"),
    ("1.2", "Non-alcoholic beverages"),
    ("4.5", "Electricity, gas and other fuels"),
    ("7.2", "Fuels and lubricants for personal transport"),
    ("7.3", "Transport services"),
    ("9.4", "Recreational and cultural services"),
]

# code, label, category it should match
EXPENDITURE_CODES = [
    ("c11", "FOOD", "1.1"),
    ("c12", "Non alcoholic beverages", "1.2"),
    ("c45", "electricity gas and other fuels", "4.5"),
    ("c72", "Fuels and lubricants for personal transport", "7.2"),
    ("c73", "Transport services", "7.3"),
    ("c94", "Recreational and cultural services", "9.4"),
]

EMISSIONS_KT = {
    "1.1": 2400.0,
    "1.2": 310.0,
    "4.5": 5200.0,
    "7.2": 4100.0,
    "7.3": 900.0,
    "9.4": 450.0,
}


def make_toy_scenario() -> dict[str, pd.DataFrame]:
    """Two households, two codes in category "1", 15.6 kt of emissions."""
    households = pd.DataFrame({
        "case": [1, 2],
        "weight": [1.0, 1.0],
        "income": [300.0, 500.0],
        "a": [10.0, 0.0],
        "b": [0.0, 20.0],
    })
    bridge = pd.DataFrame({
        "code": ["a", "b"],
        "label": ["Item a", "Item b"],
        "category": ["1", "1"],
        "category_label": ["Food", "Food"],
        "distance": [0.0, 0.0],
        "documented": [True, True],
        "use": [True, True],
    })
    category_emissions = pd.DataFrame({"category": ["1"], "emissions_kt": [15.6]})
    return {
        "households": households,
        "bridge": bridge,
        "category_emissions": category_emissions,
    }


def make_bridge() -> pd.DataFrame:
    """Accepted bridge for the synthetic codes."""
    labels = dict(CATEGORIES)
    return pd.DataFrame({
        "code": [c for c, _, _ in EXPENDITURE_CODES],
        "label": [l for _, l, _ in EXPENDITURE_CODES],
        "category": [k for _, _, k in EXPENDITURE_CODES],
        "category_label": [labels[k] for _, _, k in EXPENDITURE_CODES],
        "distance": 0.0,
        "documented": True,
        "use": True,
    })


def make_households(n: int = 120, seed: int = 42) -> pd.DataFrame:
    """
    Wide household table: design columns, income and weekly spend per code.

    Four regions (strata) with three PSUs each; about 5% of spend values
    are missing.
    """
    rng = np.random.default_rng(seed)
    region = np.repeat(np.arange(1, 5), int(np.ceil(n / 4)))[:n]
    psu = np.tile(np.arange(1, 4), int(np.ceil(n / 3)))[:n]
    income = np.round(rng.lognormal(mean=6.0, sigma=0.5, size=n), 2)

    df = pd.DataFrame({
        "case": np.arange(1, n + 1),
        "weight": np.round(rng.uniform(0.5, 2.0, n), 3),
        "income": income,
        "region": region,
        "psu": psu,
        "tenure": rng.integers(1, 4, n),
        "hh_size": rng.integers(1, 5, n),
    })
    scale = income / income.mean()
    for code, _, _ in EXPENDITURE_CODES:
        spend = np.round(rng.gamma(2.0, 10.0, n) * scale, 2)
        spend[rng.random(n) < 0.1] = 0.0
        df[code] = spend
    mask = rng.random((n, len(EXPENDITURE_CODES))) < 0.05
    codes = [c for c, _, _ in EXPENDITURE_CODES]
    df[codes] = df[codes].mask(mask)
    return df


def make_persons(households: pd.DataFrame, seed: int = 7, missing_rate: float = 0.25) -> pd.DataFrame:
    """
    Person table for ``households``.

    Education (1..5) falls with income; a share is missing. Some persons are
    in full-time programmes (schooling 1-3) with missing education.
    """
    rng = np.random.default_rng(seed)
    rows = []
    income_rank = households["income"].rank(pct=True).to_numpy()
    for i, hh in enumerate(households.itertuples(index=False)):
        n_persons = int(rng.integers(1, 4))
        for p in range(1, n_persons + 1):
            base = 5 - 4 * income_rank[i] + rng.normal(0, 0.8)
            education = float(np.clip(np.round(base), 1, 5))
            schooling = 0
            if rng.random() < 0.1:
                schooling = int(rng.integers(1, 5))  # 4 is part-time
            if rng.random() < missing_rate:
                education = np.nan
            rows.append({
                "case": hh.case,
                "person": p,
                "education": education,
                "schooling": schooling,
                "nssec": int(rng.integers(1, 6)),
                "region": hh.region,
                "ethnicity": int(rng.integers(1, 4)),
                "income": hh.income,
                "hh_size": hh.hh_size,
                "tenure": hh.tenure,
                "age": int(rng.integers(18, 85)),
            })
    return pd.DataFrame(rows)


def study_config_dict() -> dict:
    """Study configuration matching the synthetic inputs."""
    return {
        "columns": {
            "strata": "region",
            "psu": "psu",
            "household_extra": ["tenure", "hh_size"],
        },
        "imputation": {
            "target": "education",
            "schooling": "schooling",
            "predictors": ["nssec", "region", "ethnicity", "income", "hh_size", "tenure", "age"],
            "categorical": ["nssec", "region", "ethnicity", "tenure"],
            "full_time_programs": [1, 2, 3],
        },
        "footprint_categories": ["1", "7"],
        "report": {
            "measures": [
                {"name": "footprint", "expression": "total", "statistic": "mean"},
                {"name": "intensity", "expression": "total", "statistic": "ratio",
                 "denominator": "expenditure"},
                {"name": "median_footprint", "expression": "total", "statistic": "quantile"},
                {"name": "transport", "expression": "emissions_7", "statistic": "mean"},
            ],
            "comparisons": [["upper", "lower"]],
            "plots": ["footprint"],
        },
    }


def write_raw_inputs(raw_dir: Path, n: int = 120, seed: int = 42) -> dict[str, Path]:
    """Write every raw input table of the pipeline as CSV."""
    raw_dir.mkdir(parents=True, exist_ok=True)
    households = make_households(n, seed)
    persons = make_persons(households)

    tables = {
        "expenditure_labels": pd.DataFrame(
            [(c, l) for c, l, _ in EXPENDITURE_CODES], columns=["code", "label"]
        ),
        "category_labels": pd.DataFrame(CATEGORIES, columns=["category", "label"]),
        # c94 is not documented and needs review
        "documented_codes": pd.DataFrame({"code": [c for c, _, _ in EXPENDITURE_CODES[:-1]]}),
        "category_emissions": pd.DataFrame(
            list(EMISSIONS_KT.items()), columns=["category", "emissions_kt"]
        ),
        "households": households,
        "persons": persons,
    }
    paths = {}
    for name, df in tables.items():
        path = raw_dir / f"{name}.csv"
        df.to_csv(path, index=False)
        paths[name] = path
    return paths


def write_study_config(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(study_config_dict(), f)
    return path
