"""
Study configuration loaded from YAML.

The YAML file names the raw input tables, the household and person columns,
the imputation model, manual bridge overrides and the report measures.
Unknown keys are rejected so that typos fail at start-up.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from config.settings import get_settings
from studies.household_emissions.src.imputation import ImputationSpec

logger = logging.getLogger(__name__)

STATISTICS = ("mean", "total", "ratio", "quantile")


def _check_keys(section: str, data: dict, allowed: set[str]) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValueError(f"Unknown keys in '{section}': {unknown}. Allowed: {sorted(allowed)}")


def _build(cls, section: str, data: dict | None):
    data = data or {}
    if not isinstance(data, dict):
        raise ValueError(f"Section '{section}' must be a mapping")
    _check_keys(section, data, {f.name for f in fields(cls)})
    return cls(**data)


@dataclass
class InputFiles:
    """Raw input file names, relative to the raw data directory."""

    expenditure_labels: str = "expenditure_labels.csv"
    category_labels: str = "category_labels.csv"
    documented_codes: str = "documented_codes.csv"
    category_emissions: str = "category_emissions.csv"
    households: str = "households.csv"
    persons: str = "persons.csv"


@dataclass
class ColumnMap:
    """Identifier and design columns of the household table."""

    case: str = "case"
    person: str = "person"
    weight: str = "weight"
    income: str = "income"
    strata: str | None = None
    psu: str | None = None
    household_extra: list[str] = field(default_factory=list)


@dataclass
class ImputationConfig:
    target: str = "education"
    schooling: str = "schooling"
    predictors: list[str] = field(default_factory=list)
    categorical: list[str] = field(default_factory=list)
    full_time_programs: list[int] = field(default_factory=list)


@dataclass
class ReportMeasure:
    """
    One reported statistic.

    ``expression`` is a column name or ``DataFrame.eval`` string over the
    household analysis table. Ratio measures divide the totals of
    ``expression`` and ``denominator``.
    """

    name: str
    expression: str
    statistic: str = "mean"
    denominator: str | None = None
    q: float = 0.5
    label: str | None = None

    def __post_init__(self):
        if self.statistic not in STATISTICS:
            raise ValueError(
                f"Measure '{self.name}': unknown statistic '{self.statistic}'. "
                f"Available: {list(STATISTICS)}"
            )
        if self.statistic == "ratio" and not self.denominator:
            raise ValueError(f"Measure '{self.name}': ratio needs a denominator")

    @property
    def estimator_kwargs(self) -> dict[str, Any]:
        if self.statistic == "ratio":
            return {"denominator": self.denominator}
        if self.statistic == "quantile":
            return {"q": self.q}
        return {}

    @property
    def display_name(self) -> str:
        return self.label or self.name


@dataclass
class ReportConfig:
    by: str = "social_class"
    alpha: float = 0.05
    measures: list[ReportMeasure] = field(default_factory=list)
    comparisons: list[list[str]] = field(default_factory=list)
    plots: list[str] = field(default_factory=list)


@dataclass
class StudyConfig:
    """Typed view of ``config/household_emissions.yaml``."""

    inputs: InputFiles = field(default_factory=InputFiles)
    columns: ColumnMap = field(default_factory=ColumnMap)
    imputation: ImputationConfig = field(default_factory=ImputationConfig)
    footprint_categories: list[str] = field(default_factory=list)
    bridge_overrides: list[dict] = field(default_factory=list)
    report: ReportConfig = field(default_factory=ReportConfig)

    @classmethod
    def from_dict(cls, data: dict | None) -> StudyConfig:
        data = data or {}
        _check_keys("study", data, {f.name for f in fields(cls)})

        report_data = dict(data.get("report") or {})
        measures = [
            _build(ReportMeasure, f"report.measures[{i}]", m)
            for i, m in enumerate(report_data.pop("measures", []) or [])
        ]
        report = _build(ReportConfig, "report", report_data)
        report.measures = measures

        for i, pair in enumerate(report.comparisons):
            if len(pair) != 2:
                raise ValueError(f"report.comparisons[{i}] must name exactly two groups")
        names = {m.name for m in measures}
        unknown_plots = [p for p in report.plots if p not in names]
        if unknown_plots:
            raise ValueError(f"report.plots names unknown measures: {unknown_plots}")

        for i, override in enumerate(data.get("bridge_overrides") or []):
            _check_keys(f"bridge_overrides[{i}]", override, {"code", "category", "category_label", "use"})
            if "code" not in override:
                raise ValueError(f"bridge_overrides[{i}] needs a 'code'")

        return cls(
            inputs=_build(InputFiles, "inputs", data.get("inputs")),
            columns=_build(ColumnMap, "columns", data.get("columns")),
            imputation=_build(ImputationConfig, "imputation", data.get("imputation")),
            footprint_categories=[str(c) for c in data.get("footprint_categories") or []],
            bridge_overrides=list(data.get("bridge_overrides") or []),
            report=report,
        )

    @classmethod
    def load(cls, path: Path | None = None) -> StudyConfig:
        """Load from YAML; defaults to the configured study config path."""
        settings = get_settings()
        path = settings.resolve(path or settings.study_config_path)
        if not path.exists():
            raise FileNotFoundError(f"Study configuration not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f)

        config = cls.from_dict(data)
        logger.info(f"Loaded study configuration from {path}")
        return config

    def imputation_spec(self) -> ImputationSpec:
        """ImputationSpec combining this config with settings defaults."""
        return ImputationSpec.from_settings(
            target=self.imputation.target,
            predictors=list(self.imputation.predictors),
            categorical=list(self.imputation.categorical),
            schooling=self.imputation.schooling,
            full_time_programs=list(self.imputation.full_time_programs),
            case=self.columns.case,
            person=self.columns.person,
        )
