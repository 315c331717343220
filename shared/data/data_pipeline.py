"""
Data pipeline orchestration for shared data infrastructure.

Holds settings, stage output locations and data quality reports.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import pandas as pd

from config.settings import get_settings

logger = logging.getLogger(__name__)


@dataclass
class DataQualityReport:
    """Report on data quality issues."""

    source: str
    total_rows: int
    missing_values: dict[str, int]
    key_column: str | None
    duplicate_keys: int
    warnings: list[str]
    timestamp: datetime


class SharedDataPipeline:
    """
    Orchestrates table loading and stage outputs.

    Study-specific pipelines extend this with their own stages.
    """

    def __init__(self):
        settings = get_settings()
        self.settings = settings
        self._quality_reports: list[DataQualityReport] = []

    def processed_path(self, filename: str) -> Path:
        """Location of a stage output under the processed data directory."""
        return self.settings.resolve(self.settings.processed_data_dir) / filename

    def raw_path(self, filename: str) -> Path:
        """Location of a raw input table."""
        return self.settings.resolve(self.settings.raw_data_dir) / filename

    def require(self, path: Path, stage: str) -> Path:
        """
        Check that an upstream stage output exists.

        Raises:
            FileNotFoundError: Naming the stage that produces ``path``
        """
        if not path.exists():
            raise FileNotFoundError(
                f"{path} not found. Run the '{stage}' stage first."
            )
        return path

    def generate_quality_report(
        self, df: pd.DataFrame, source: str, key: str | None = None
    ) -> DataQualityReport:
        """Generate data quality report for a DataFrame."""
        warnings = []

        missing = df.isnull().sum().to_dict()
        missing = {k: int(v) for k, v in missing.items() if v > 0}

        duplicate_keys = 0
        if key is not None and key in df.columns:
            duplicate_keys = int(df[key].duplicated().sum())
            if duplicate_keys:
                warnings.append(f"{duplicate_keys} duplicated values in key '{key}'")

        if missing:
            warnings.append(f"Missing values in columns: {list(missing.keys())}")

        pct_missing = df.isnull().mean().mean() * 100 if len(df.columns) else 0.0
        if pct_missing > 5:
            warnings.append(f"High overall missing rate: {pct_missing:.1f}%")

        report = DataQualityReport(
            source=source,
            total_rows=len(df),
            missing_values=missing,
            key_column=key,
            duplicate_keys=duplicate_keys,
            warnings=warnings,
            timestamp=datetime.now(),
        )

        self._quality_reports.append(report)
        return report

    def get_quality_reports(self) -> list[DataQualityReport]:
        """Get all data quality reports."""
        return self._quality_reports

    def print_quality_summary(self) -> None:
        """Print summary of data quality reports."""
        if not self._quality_reports:
            print("No quality reports generated yet.")
            return

        for report in self._quality_reports:
            print(f"\n{'='*60}")
            print(f"Data Quality Report: {report.source}")
            print(f"{'='*60}")
            print(f"Total rows: {report.total_rows:,}")
            print(f"Timestamp: {report.timestamp}")

            if report.missing_values:
                print("\nMissing values:")
                for col, count in report.missing_values.items():
                    pct = count / report.total_rows * 100 if report.total_rows else 0.0
                    print(f"  - {col}: {count:,} ({pct:.1f}%)")

            if report.warnings:
                print("\nWarnings:")
                for warning in report.warnings:
                    print(f"  ! {warning}")
