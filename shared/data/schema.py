"""
Table schemas checked at load time.

Each pipeline stage reads and writes tables with a fixed set of columns.
Schemas are validated once when a table is loaded so that downstream code
can rely on the columns and their types without re-checking.
"""

import logging
from dataclasses import dataclass, field
from typing import Literal

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

ColumnKind = Literal["string", "numeric", "bool", "any"]

_TRUE_STRINGS = {"true", "t", "yes", "y", "1"}
_FALSE_STRINGS = {"false", "f", "no", "n", "0", ""}


class SchemaError(ValueError):
    """Raised when a table does not match its schema."""


@dataclass(frozen=True)
class ColumnSpec:
    """A required column and the kind of values it holds."""

    name: str
    kind: ColumnKind = "any"
    nullable: bool = True


@dataclass(frozen=True)
class TableSchema:
    """
    Fixed schema for one pipeline table.

    Attributes:
        name: Table name used in error messages
        columns: Required columns
        key: Columns whose combined values must be unique
        positive: Numeric columns that must be strictly positive
    """

    name: str
    columns: tuple[ColumnSpec, ...]
    key: tuple[str, ...] = ()
    positive: tuple[str, ...] = ()

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    def validate(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Check and coerce a DataFrame against this schema.

        String columns are stripped, boolean columns accept common spreadsheet
        spellings, numeric columns are converted with ``pd.to_numeric``.

        Returns:
            A coerced copy of ``df``

        Raises:
            SchemaError: If columns are missing, mistyped, null where not
                allowed, duplicated on the key, or non-positive where required
        """
        missing = [c for c in self.column_names if c not in df.columns]
        if missing:
            raise SchemaError(
                f"Table '{self.name}' is missing columns {missing}. "
                f"Available: {list(df.columns)}"
            )

        out = df.copy()
        problems: list[str] = []

        for spec in self.columns:
            col = out[spec.name]
            if spec.kind == "string":
                out[spec.name] = _coerce_string(col)
            elif spec.kind == "numeric":
                converted = pd.to_numeric(col, errors="coerce")
                bad = converted.isna() & col.notna()
                if bad.any():
                    problems.append(
                        f"column '{spec.name}' has {int(bad.sum())} non-numeric values"
                    )
                out[spec.name] = converted
            elif spec.kind == "bool":
                if not spec.nullable and _blank(col).any():
                    problems.append(
                        f"column '{spec.name}' has {int(_blank(col).sum())} missing values"
                    )
                    continue
                try:
                    out[spec.name] = _coerce_bool(col)
                except ValueError as e:
                    problems.append(f"column '{spec.name}': {e}")
                    continue

            if not spec.nullable and out[spec.name].isna().any():
                n_null = int(out[spec.name].isna().sum())
                problems.append(f"column '{spec.name}' has {n_null} missing values")

        if self.key:
            dup = out.duplicated(subset=list(self.key), keep=False)
            if dup.any():
                problems.append(
                    f"key {list(self.key)} is not unique ({int(dup.sum())} duplicated rows)"
                )

        for name in self.positive:
            values = pd.to_numeric(out[name], errors="coerce")
            if (values <= 0).any():
                problems.append(f"column '{name}' must be > 0")

        if problems:
            raise SchemaError(f"Table '{self.name}' failed validation: " + "; ".join(problems))

        logger.debug(f"Validated table '{self.name}' ({len(out)} rows)")
        return out


def _coerce_string(col: pd.Series) -> pd.Series:
    """Convert to stripped strings, keeping missing values missing."""
    result = col.astype("string").str.strip()
    return result.mask(result == "", pd.NA)


def _blank(col: pd.Series) -> pd.Series:
    """Missing or whitespace-only cells."""
    return col.isna() | (col.astype(str).str.strip() == "")


def _coerce_bool(col: pd.Series) -> pd.Series:
    """Parse spreadsheet booleans; blanks in nullable columns read as false."""
    if pd.api.types.is_bool_dtype(col):
        return col.astype(bool)

    def parse(value: object) -> bool:
        if pd.isna(value):
            return False
        if isinstance(value, (bool, np.bool_, int, np.integer, float)):
            if value in (0, 1):
                return bool(value)
            raise ValueError(f"cannot interpret {value!r} as boolean")
        text = str(value).strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
        raise ValueError(f"cannot interpret {value!r} as boolean")

    return col.map(parse).astype(bool)


# =============================================================================
# Pipeline table schemas
# =============================================================================

EXPENDITURE_LABELS = TableSchema(
    name="expenditure_labels",
    columns=(
        ColumnSpec("code", "string", nullable=False),
        ColumnSpec("label", "string"),
    ),
    key=("code",),
)

CATEGORY_LABELS = TableSchema(
    name="category_labels",
    columns=(
        ColumnSpec("category", "string", nullable=False),
        ColumnSpec("label", "string"),
    ),
    key=("category",),
)

DOCUMENTED_CODES = TableSchema(
    name="documented_codes",
    columns=(ColumnSpec("code", "string", nullable=False),),
)

BRIDGE = TableSchema(
    name="bridge",
    columns=(
        ColumnSpec("code", "string", nullable=False),
        ColumnSpec("label", "string"),
        ColumnSpec("category", "string", nullable=False),
        ColumnSpec("category_label", "string"),
        ColumnSpec("distance", "numeric"),
        ColumnSpec("documented", "bool"),
        ColumnSpec("use", "bool", nullable=False),
    ),
)

CATEGORY_EMISSIONS = TableSchema(
    name="category_emissions",
    columns=(
        ColumnSpec("category", "string", nullable=False),
        ColumnSpec("emissions_kt", "numeric", nullable=False),
    ),
    key=("category",),
)

INTENSITIES = TableSchema(
    name="intensities",
    columns=(
        ColumnSpec("category", "string", nullable=False),
        ColumnSpec("expenditure", "numeric", nullable=False),
        ColumnSpec("emissions_kt", "numeric", nullable=False),
        ColumnSpec("intensity", "numeric", nullable=False),
    ),
    key=("category",),
)

CLASSES = TableSchema(
    name="classes",
    columns=(
        ColumnSpec("imputation", "numeric", nullable=False),
        ColumnSpec("case", "any", nullable=False),
        ColumnSpec("social_class", "string"),
    ),
    key=("imputation", "case"),
)


def household_schema(
    codes: list[str],
    case: str = "case",
    weight: str = "weight",
    income: str = "income",
    extra: tuple[str, ...] = (),
) -> TableSchema:
    """Schema for the wide household table (one numeric column per code)."""
    columns = [
        ColumnSpec(case, "any", nullable=False),
        ColumnSpec(weight, "numeric", nullable=False),
        ColumnSpec(income, "numeric"),
    ]
    columns += [ColumnSpec(code, "numeric") for code in codes]
    columns += [ColumnSpec(name, "any") for name in extra]
    return TableSchema(
        name="households",
        columns=tuple(columns),
        key=(case,),
        positive=(weight,),
    )


def person_schema(
    education: str,
    schooling: str,
    predictors: list[str],
    case: str = "case",
    person: str = "person",
) -> TableSchema:
    """Schema for the person-level table used by the imputer."""
    columns = [
        ColumnSpec(case, "any", nullable=False),
        ColumnSpec(person, "any", nullable=False),
        ColumnSpec(education, "numeric"),
        ColumnSpec(schooling, "numeric"),
    ]
    columns += [ColumnSpec(p, "numeric") for p in predictors]
    return TableSchema(name="persons", columns=tuple(columns), key=(case, person))


def emissions_schema(codes: list[str], case: str = "case") -> TableSchema:
    """Schema for the per-household, per-code emissions table."""
    columns = [ColumnSpec(case, "any", nullable=False)]
    columns += [ColumnSpec(code, "numeric", nullable=False) for code in codes]
    return TableSchema(name="emissions", columns=tuple(columns), key=(case,))
