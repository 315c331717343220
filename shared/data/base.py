"""
Base classes for local tabular data sources.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any
import logging

import pandas as pd

from config.settings import get_settings
from shared.data.schema import TableSchema

logger = logging.getLogger(__name__)

READERS = {
    ".csv": "csv",
    ".xlsx": "excel",
    ".xls": "excel",
    ".parquet": "parquet",
    ".dta": "stata",
}


@dataclass
class DataSourceMetadata:
    """Metadata about a table load."""

    source_name: str
    load_time: datetime
    path: str | None = None
    row_count: int | None = None
    columns: list[str] = field(default_factory=list)
    notes: str = ""


def read_table(
    path: Path,
    schema: TableSchema | None = None,
    string_columns: tuple[str, ...] = (),
    **kwargs: Any,
) -> pd.DataFrame:
    """
    Read a table from disk and validate it against a schema.

    Columns listed in ``string_columns`` are read as text so that codes such
    as "4.10" are not parsed as floats.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file type is not supported
        SchemaError: If the table does not match ``schema``
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Table not found: {path}")

    kind = READERS.get(path.suffix.lower())
    if kind is None:
        raise ValueError(f"Unsupported table format: {path.suffix} ({path})")

    dtype = {c: str for c in string_columns}
    if kind == "csv":
        df = pd.read_csv(path, dtype=dtype or None, **kwargs)
    elif kind == "excel":
        df = pd.read_excel(path, dtype=dtype or None, **kwargs)
    elif kind == "parquet":
        df = pd.read_parquet(path, **kwargs)
        for col in string_columns:
            if col in df.columns:
                df[col] = df[col].astype("string")
    else:
        df = pd.read_stata(path, convert_categoricals=False, **kwargs)
        for col in string_columns:
            if col in df.columns:
                df[col] = df[col].astype("string")

    logger.debug(f"Read {len(df):,} rows from {path}")

    if schema is not None:
        df = schema.validate(df)
    return df


def write_table(df: pd.DataFrame, path: Path) -> Path:
    """Write a table, choosing the format from the file suffix."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    kind = READERS.get(path.suffix.lower())
    if kind == "csv":
        df.to_csv(path, index=False)
    elif kind == "excel":
        df.to_excel(path, index=False)
    elif kind == "parquet":
        df.to_parquet(path, index=False)
    else:
        raise ValueError(f"Unsupported output format: {path.suffix} ({path})")

    logger.info(f"Saved {len(df):,} rows to {path}")
    return path


class DataSource(ABC):
    """Abstract base class for all data sources."""

    def __init__(self, data_dir: Path | None = None):
        settings = get_settings()
        self.data_dir = data_dir or settings.resolve(settings.raw_data_dir)
        self._metadata: list[DataSourceMetadata] = []

    @property
    @abstractmethod
    def source_name(self) -> str:
        """Unique identifier for this data source."""
        pass

    @abstractmethod
    def load(self, **kwargs: Any) -> pd.DataFrame:
        """Load data from the source."""
        pass

    @property
    def metadata(self) -> list[DataSourceMetadata]:
        return self._metadata

    def _record(self, df: pd.DataFrame, path: Path | None, notes: str = "") -> None:
        self._metadata.append(
            DataSourceMetadata(
                source_name=self.source_name,
                load_time=datetime.now(),
                path=str(path) if path else None,
                row_count=len(df),
                columns=list(df.columns),
                notes=notes,
            )
        )


class LocalTableSource(DataSource):
    """
    A single table stored on disk with a fixed schema.

    The schema is checked when the table is loaded, never at point of use.
    """

    def __init__(
        self,
        name: str,
        path: Path,
        schema: TableSchema | None = None,
        string_columns: tuple[str, ...] = (),
        data_dir: Path | None = None,
    ):
        super().__init__(data_dir)
        self._name = name
        self.path = Path(path) if Path(path).is_absolute() else self.data_dir / path
        self.schema = schema
        self.string_columns = string_columns

    @property
    def source_name(self) -> str:
        return self._name

    def load(self, **kwargs: Any) -> pd.DataFrame:
        logger.info(f"Loading {self.source_name} from {self.path}")
        df = read_table(self.path, self.schema, self.string_columns, **kwargs)
        self._record(df, self.path)
        return df
