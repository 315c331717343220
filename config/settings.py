"""
Household emissions study settings.
"""

from pathlib import Path
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Directories
    project_root: Path = Field(
        default_factory=lambda: Path(__file__).parent.parent,
        description="Project root directory",
    )
    data_dir: Path = Field(default=Path("data"), description="Data directory")
    output_dir: Path = Field(default=Path("outputs"), description="Output directory")
    study_config_path: Path = Field(
        default=Path("config/household_emissions.yaml"),
        description="Study configuration (column mappings, predictors, report measures)",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    # Units
    weeks_per_year: int = Field(
        default=52, description="Annualisation factor for weekly diary expenditure"
    )
    emissions_unit_scale: float = Field(
        default=1000.0,
        description=(
            "Scale applied to kt / (weighted annual expenditure). Weights are in "
            "thousands of households, so kt->kg (1e6) over weights (1e3) leaves 1000"
        ),
    )
    conservation_rtol: float = Field(
        default=1e-6, description="Relative tolerance for the attribution conservation check"
    )

    # Imputation
    n_imputations: int = Field(default=6, description="Number of completed datasets (M)")
    imputation_seed: int = Field(default=20191122, description="Random seed for imputation")
    imputation_iterations: int = Field(
        default=5, description="Chained-equation iterations per completed dataset"
    )
    pmm_donors: int = Field(default=5, description="Donor pool size for predictive mean matching")

    # Class boundaries (multiples of weighted median equivalised income)
    lower_income_ratio: float = Field(
        default=0.7, description="Income ratio at or below which households are 'lower'"
    )
    upper_income_ratio: float = Field(
        default=2.0,
        description="Income ratio above which households are 'upper' (sensitivity parameter)",
    )

    @property
    def raw_data_dir(self) -> Path:
        return self.data_dir / "raw"

    @property
    def processed_data_dir(self) -> Path:
        return self.data_dir / "processed"

    @property
    def tables_dir(self) -> Path:
        return self.output_dir / "tables"

    @property
    def figures_dir(self) -> Path:
        return self.output_dir / "figures"

    def resolve(self, path: Path) -> Path:
        """Resolve a settings path relative to the project root."""
        return path if path.is_absolute() else self.project_root / path


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
