"""
Household emissions study source modules.
"""

from studies.household_emissions.src.bridge import (
    BridgeBuilder,
    BridgeValidationError,
    accepted_entries,
    load_bridge,
    validate_bridge,
)
from studies.household_emissions.src.multipliers import (
    IntensityTable,
    MultiplierCalculator,
    MultiplierResult,
    compute_intensities,
)
from studies.household_emissions.src.attribution import (
    ConservationError,
    ConservationReport,
    attribute_emissions,
    check_conservation,
    household_category_emissions,
    select_codes,
)
from studies.household_emissions.src.imputation import (
    AttributeImputer,
    Education,
    ImputationSpec,
    ImputedDatasets,
    reduce_to_households,
)
from studies.household_emissions.src.social_class import CLASS_LABELS, ClassAssigner
from studies.household_emissions.src.study_config import ReportMeasure, StudyConfig

__all__ = [
    # Bridge
    "BridgeBuilder",
    "BridgeValidationError",
    "accepted_entries",
    "load_bridge",
    "validate_bridge",
    # Multipliers
    "IntensityTable",
    "MultiplierCalculator",
    "MultiplierResult",
    "compute_intensities",
    # Attribution
    "ConservationError",
    "ConservationReport",
    "attribute_emissions",
    "check_conservation",
    "household_category_emissions",
    "select_codes",
    # Imputation
    "AttributeImputer",
    "Education",
    "ImputationSpec",
    "ImputedDatasets",
    "reduce_to_households",
    # Classes
    "CLASS_LABELS",
    "ClassAssigner",
    # Configuration
    "ReportMeasure",
    "StudyConfig",
]
