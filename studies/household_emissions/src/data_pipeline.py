"""
Data pipeline for the household emissions study.

Stages run in a fixed order; each reads the previous stage's output file:

    build-bridge -> (manual review) -> compute-multipliers -> attribute
    -> impute -> assign-classes -> report

A missing input names the stage that produces it.
"""

import logging
from pathlib import Path

import pandas as pd

from shared.data.base import LocalTableSource, read_table, write_table
from shared.data.data_pipeline import SharedDataPipeline
from shared.data.schema import (
    CATEGORY_EMISSIONS,
    CATEGORY_LABELS,
    CLASSES,
    DOCUMENTED_CODES,
    EXPENDITURE_LABELS,
    INTENSITIES,
    emissions_schema,
    household_schema,
    person_schema,
)
from shared.model.mi_pooling import MIAnalysis
from studies.household_emissions.src.attribution import (
    ConservationReport,
    attribute_emissions,
    check_conservation,
    household_footprints,
)
from studies.household_emissions.src.bridge import (
    BridgeBuilder,
    accepted_entries,
    apply_overrides,
    load_bridge,
    save_bridge,
)
from studies.household_emissions.src.imputation import AttributeImputer, ImputedDatasets
from studies.household_emissions.src.multipliers import (
    IntensityTable,
    MultiplierCalculator,
    MultiplierResult,
)
from studies.household_emissions.src.reporting import (
    build_report,
    class_shares,
    compare_classes,
    plot_measure,
)
from studies.household_emissions.src.social_class import CLASS_LABELS, ClassAssigner
from studies.household_emissions.src.study_config import StudyConfig

logger = logging.getLogger(__name__)

PROPOSED_BRIDGE_FILE = "bridge_proposed.xlsx"
BRIDGE_FILE = "bridge.xlsx"
INTENSITIES_FILE = "intensities.csv"
EMISSIONS_FILE = "emissions.parquet"
IMPUTED_FILE = "imputed.parquet"
CLASSES_FILE = "classes.parquet"


class HouseholdEmissionsPipeline(SharedDataPipeline):
    """
    Stage runner for the household emissions study.

    Every stage method reads its inputs from disk, writes its output and
    returns the in-memory result.
    """

    STAGES = [
        "build-bridge",
        "compute-multipliers",
        "attribute",
        "impute",
        "assign-classes",
        "report",
    ]

    def __init__(self, config: StudyConfig | None = None):
        super().__init__()
        self.config = config or StudyConfig.load()

    # -------------------------------------------------------------------------
    # Paths
    # -------------------------------------------------------------------------

    @property
    def proposed_bridge_path(self) -> Path:
        return self.processed_path(PROPOSED_BRIDGE_FILE)

    @property
    def bridge_path(self) -> Path:
        return self.processed_path(BRIDGE_FILE)

    @property
    def intensities_path(self) -> Path:
        return self.processed_path(INTENSITIES_FILE)

    @property
    def emissions_path(self) -> Path:
        return self.processed_path(EMISSIONS_FILE)

    @property
    def imputed_path(self) -> Path:
        return self.processed_path(IMPUTED_FILE)

    @property
    def classes_path(self) -> Path:
        return self.processed_path(CLASSES_FILE)

    @property
    def tables_dir(self) -> Path:
        return self.settings.resolve(self.settings.tables_dir)

    @property
    def figures_dir(self) -> Path:
        return self.settings.resolve(self.settings.figures_dir)

    # -------------------------------------------------------------------------
    # Raw inputs
    # -------------------------------------------------------------------------

    def _source(self, name: str, filename: str, schema, string_columns=()) -> pd.DataFrame:
        source = LocalTableSource(
            name,
            self.raw_path(filename),
            schema=schema,
            string_columns=string_columns,
        )
        df = source.load()
        key = schema.key[0] if schema is not None and len(schema.key) == 1 else None
        self.generate_quality_report(df, name, key=key)
        return df

    def load_expenditure_labels(self) -> pd.DataFrame:
        return self._source(
            "expenditure_labels",
            self.config.inputs.expenditure_labels,
            EXPENDITURE_LABELS,
            string_columns=("code",),
        )

    def load_categories(self) -> pd.DataFrame:
        return self._source(
            "category_labels",
            self.config.inputs.category_labels,
            CATEGORY_LABELS,
            string_columns=("category",),
        )

    def load_documented_codes(self) -> list[str]:
        df = self._source(
            "documented_codes",
            self.config.inputs.documented_codes,
            DOCUMENTED_CODES,
            string_columns=("code",),
        )
        return df["code"].tolist()

    def load_category_emissions(self) -> pd.DataFrame:
        return self._source(
            "category_emissions",
            self.config.inputs.category_emissions,
            CATEGORY_EMISSIONS,
            string_columns=("category",),
        )

    def load_households(self, codes: list[str]) -> pd.DataFrame:
        cols = self.config.columns
        extra = tuple(
            c for c in [cols.strata, cols.psu, *cols.household_extra] if c is not None
        )
        schema = household_schema(
            codes, case=cols.case, weight=cols.weight, income=cols.income, extra=extra
        )
        return self._source("households", self.config.inputs.households, schema)

    def load_persons(self) -> pd.DataFrame:
        imp = self.config.imputation
        cols = self.config.columns
        schema = person_schema(
            imp.target, imp.schooling, list(imp.predictors), case=cols.case, person=cols.person
        )
        return self._source("persons", self.config.inputs.persons, schema)

    def load_reviewed_bridge(self) -> pd.DataFrame:
        """
        The manually reviewed bridge.

        Raises:
            FileNotFoundError: If only the proposal exists
        """
        if not self.bridge_path.exists():
            raise FileNotFoundError(
                f"Reviewed bridge not found at {self.bridge_path}. Run the 'build-bridge' "
                f"stage, review {self.proposed_bridge_path.name} and save it as "
                f"{self.bridge_path.name}."
            )
        return load_bridge(self.bridge_path, self.load_categories())

    def load_intensities(self) -> IntensityTable:
        path = self.require(self.intensities_path, "compute-multipliers")
        return IntensityTable(read_table(path, INTENSITIES, string_columns=("category",)))

    def load_emissions(self, codes: list[str]) -> pd.DataFrame:
        path = self.require(self.emissions_path, "attribute")
        return read_table(path, emissions_schema(codes, case=self.config.columns.case))

    def load_imputed(self) -> ImputedDatasets:
        path = self.require(self.imputed_path, "impute")
        return ImputedDatasets.from_long(read_table(path), case=self.config.columns.case)

    def load_classes(self) -> pd.DataFrame:
        path = self.require(self.classes_path, "assign-classes")
        classes = read_table(path, CLASSES)
        classes["imputation"] = classes["imputation"].astype(int)
        classes["social_class"] = pd.Categorical(
            classes["social_class"].astype(object).where(classes["social_class"].notna(), None),
            categories=CLASS_LABELS,
            ordered=True,
        )
        return classes

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def build_bridge(self, accept: bool = False) -> pd.DataFrame:
        """
        Propose the code bridge and write it for review.

        Args:
            accept: Also save the proposal as the reviewed bridge
        """
        categories = self.load_categories()
        builder = BridgeBuilder(categories, self.load_documented_codes())
        bridge = builder.build(self.load_expenditure_labels())
        bridge = apply_overrides(bridge, self.config.bridge_overrides)

        save_bridge(bridge, self.proposed_bridge_path)
        if accept:
            logger.warning("Accepting the proposed bridge without manual review")
            save_bridge(bridge, self.bridge_path)
        return bridge

    def compute_multipliers(self) -> MultiplierResult:
        bridge = self.load_reviewed_bridge()
        codes = accepted_entries(bridge)["code"].tolist()
        households = self.load_households(codes)
        emissions = self.load_category_emissions()

        result = MultiplierCalculator(weight=self.config.columns.weight).fit(
            households, bridge, emissions
        )
        write_table(result.intensities.table, self.intensities_path)
        return result

    def attribute(self) -> tuple[pd.DataFrame, ConservationReport]:
        """Attribute emissions to households and check conservation."""
        intensities = self.load_intensities()
        bridge = self.load_reviewed_bridge()
        codes = accepted_entries(bridge)["code"].tolist()
        households = self.load_households(codes)
        cols = self.config.columns

        emissions = attribute_emissions(households, bridge, intensities, case=cols.case)
        report = check_conservation(
            emissions, households, bridge, intensities, weight=cols.weight, case=cols.case
        )
        report.validate_or_fail()

        write_table(emissions, self.emissions_path)
        return emissions, report

    def impute(self) -> ImputedDatasets:
        persons = self.load_persons()
        imputer = AttributeImputer(self.config.imputation_spec())
        imputed = imputer.impute_households(persons)
        write_table(imputed.to_long(), self.imputed_path)
        return imputed

    def assign_classes(self) -> pd.DataFrame:
        imputed = self.load_imputed()
        bridge = self.load_reviewed_bridge()
        households = self.load_households(accepted_entries(bridge)["code"].tolist())
        cols = self.config.columns
        design_cols = [cols.case, cols.weight, cols.income]
        merged = imputed.merge(households[design_cols])

        assigner = ClassAssigner(
            income=cols.income,
            education=self.config.imputation.target,
            weight=cols.weight,
            case=cols.case,
        ).fit(merged.original)
        classes = assigner.assign_all(merged.datasets)

        out = classes.copy()
        out["social_class"] = out["social_class"].astype(object)
        write_table(out, self.classes_path)
        return classes

    def analysis_datasets(self) -> list[pd.DataFrame]:
        """
        Household analysis tables, one per dataset (original first).

        Columns: household columns, education, social_class, weekly accepted
        expenditure, ``total`` weekly emissions and configured roll-ups.
        """
        cols = self.config.columns
        bridge = self.load_reviewed_bridge()
        codes = accepted_entries(bridge)["code"].tolist()
        households = self.load_households(codes)
        emissions = self.load_emissions(codes)
        imputed = self.load_imputed()
        classes = self.load_classes()

        footprints = household_footprints(
            emissions, bridge, self.config.footprint_categories, case=cols.case
        )
        base = households.drop(columns=codes)
        base["expenditure"] = households[codes].fillna(0.0).sum(axis=1)
        base = base.merge(footprints, on=cols.case, how="left", validate="one_to_one")

        datasets = []
        for i, dataset in enumerate(imputed.merge(base).datasets):
            labels = classes.loc[classes["imputation"] == i, [cols.case, "social_class"]]
            datasets.append(dataset.merge(labels, on=cols.case, how="left", validate="one_to_one"))
        return datasets

    def report(self) -> dict[str, pd.DataFrame]:
        """Pooled estimates, class shares and comparisons; tables and figures."""
        cols = self.config.columns
        spec = self.config.report
        datasets = self.analysis_datasets()

        analysis = MIAnalysis(datasets[1:], cols.weight, strata=cols.strata, psu=cols.psu)
        tables = {
            "estimates": build_report(analysis, spec.measures, by=spec.by, alpha=spec.alpha),
            "class_shares": class_shares(analysis, by=spec.by, alpha=spec.alpha).reset_index(),
            "comparisons": compare_classes(
                analysis, spec.measures, spec.comparisons, by=spec.by, alpha=spec.alpha
            ),
        }
        for name, table in tables.items():
            write_table(table, self.tables_dir / f"{name}.csv")

        labels = {m.name: m.display_name for m in spec.measures}
        for name in spec.plots:
            plot_measure(
                tables["estimates"],
                name,
                path=self.figures_dir / f"{name}.png",
                title=labels.get(name, name),
            )
        return tables

    def run_all(self, accept_bridge: bool = False) -> dict[str, pd.DataFrame]:
        """
        Run every stage in order.

        Without ``accept_bridge`` an existing reviewed bridge is required
        after the proposal is written.
        """
        self.build_bridge(accept=accept_bridge)
        self.compute_multipliers()
        self.attribute()
        self.impute()
        self.assign_classes()
        return self.report()


def run_pipeline(accept_bridge: bool = False) -> dict[str, pd.DataFrame]:
    """Run the complete household emissions pipeline."""
    pipeline = HouseholdEmissionsPipeline()
    tables = pipeline.run_all(accept_bridge=accept_bridge)
    pipeline.print_quality_summary()
    return tables
