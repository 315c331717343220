"""
CLI for the Household Consumption Emissions study.

Usage:
    emissions build-bridge
    emissions check-bridge
    emissions compute-multipliers
    emissions attribute
    emissions impute
    emissions assign-classes
    emissions report
    emissions run-all
    emissions quality-report
"""

import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

app = typer.Typer(
    name="emissions",
    help="Household consumption emissions by social class",
)
console = Console()


def setup_logging(level: str = "INFO") -> None:
    """Configure logging with rich output."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _pipeline(config: Optional[Path]):
    from studies.household_emissions.src.data_pipeline import HouseholdEmissionsPipeline
    from studies.household_emissions.src.study_config import StudyConfig

    return HouseholdEmissionsPipeline(StudyConfig.load(config))


def _fail(message: str) -> None:
    console.print(f"[red]{message}[/red]")
    raise typer.Exit(1)


def _print_frame(df, title: str, float_format: str = "{:,.4f}") -> None:
    table = Table(title=title)
    for col in df.columns:
        table.add_column(str(col), style="cyan" if col == df.columns[0] else "white")
    for _, row in df.iterrows():
        table.add_row(*[
            float_format.format(v) if isinstance(v, float) else str(v) for v in row
        ])
    console.print(table)


ConfigOption = typer.Option(None, "--config", help="Study configuration YAML")


@app.command()
def build_bridge(
    config: Optional[Path] = ConfigOption,
    accept: bool = typer.Option(
        False, help="Also save the proposal as the reviewed bridge (skips manual review)"
    ),
):
    """Propose expenditure code -> COICOP category matches for review."""
    setup_logging()
    from studies.household_emissions.src.bridge import summarise_bridge

    try:
        pipeline = _pipeline(config)
        bridge = pipeline.build_bridge(accept=accept)
    except FileNotFoundError as e:
        _fail(str(e))

    console.print(summarise_bridge(bridge).summary())
    console.print(f"\nProposal written to {pipeline.proposed_bridge_path}")
    if not accept:
        console.print(
            f"[yellow]Review it and save as {pipeline.bridge_path} before "
            "running 'compute-multipliers'.[/yellow]"
        )


@app.command()
def check_bridge(config: Optional[Path] = ConfigOption):
    """Validate the reviewed bridge and summarise it."""
    setup_logging()
    from studies.household_emissions.src.bridge import BridgeValidationError, summarise_bridge
    from shared.data.schema import SchemaError

    try:
        bridge = _pipeline(config).load_reviewed_bridge()
    except (FileNotFoundError, BridgeValidationError, SchemaError) as e:
        _fail(str(e))

    console.print(summarise_bridge(bridge).summary())
    console.print("[green]Bridge is valid.[/green]")


@app.command()
def compute_multipliers(config: Optional[Path] = ConfigOption):
    """Compute emission intensities per category."""
    setup_logging()
    from studies.household_emissions.src.bridge import BridgeValidationError

    try:
        pipeline = _pipeline(config)
        result = pipeline.compute_multipliers()
    except (FileNotFoundError, BridgeValidationError) as e:
        _fail(str(e))

    console.print(result.summary())
    console.print(f"\nSaved intensities to {pipeline.intensities_path}")


@app.command()
def attribute(config: Optional[Path] = ConfigOption):
    """Attribute emissions to households and check conservation."""
    setup_logging()
    from studies.household_emissions.src.attribution import ConservationError

    try:
        pipeline = _pipeline(config)
        emissions, report = pipeline.attribute()
    except (FileNotFoundError, ConservationError) as e:
        _fail(str(e))

    console.print(report.summary())
    console.print(f"\nSaved emissions for {len(emissions):,} households to {pipeline.emissions_path}")


@app.command()
def impute(config: Optional[Path] = ConfigOption):
    """Multiply impute missing education (predictive mean matching)."""
    setup_logging()
    try:
        pipeline = _pipeline(config)
        imputed = pipeline.impute()
    except FileNotFoundError as e:
        _fail(str(e))

    target = pipeline.config.imputation.target
    n_missing = int(imputed.original[target].isna().sum())
    console.print(
        f"Imputed {imputed.n_imputations} datasets for {len(imputed.original):,} households "
        f"({n_missing:,} with missing {target} in the original)"
    )
    console.print(f"Saved to {pipeline.imputed_path}")


@app.command()
def assign_classes(config: Optional[Path] = ConfigOption):
    """Assign social class labels in every dataset."""
    setup_logging()
    from studies.household_emissions.src.social_class import class_counts

    try:
        pipeline = _pipeline(config)
        classes = pipeline.assign_classes()
    except FileNotFoundError as e:
        _fail(str(e))

    _print_frame(class_counts(classes).reset_index(), "Households by class", "{:,.0f}")
    console.print(f"Saved to {pipeline.classes_path}")


@app.command()
def report(config: Optional[Path] = ConfigOption):
    """Pooled survey estimates by class, comparisons and figures."""
    setup_logging()
    try:
        pipeline = _pipeline(config)
        tables = pipeline.report()
    except FileNotFoundError as e:
        _fail(str(e))

    estimates = tables["estimates"][["measure", "group", "estimate", "std_error", "ci_lower", "ci_upper"]]
    _print_frame(estimates, "Pooled estimates")
    if not tables["comparisons"].empty:
        _print_frame(tables["comparisons"], "Class comparisons")
    console.print(f"Tables written to {pipeline.tables_dir}")


@app.command()
def run_all(
    config: Optional[Path] = ConfigOption,
    accept_bridge: bool = typer.Option(
        False, help="Use the proposed bridge without manual review"
    ),
):
    """Run every stage in order."""
    setup_logging()
    from studies.household_emissions.src.attribution import ConservationError
    from studies.household_emissions.src.bridge import BridgeValidationError

    try:
        pipeline = _pipeline(config)
        tables = pipeline.run_all(accept_bridge=accept_bridge)
    except (FileNotFoundError, ConservationError, BridgeValidationError) as e:
        _fail(str(e))

    console.print(f"[green]Pipeline complete.[/green] {len(tables['estimates'])} estimates written.")
    pipeline.print_quality_summary()


@app.command()
def quality_report(config: Optional[Path] = ConfigOption):
    """Load the raw inputs and print data quality reports."""
    setup_logging()
    try:
        pipeline = _pipeline(config)
        pipeline.load_expenditure_labels()
        pipeline.load_categories()
        pipeline.load_category_emissions()
        pipeline.load_persons()
    except FileNotFoundError as e:
        _fail(str(e))

    pipeline.print_quality_summary()


if __name__ == "__main__":
    app()
