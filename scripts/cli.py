"""
Household Emissions Research: unified CLI.

Usage:
    hhemissions list-studies
    hhemissions info
    hhemissions emissions <command>
    hhemissions config show
"""

import typer
from rich.console import Console
from rich.table import Table

from studies.household_emissions.src.cli import app as emissions_app

app = typer.Typer(
    name="hhemissions",
    help="Household consumption emissions and social class",
    no_args_is_help=True,
)
config_app = typer.Typer(
    name="config",
    help="Configuration management commands",
)
app.add_typer(config_app, name="config")
app.add_typer(emissions_app, name="emissions", help="Household emissions study commands")

console = Console()


@app.command("list-studies")
def list_studies():
    """List all available research studies."""
    table = Table(title="Research Studies")

    table.add_column("Study", style="cyan", no_wrap=True)
    table.add_column("Description", style="white")
    table.add_column("Status", style="green")
    table.add_column("CLI", style="yellow")

    table.add_row(
        "household_emissions",
        "Expenditure -> COICOP -> emissions by social class",
        "Active",
        "hhemissions emissions",
    )

    console.print(table)


@app.command("info")
def info():
    """Show information about the pipeline."""
    console.print("\n[bold cyan]Household Emissions Pipeline[/bold cyan]\n")
    console.print("Version: 0.1.0")
    console.print("\n[bold]Stages (in order):[/bold]")
    console.print("  1. [cyan]build-bridge[/cyan]        - Propose code -> COICOP matches (then review)")
    console.print("  2. [cyan]compute-multipliers[/cyan] - Emission intensity per category")
    console.print("  3. [cyan]attribute[/cyan]           - Household emissions + conservation check")
    console.print("  4. [cyan]impute[/cyan]              - Multiple imputation of education")
    console.print("  5. [cyan]assign-classes[/cyan]      - Social class per household and dataset")
    console.print("  6. [cyan]report[/cyan]              - Pooled survey estimates, tables, figures\n")
    console.print("[bold]Shared Infrastructure:[/bold]")
    console.print("  - shared/data/  - Table schemas, local sources, quality reports")
    console.print("  - shared/model/ - Survey design estimators, MI pooling\n")
    console.print("[bold]Usage:[/bold]")
    console.print("  hhemissions emissions --help     Study commands")
    console.print("  hhemissions emissions run-all    Run every stage")
    console.print("  hhemissions config show          Show configuration\n")


@config_app.command("show")
def config_show():
    """Show current configuration."""
    from config.settings import get_settings

    settings = get_settings()

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="white")

    for name in type(settings).model_fields:
        table.add_row(name, str(getattr(settings, name)))
    table.add_row("", "")
    table.add_row("raw_data_dir", str(settings.resolve(settings.raw_data_dir)))
    table.add_row("processed_data_dir", str(settings.resolve(settings.processed_data_dir)))
    table.add_row("tables_dir", str(settings.resolve(settings.tables_dir)))
    table.add_row("figures_dir", str(settings.resolve(settings.figures_dir)))

    console.print(table)


if __name__ == "__main__":
    app()
