"""
Command-line interface for chain game.

FEATURES:
- Any built-in variant or a JSON configuration file
- Local heuristic policies or an Ollama-hosted LLM per echelon
- Human-controlled echelons prompted every period
- Deterministic demand seeds per (variant, policy, run number)
- CSV export of the full history ledger
"""

import logging
import sys
from typing import Dict, Optional, Tuple

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .config import ChainConfig, build_config, load_config
from .data_capture import RunMetadata, export_run
from .engine.game import ChainGame, GameMessage, PeriodResult, Severity, TerminationReport
from .engine.policies import HumanPolicy, create_policy, get_policy_descriptions
from .exceptions import ChainGameError, InvalidOrderError
from .models.ollama_client import DEFAULT_BASE_URL, DEFAULT_MODEL, OllamaPolicy, check_ollama_connection
from .utils.seeding import DEFAULT_BASE_SEED, RunSeeder
from .variants import get_variant, get_variant_description, list_variants

console = Console()

SEVERITY_STYLES = {
    Severity.INFO: "blue",
    Severity.WARNING: "yellow",
    Severity.STOCKOUT: "bold red",
}

LOCAL_POLICIES = ["constant", "demand", "backlog", "orderupto", "sterman"]


def _fail(message: str) -> None:
    console.print(f"[red]❌ {escape(message)}[/red]")
    sys.exit(1)


def _apply_overrides(config: ChainConfig, periods: Optional[int], seed: int) -> ChainConfig:
    data = config.model_dump()
    data["demand"]["seed"] = seed
    if periods is not None:
        data["max_periods"] = periods
    return build_config(data)


@click.group()
def main():
    """Chain game: multi-echelon supply chain simulation"""
    pass


@main.command()
@click.option('--variant', '-V', default='beer', type=click.Choice(list_variants()), help='Built-in game variant')
@click.option('--config', 'config_path', type=click.Path(exists=True, dir_okay=False),
              help='JSON chain configuration (overrides --variant)')
@click.option('--policy', '-p', default='backlog', type=click.Choice(LOCAL_POLICIES + ['ollama']),
              help='Policy for every non-human echelon')
@click.option('--human', multiple=True, help='Echelon whose orders you enter yourself (repeatable)')
@click.option('--periods', '-r', type=int, help='Number of periods to play (default: from the configuration)')
@click.option('--seed', type=int, help='Demand seed (default: derived from variant, policy and run number)')
@click.option('--base-seed', default=DEFAULT_BASE_SEED, help=f'Base seed for deterministic seeds (default: {DEFAULT_BASE_SEED})')
@click.option('--deterministic/--fixed', default=True, help='Derive the seed per run condition (default) or use the base seed as is')
@click.option('--run-number', default=1, help='Run number for this condition (affects seed generation)')
@click.option('--timeout', default=30.0, help='Seconds to wait for all decisions of a period')
@click.option('--model', '-m', default=DEFAULT_MODEL, help='Ollama model name (with --policy ollama)')
@click.option('--base-url', default=DEFAULT_BASE_URL, help='Ollama server URL')
@click.option('--export', 'export_path', type=click.Path(dir_okay=False), help='Write the history ledger to CSV')
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
def run(variant: str, config_path: Optional[str], policy: str, human: Tuple[str, ...], periods: Optional[int],
        seed: Optional[int], base_seed: int, deterministic: bool, run_number: int, timeout: float, model: str,
        base_url: str, export_path: Optional[str], verbose: bool):
    """Play one game"""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )

    try:
        config = load_config(config_path) if config_path else get_variant(variant)
        variant_name = config.name
        policy_label = f"ollama:{model}" if policy == 'ollama' else policy
        if seed is None:
            seeder = RunSeeder(base_seed=base_seed, deterministic=deterministic)
            seed = seeder.get_seed(variant_name, policy_label, run_number)
        config = _apply_overrides(config, periods, seed)
    except ChainGameError as e:
        _fail(str(e))

    names = [e.name for e in config.echelons]
    unknown = [name for name in human if name not in names]
    if unknown:
        _fail(f"Unknown echelon(s) {unknown}; choose from {names}")

    if policy == 'ollama':
        if not check_ollama_connection(base_url):
            console.print(f"[red]❌ Cannot connect to Ollama server at {base_url}[/red]")
            console.print("Make sure Ollama is running: [cyan]ollama serve[/cyan]")
            sys.exit(1)
        console.print("[green]✅ Connected to Ollama server[/green]")

    policies = {}
    for name in names:
        if name in human:
            policies[name] = HumanPolicy(name=f"human_{name}")
        elif policy == 'ollama':
            policies[name] = OllamaPolicy(model, base_url, timeout=timeout, name=f"ollama_{model}_{name}")
        else:
            policies[name] = create_policy(policy)

    try:
        game = ChainGame(config, policies, decision_timeout=timeout)
    except ChainGameError as e:
        _fail(str(e))

    console.print(Panel(
        f"Variant: [cyan]{variant_name}[/cyan]   Periods: {config.max_periods}   "
        f"Policy: {policy_label}   Seed: {seed}\n"
        f"Chain: {' → '.join(e.label for e in config.echelons)}",
        title="🎮 Chain Game",
    ))

    try:
        while not game.is_complete():
            decisions = _prompt_decisions(game, human) if human else None
            result = game.advance_period(decisions)
            display_period(result, verbose)

        report = game.get_results()
        display_results(report)
        mode = "deterministic" if deterministic else "fixed"
        console.print(f"\n[cyan]🔄 Reproducibility: use --seed {seed} (or --base-seed {base_seed} "
                      f"--run-number {run_number} --{mode}) to reproduce this exact demand[/cyan]")

        if export_path:
            metadata = RunMetadata.from_report(report, variant_name, policy_label, run_number, seed)
            path = export_run(game, export_path, metadata)
            console.print(f"[green]💾 History saved to {path}[/green]")
    finally:
        game.close()


def _prompt_decisions(game: ChainGame, human: Tuple[str, ...]) -> Dict[str, Dict[str, int]]:
    """Ask the player for every human-controlled (echelon, resource) order"""
    decisions: Dict[str, Dict[str, int]] = {}
    for name in human:
        echelon = game.echelons[name]
        decisions[name] = {}
        for kind in echelon.stock:
            state = game.observe(name, kind)
            console.print(
                f"\n[bold]Period {state.period} - {state.role}[/bold] ({kind}): "
                f"inventory {state.inventory}, backlog {state.backlog}, "
                f"incoming order {state.incoming_order}, in transit {state.pipeline_total}"
            )
            while True:
                value = click.prompt(f"Order quantity for {kind}", type=click.IntRange(0, state.order_cap))
                try:
                    decisions[name][kind] = game.validate_order(name, value)
                    break
                except InvalidOrderError as e:
                    console.print(f"[red]{escape(str(e))}[/red]")
    return decisions


def display_period(result: PeriodResult, verbose: bool = False) -> None:
    """Print one settled period as a table plus its message feed"""
    demand = ", ".join(f"{q} {kind}" for kind, q in result.demand.items())
    table = Table(title=f"Period {result.period}  (demand: {demand})")
    table.add_column("Echelon", style="cyan")
    table.add_column("Inventory", justify="right")
    table.add_column("Backlog", justify="right")
    table.add_column("Incoming", justify="right")
    table.add_column("Shipped", justify="right")
    table.add_column("Ordered", justify="right")
    table.add_column("Cost", justify="right", style="green")
    if verbose:
        table.add_column("Rationale", style="white")

    for entry in result.entries:
        row = [
            entry.role + (" ⚠" if entry.degraded else ""),
            _fmt(entry.inventory),
            _fmt(entry.backlog),
            _fmt(entry.incoming_order),
            _fmt(entry.quantity_shipped),
            _fmt(entry.order_placed),
            f"${entry.cost:,.2f}",
        ]
        if verbose:
            row.append(escape("; ".join(text for text in entry.rationale.values() if text)))
        table.add_row(*row)
    console.print(table)

    for message in result.messages:
        if message.severity is Severity.INFO and not verbose:
            continue
        display_message(message)
    console.print(f"Total cost so far: [bold]${result.total_cost:,.2f}[/bold]")


def display_message(message: GameMessage) -> None:
    style = SEVERITY_STYLES[message.severity]
    console.print(f"[{style}]{message.severity.value.upper():>8}[/{style}] {escape(message.text)}")


def _fmt(values) -> str:
    if len(values) == 1:
        return str(next(iter(values.values())))
    return " / ".join(f"{kind} {q}" for kind, q in values.items())


def display_results(report: TerminationReport) -> None:
    """Display game results in a formatted table"""
    console.print("\n[bold blue]🏁 Game Results[/bold blue]")

    summary = report.summary()

    table = Table(title="Performance Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Total Cost", f"${summary['total_cost']:,.2f}")
    table.add_row("Cost per Period", f"${summary['cost_per_period']:,.2f}")
    table.add_row("Average Inventory", f"{summary['average_inventory']:.2f}")
    table.add_row("Average Backlog", f"{summary['average_backlog']:.2f}")
    table.add_row("Bullwhip Ratio", f"{summary['bullwhip_ratio']:.2f}")
    table.add_row("Service Level", f"{summary['service_level']:.1%}")
    table.add_row("Degraded Decisions", str(summary['degraded_decisions']))

    console.print(table)

    console.print("\n[bold]Individual Echelon Costs:[/bold]")
    cost_table = Table()
    cost_table.add_column("Echelon", style="cyan")
    cost_table.add_column("Cost", style="green")
    cost_table.add_column("% of Total", style="yellow")

    for name, cost in report.echelon_costs.items():
        percentage = (cost / report.total_cost) * 100 if report.total_cost else 0.0
        cost_table.add_row(name, f"${cost:,.2f}", f"{percentage:.1f}%")

    console.print(cost_table)


@main.command()
def variants():
    """List available game variants"""
    console.print("[bold blue]📋 Available Variants[/bold blue]")

    table = Table()
    table.add_column("Variant", style="cyan")
    table.add_column("Echelons", style="white")
    table.add_column("Periods", justify="right")
    table.add_column("Description", style="yellow")

    for name in list_variants():
        config = get_variant(name)
        table.add_row(
            name,
            " → ".join(e.label for e in config.echelons),
            str(config.max_periods),
            get_variant_description(name),
        )
    console.print(table)


@main.command()
def policies():
    """List available local policies and their descriptions"""
    console.print("[bold blue]📋 Available Policies[/bold blue]")

    table = Table()
    table.add_column("Policy", style="cyan")
    table.add_column("Description", style="white")
    for name, description in get_policy_descriptions().items():
        table.add_row(name, description)
    table.add_row("ollama", "LLM decisions from an Ollama server, with heuristic fallback")
    console.print(table)

    console.print("\n[blue]💡 Usage Examples:[/blue]")
    console.print("chain-game run --variant beer --policy sterman")
    console.print("chain-game run --variant fast_food --human dc")
    console.print("chain-game run --variant semiconductor --policy ollama --model llama3.2")


@main.command()
@click.option('--base-url', default=DEFAULT_BASE_URL, help='Ollama server URL')
def check_remote(base_url: str):
    """Check the Ollama server and list its models"""
    if not check_ollama_connection(base_url):
        console.print(f"[red]❌ Cannot connect to Ollama server at {base_url}[/red]")
        sys.exit(1)

    console.print(f"[green]✅ Connected to Ollama server at {base_url}[/green]")
    remote = OllamaPolicy(base_url=base_url)
    try:
        models = remote.list_available_models()
    finally:
        remote.close()

    if models:
        console.print("[blue]Available models:[/blue]")
        for model in models:
            console.print(f"  • {model}")
    else:
        console.print("[yellow]⚠️ No models found[/yellow]")


if __name__ == "__main__":
    main()
