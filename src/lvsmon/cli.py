"""LVS Health Monitor command line interface.

Runs the monitor, validates configuration files and performs one-shot
dry-run checks of the backends.
"""

import sys
import asyncio
import logging

import click
from rich.console import Console
from rich.table import Table

from lvsmon import __version__
from lvsmon.config import ConfigError, MonitorConfig, load_config
from lvsmon.core.scheduler import SchedulingStrategy
from lvsmon.main import build_scheduler, main

console = Console()

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR']


def _load(config_file) -> MonitorConfig:
    try:
        return load_config(config_file)
    except ConfigError as e:
        console.print(f"[bold red]✗ Configuration error: {e}[/bold red]")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name='LVS Health Monitor')
def cli():
    """LVS Health Monitor.

    Keeps the LVS destination pool in sync with measured backend packet loss.
    """
    pass


@cli.command()
@click.option('--config', '-c', 'config_file', default='config.yml', help='Configuration file path')
@click.option('--strategy', '-s', type=click.Choice([s.value for s in SchedulingStrategy]),
              help='Override the scheduling strategy')
@click.option('--dry-run', is_flag=True, help='Log control-plane calls instead of running ipvsadm')
@click.option('--log-level', '-l', type=click.Choice(LOG_LEVELS, case_sensitive=False),
              default='INFO', help='Logging level')
def run(config_file, strategy, dry_run, log_level):
    """Run the health monitor until interrupted."""
    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT)
    cfg = _load(config_file)
    if strategy:
        cfg.strategy = strategy

    console.print(f"[bold green]Starting LVS Health Monitor...[/bold green]")
    console.print(f"Config: {config_file}")
    console.print(f"Backends: {', '.join(cfg.backends)}")
    if dry_run:
        console.print("[bold yellow]Dry run: ipvsadm will not be called[/bold yellow]")

    asyncio.run(main(cfg, dry_run=dry_run))
    console.print("[bold green]✓ Monitor stopped[/bold green]")


@cli.command('validate')
@click.argument('config_file', default='config.yml')
def validate_config(config_file):
    """Validate configuration file."""
    console.print(f"[bold blue]Validating configuration: {config_file}[/bold blue]")
    cfg = _load(config_file)

    table = Table(title="Configuration")
    table.add_column("Option", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Backends", ", ".join(cfg.backends))
    table.add_row("Virtual address", cfg.virtual_address)
    table.add_row("TCP services", str(len(cfg.ports.tcp)))
    table.add_row("UDP services", str(len(cfg.ports.udp)))
    table.add_row("Loss threshold", f"{cfg.loss_threshold}%")
    table.add_row("Window", f"{cfg.window_size} samples")
    table.add_row("Interval", f"{cfg.probe_interval}s")
    table.add_row("Strategy", cfg.strategy)
    console.print(table)
    console.print("[bold green]✓ Configuration is valid[/bold green]")


@cli.command()
@click.option('--config', '-c', 'config_file', default='config.yml', help='Configuration file path')
def ports(config_file):
    """Show the expanded virtual service ports."""
    cfg = _load(config_file)

    table = Table(title=f"Virtual services on {cfg.virtual_address}")
    table.add_column("Protocol", style="cyan")
    table.add_column("Specs", style="blue")
    table.add_column("Ports", style="green")
    table.add_row("TCP", " ".join(cfg.tcp_ports), str(len(cfg.ports.tcp)))
    table.add_row("UDP", " ".join(cfg.udp_ports), str(len(cfg.ports.udp)))
    console.print(table)


@cli.command()
@click.option('--config', '-c', 'config_file', default='config.yml', help='Configuration file path')
@click.option('--cycles', '-n', type=click.IntRange(min=1), default=1, help='Number of probe cycles')
def check(config_file, cycles):
    """Probe every backend and show the resulting state (dry run)."""
    cfg = _load(config_file)
    cfg.strategy = SchedulingStrategy.SEQUENTIAL.value
    scheduler = build_scheduler(cfg, dry_run=True)

    console.print(f"[bold blue]Checking {len(cfg.backends)} backends ({cycles} cycles)...[/bold blue]")
    asyncio.run(scheduler.run(max_cycles=cycles))

    table = Table(title="Backend Health")
    table.add_column("Backend", style="cyan")
    table.add_column("State", style="green")
    table.add_column("Last loss", style="yellow")
    table.add_column("Average loss", style="magenta")
    for backend, info in scheduler.membership.snapshot().items():
        state = "✓ UP" if info["state"] == "up" else "✗ DOWN"
        table.add_row(backend, state, f"{info['last_loss']}%", f"{info['average_loss']}%")
    console.print(table)


if __name__ == '__main__':
    cli()
