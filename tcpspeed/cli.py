#!/usr/bin/env python3
"""
tcpspeed CLI

Command-line interface for measuring bandwidth against speedtest servers.

Usage:
    tcpspeed list                     # List nearby servers
    tcpspeed -n HOST:PORT upload      # Upload test
    tcpspeed -t 4 download            # Download test over 4 connections
    tcpspeed -c 5 ping                # Five ping round trips
"""

import logging
import time
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.logging import RichHandler
from rich.markup import escape

from .config import Config, load_config
from .discovery import ServerCatalog, DiscoveryError
from .transfer import (
    Direction, TransferError, TransferOrchestrator, TransferRequest,
    connect, ping,
)
from .transfer.protocol import MB

console = Console()
logger = logging.getLogger('tcpspeed')


def setup_logging(verbose: bool = False, log_file: Optional[Path] = None,
                  level_name: str = 'WARNING'):
    """Configure logging with rich output, plus an optional log file."""
    level = logging.INFO if verbose else getattr(logging, level_name.upper(), logging.WARNING)
    handlers: List[logging.Handler] = [
        RichHandler(console=console, show_time=False, show_path=False)
    ]
    if log_file:
        file_handler = logging.FileHandler(log_file, mode='a')
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s.%(msecs)03d [%(levelname)s] (%(threadName)s) %(message)s",
            datefmt="%H:%M:%S",
        ))
        handlers.append(file_handler)

    logging.basicConfig(
        level=min(level, logging.INFO) if log_file else level,
        format="%(message)s",
        handlers=handlers,
        force=True,
    )
    handlers[0].setLevel(level)


def format_rate(bits_per_second: float) -> str:
    """Format a throughput as "Mbps (MB/s)"."""
    mbps = bits_per_second / 1_000_000
    return f"{mbps:.2f} Mbps ({bits_per_second / 8 / MB:.2f} MB/s)"


def resolve_host(config: Config) -> str:
    """Pick the server to test: by id, by explicit host, or the best nearby one."""
    if config.server_id:
        catalog = ServerCatalog(timeout=config.http_timeout)
        server = catalog.find(config.server_id, use_all=config.use_all_servers)
        logger.info(f"Testing against {server.summary()} ({server.host})")
        return server.host

    if config.host:
        logger.info(f"Select server: {config.host} based on host settings")
        return config.host

    server = ServerCatalog(timeout=config.http_timeout).best()
    logger.info(f"Testing against {server.summary()} ({server.host})")
    return server.host


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Show verbose output')
@click.option('-l', '--log', 'log_file', type=click.Path(dir_okay=False, path_type=Path),
              help='Append log output to this file')
@click.option('-a', '--all', 'use_all', is_flag=True,
              help='Use all servers instead of near servers')
@click.option('-b', '--bytes', 'byte_count', type=click.IntRange(min=1),
              help='Number of bytes to test (upload/download only)')
@click.option('-i', '--id', 'server_id', help='Id of the server to test (see `list`)')
@click.option('-n', '--host', help='Hostname of the server to test (host:port)')
@click.option('-t', '--threads', type=click.IntRange(min=1),
              help='Number of parallel connections')
@click.option('-c', '--count', type=click.IntRange(min=1), help='Number of test runs')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False, path_type=Path),
              help='JSON config file')
@click.pass_context
def cli(ctx, verbose, log_file, use_all, byte_count, server_id, host, threads,
        count, config_path):
    """tcpspeed - bandwidth and latency tests against speedtest servers."""
    config = load_config(config_path)

    # Command-line options override file and environment
    if log_file:
        config.log_file = log_file
    if use_all:
        config.use_all_servers = True
    if byte_count:
        config.upload_bytes = config.download_bytes = byte_count
    if server_id:
        config.server_id = server_id
    if host:
        config.host = host
    if threads:
        config.connections = threads
    if count:
        config.count = count

    setup_logging(verbose, config.log_file, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config
    ctx.obj['verbose'] = verbose


def fail(ctx, error: Exception):
    """Report an error and exit with status 1."""
    logger.error(str(error))
    ctx.exit(1)


@cli.command('list')
@click.pass_context
def list_servers(ctx):
    """List available servers."""
    config = ctx.obj['config']
    catalog = ServerCatalog(timeout=config.http_timeout)

    try:
        servers = catalog.list(use_all=config.use_all_servers)
    except DiscoveryError as e:
        fail(ctx, e)
        return

    if not servers:
        console.print("[yellow]No servers found[/yellow]")
        return

    table = Table(title="Speedtest Servers")
    table.add_column("Id", justify="right", style="cyan")
    table.add_column("Distance", justify="right", style="yellow")
    table.add_column("Name")
    table.add_column("Sponsor", style="green")
    if ctx.obj['verbose']:
        table.add_column("Country")
        table.add_column("Location")
        table.add_column("Host", style="blue")

    for s in servers:
        row = [
            s.id,
            f"{s.distance} Km" if s.distance is not None else "-",
            f"{s.name}, {s.cc}",
            s.sponsor,
        ]
        if ctx.obj['verbose']:
            row += [s.country, f"{s.lat}°, {s.lon}°", s.host]
        table.add_row(*row)

    console.print(table)


def run_throughput(ctx, direction: Direction):
    """Run an upload or download test `count` times and print the mean."""
    config = ctx.obj['config']
    command = direction.value

    try:
        host = resolve_host(config)
        target = config.bytes_for(command)
        runs = config.runs_for(command)
        request = TransferRequest(direction, target, config.connections or 1)
    except (DiscoveryError, TransferError, ValueError) as e:
        fail(ctx, e)
        return

    logger.info(f"Test will run {runs} time(s)")
    logger.info(f"{command.capitalize()} size: {target / MB:.2f} MB")

    orchestrator = TransferOrchestrator(
        connect_timeout=config.connect_timeout,
        windows=config.sample_windows,
        watchdog=config.watchdog,
    )

    results = []
    for i in range(runs):
        try:
            if config.connections:
                result = orchestrator.run(host, request)
            else:
                connection = connect(host, timeout=config.connect_timeout)
                result = orchestrator.run_single(connection, request)
        except (TransferError, ValueError) as e:
            fail(ctx, e)
            return

        results.append(result.bits_per_second)
        logger.info(f"seq={i + 1} result={format_rate(result.bits_per_second)}")
        if i + 1 < runs:
            time.sleep(config.pause_between_runs)

    mean = sum(results) / len(results)
    console.print(Panel.fit(
        f"[bold green]{command.capitalize()} result[/bold green]\n\n"
        f"Server: [cyan]{escape(host)}[/cyan]\n"
        f"Size: [yellow]{request.effective_bytes:,} bytes[/yellow]\n"
        f"Connections: [yellow]{request.connection_count}[/yellow]\n"
        f"Runs: [yellow]{runs}[/yellow]\n\n"
        f"[bold]{format_rate(mean)}[/bold]",
        title=command.capitalize()
    ))


@cli.command()
@click.pass_context
def upload(ctx):
    """Upload test."""
    run_throughput(ctx, Direction.UPLOAD)


@cli.command()
@click.pass_context
def download(ctx):
    """Download test."""
    run_throughput(ctx, Direction.DOWNLOAD)


@cli.command('ping')
@click.pass_context
def ping_server(ctx):
    """Ping test."""
    config = ctx.obj['config']
    runs = config.runs_for('ping')

    try:
        host = resolve_host(config)
        with connect(host, timeout=config.connect_timeout) as connection:
            latencies = []
            for i in range(runs):
                latency = ping(connection)
                latencies.append(latency)
                logger.info(f"seq={i + 1} result={latency:.3f} ms")
    except (DiscoveryError, TransferError) as e:
        fail(ctx, e)
        return

    mean = sum(latencies) / len(latencies)
    console.print(Panel.fit(
        f"[bold green]Ping result[/bold green]\n\n"
        f"Server: [cyan]{escape(host)}[/cyan]\n"
        f"Runs: [yellow]{runs}[/yellow]\n"
        f"Min/Max: [yellow]{min(latencies):.3f} / {max(latencies):.3f} ms[/yellow]\n\n"
        f"[bold]{mean:.3f} ms[/bold]",
        title="Ping"
    ))


if __name__ == '__main__':
    cli()
