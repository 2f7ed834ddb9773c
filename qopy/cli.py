"""
Qopy Peer Discovery CLI

Command-line interface for advertising this device and finding peers.

Usage:
    qopy start                  # Advertise, browse, serve the REST API
    qopy discover -t 5          # Sample the network for 5 seconds
    qopy monitor                # Live event feed plus periodic status
    qopy interfaces             # List local network interfaces
    qopy config                 # Show effective configuration
"""

import asyncio
import json
import logging
import os
from dataclasses import replace
from pathlib import Path
from typing import Iterable, Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import DEFAULT_SERVICE_NAME, DiscoveryConfig, load_config
from .discovery import (
    DiscoveryErrorEvent,
    EventReceiver,
    Peer,
    PeerDiscovered,
    PeerDiscovery,
    PeerEvent,
    PeerLost,
    ServiceStarted,
    ServiceStopped,
    get_network_interfaces,
)
from .errors import InvalidConfigError, PeerDiscoveryError

console = Console()


def setup_logging(verbose: bool = False, level: str = 'INFO'):
    """Configure logging with rich output."""
    level = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)]
    )


def format_event(event: PeerEvent) -> str:
    """Render an event as a rich markup line."""
    if isinstance(event, PeerDiscovered):
        p = event.peer
        return f"[green]+ Peer discovered:[/green] [cyan]{p.name}[/cyan] at [yellow]{p.ip}:{p.port}[/yellow]"
    if isinstance(event, PeerLost):
        return f"[red]- Peer lost:[/red] [cyan]{event.peer.name}[/cyan]"
    if isinstance(event, ServiceStarted):
        return "[bold green]Service started[/bold green]"
    if isinstance(event, ServiceStopped):
        return "[bold yellow]Service stopped[/bold yellow]"
    if isinstance(event, DiscoveryErrorEvent):
        return f"[bold red]Discovery error ({event.kind.value}):[/bold red] {event.error}"
    return f"[dim]{event.type}[/dim]"


def peers_table(peers: Iterable[Peer], title: str = "Discovered Peers (LAN)") -> Table:
    table = Table(title=title)
    table.add_column("Name", style="cyan")
    table.add_column("Address", style="yellow")
    table.add_column("Type")
    table.add_column("Properties", style="dim")

    for p in sorted(peers, key=lambda p: p.name):
        props = ", ".join(f"{k}={v}" for k, v in sorted(p.properties.items()))
        table.add_row(p.name, f"{p.ip}:{p.port}", p.device_type, props)

    return table


async def print_events(receiver: EventReceiver):
    """Print events until the receiver is closed."""
    async for event in receiver:
        console.print(format_event(event))


def run_async(coro):
    """Run a command coroutine, mapping discovery errors to CLI errors."""
    try:
        asyncio.run(coro)
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutting down...[/yellow]")
    except PeerDiscoveryError as e:
        raise click.ClickException(f"{e.kind.value}: {e}")


@click.group()
@click.version_option(__version__, prog_name="qopy")
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False, path_type=Path),
              default=None, help='JSON config file')
@click.option('--name', default=None, help='Service instance name')
@click.option('--type', 'device_type', default=None, help='Device type (TXT property)')
@click.option('--port', type=int, default=None, help='Advertised service port')
@click.option('--service-type', default=None, help='mDNS service type')
@click.pass_context
def cli(ctx, verbose, config_path, name, device_type, port, service_type):
    """Qopy - find devices on your local network over mDNS."""
    try:
        config = load_config(config_path)

        overrides = {}
        if name:
            overrides['service_name'] = name
        elif config.service_name == DEFAULT_SERVICE_NAME:
            overrides['service_name'] = f"device-{os.getpid()}"
        if port is not None:
            overrides['port'] = port
        if service_type:
            overrides['service_type'] = service_type

        properties = {'version': __version__, 'device_type': 'desktop'}
        properties.update(config.properties)
        if device_type:
            properties['device_type'] = device_type
        overrides['properties'] = properties

        config = replace(config, **overrides)
    except (InvalidConfigError, json.JSONDecodeError) as e:
        raise click.ClickException(f"Invalid configuration: {e}")

    setup_logging(verbose, config.log_level)
    ctx.ensure_object(dict)
    ctx.obj['config'] = config


@cli.command()
@click.option('--api-port', default=8000, help='REST API port')
@click.option('--no-api', is_flag=True, help='Disable REST API')
@click.pass_context
def start(ctx, api_port, no_api):
    """Advertise this device and track peers until Ctrl+C."""
    config: DiscoveryConfig = ctx.obj['config']

    async def run():
        discovery = PeerDiscovery(config)
        printer = asyncio.create_task(print_events(discovery.subscribe()))

        try:
            await discovery.start()

            console.print(Panel.fit(
                f"[bold green]Peer Discovery Started[/bold green]\n\n"
                f"Name: [cyan]{config.service_name}[/cyan]\n"
                f"Service Type: [yellow]{config.service_type}[/yellow]\n"
                f"Port: [yellow]{config.port}[/yellow]",
                title="Service Info"
            ))

            if not no_api:
                console.print(f"\n[dim]REST API available at http://localhost:{api_port}[/dim]")
                console.print(f"[dim]API docs at http://localhost:{api_port}/docs[/dim]\n")

                from .api import run_api_server
                await run_api_server(discovery, port=api_port)
            else:
                console.print("\n[dim]Press Ctrl+C to stop[/dim]\n")
                while True:
                    await asyncio.sleep(1)
        finally:
            await discovery.close()
            await printer
            console.print("[green]Discovery stopped[/green]")

    run_async(run())


@cli.command()
@click.option('--timeout', '-t', type=float, default=None,
              help='Seconds to wait (default: discovery_timeout)')
@click.pass_context
def discover(ctx, timeout):
    """Sample the network for a fixed time and list peers."""
    config: DiscoveryConfig = ctx.obj['config']

    async def run():
        discovery = PeerDiscovery(config)
        try:
            wait = config.discovery_timeout if timeout is None else timeout
            with console.status(f"Discovering peers for {wait}s..."):
                peers = await discovery.discover_peers(timeout)
        finally:
            await discovery.close()

        if not peers:
            console.print("[yellow]No peers found[/yellow]")
        else:
            console.print(peers_table(peers))

    run_async(run())


@cli.command()
@click.option('--duration', '-d', type=float, default=60.0, help='Seconds to run')
@click.option('--interval', '-i', type=float, default=10.0, help='Seconds between status reports')
@click.pass_context
def monitor(ctx, duration, interval):
    """Watch peers come and go, with periodic status reports."""
    config: DiscoveryConfig = ctx.obj['config']

    async def status_loop(discovery: PeerDiscovery):
        while True:
            await asyncio.sleep(interval)
            peers = await discovery.get_peers()
            console.print(f"[bold]Status:[/bold] {len(peers)} peers currently online")
            if peers:
                console.print(peers_table(peers, title="Active Peers"))

    async def run():
        print_interfaces(get_network_interfaces(), include_loopback=False)

        discovery = PeerDiscovery(config)
        printer = asyncio.create_task(print_events(discovery.subscribe()))
        status = None

        try:
            await discovery.start()
            status = asyncio.create_task(status_loop(discovery))
            console.print(f"[dim]Running network monitor for {duration}s...[/dim]")
            await asyncio.sleep(duration)
        finally:
            if status is not None:
                status.cancel()
            await discovery.close()
            await printer

    run_async(run())


def print_interfaces(interfaces, include_loopback: bool = True):
    table = Table(title="Network Interfaces")
    table.add_column("Interface", style="cyan")
    table.add_column("Address", style="yellow")
    table.add_column("Loopback")

    for iface in interfaces:
        if iface.is_loopback and not include_loopback:
            continue
        table.add_row(iface.name, iface.ip, "yes" if iface.is_loopback else "")

    console.print(table)


@cli.command()
@click.option('--all', 'show_all', is_flag=True, help='Include loopback addresses')
def interfaces(show_all):
    """List local network interfaces."""
    try:
        found = get_network_interfaces()
    except PeerDiscoveryError as e:
        raise click.ClickException(str(e))
    print_interfaces(found, include_loopback=show_all)


@cli.command('config')
@click.option('--save', 'save_path', type=click.Path(dir_okay=False, path_type=Path),
              default=None, help='Write the configuration to this file')
@click.pass_context
def show_config(ctx, save_path: Optional[Path]):
    """Show the effective configuration."""
    config: DiscoveryConfig = ctx.obj['config']
    console.print_json(data=config.to_dict())
    if save_path:
        config.save(save_path)
        console.print(f"[green]Saved to {save_path}[/green]")


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
