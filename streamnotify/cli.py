#!/usr/bin/env python3
"""Stream notification CLI.

Usage:
    streamnotify check-config PATH           - Validate a notification config file
    streamnotify replay EVENTS [--config]    - Run recorded events through the pipeline
    streamnotify serve EVENTS [--config]     - Run the full service on an event feed

Event files hold one JSON object per line:
    {"connect": "twitch", "at": 10000000}
    {"platform": "twitch", "raw": {...}}
    {"platform": "tiktok", "type": "platform:gift", "data": {...}}
    {"announce": "Stream starting!", "username": "Mod", "platform": "twitch"}
An optional "at" (ms epoch) moves the replay clock before the line runs.
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from .clock import ManualClock
from .config import get_settings
from .main import NotificationService, configure_logging
from .models import NotificationResult
from .notification_config import ConfigError, NotificationsConfig, load_notification_config

console = Console()


def _load_config(config_path: Optional[str]) -> NotificationsConfig:
    path = Path(config_path or get_settings().notification_config_path)
    try:
        return load_notification_config(path)
    except ConfigError as e:
        console.print()
        console.print(f"[red]⚠️  Invalid notification config: {e}[/red]")
        console.print()
        sys.exit(1)


def _read_events(path: Path) -> list[tuple[int, dict]]:
    events = []
    with open(path, encoding="utf-8") as f:
        for number, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError as e:
                console.print(f"[yellow]Skipping line {number}: {e}[/yellow]")
                continue
            if not isinstance(event, dict):
                console.print(f"[yellow]Skipping line {number}: not an object[/yellow]")
                continue
            events.append((number, event))
    return events


def _outcome(label: str, result: Optional[NotificationResult]) -> str:
    if label == "connect":
        return "[dim]connected[/dim]"
    if result is None:
        return "[dim]dropped (malformed)[/dim]"
    if result.suppressed:
        return f"[yellow]suppressed: {result.reason.value}[/yellow]"
    if not result.success:
        return f"[red]failed: {result.reason.value}[/red]"
    return "[green]queued[/green]"


async def _run_event(service: NotificationService, event: dict) -> tuple[str, str, Optional[NotificationResult]]:
    """Run one event line. Returns (platform, label, result)."""
    if "connect" in event:
        at = int(event.get("at", service.clock.now_ms()))
        service.transport(event["connect"]).connect(at)
        return event["connect"], "connect", None

    if "announce" in event:
        platform = event.get("platform", "twitch")
        result = await service.manager.announce(event.get("username", "Announcement"), event["announce"], platform)
        return platform, "announce", result

    platform = event.get("platform", "")
    if "raw" in event:
        return platform, "raw", await service.transport(platform).deliver(event["raw"])
    return platform, event.get("type", ""), await service.manager.handle_notification(
        event.get("type", ""), platform, event.get("data") or {}
    )


@click.group()
@click.option("--log-level", default=None, help="Logging level (defaults to settings)")
def cli(log_level: Optional[str]):
    """Stream notifications - run platform events through the overlay pipeline."""
    configure_logging(log_level or get_settings().log_level)


@cli.command("check-config")
@click.argument("path", type=click.Path(dir_okay=False))
def check_config(path: str):
    """Validate a notification config file."""
    config = _load_config(path)

    table = Table(title="Notification types")
    table.add_column("Type")
    table.add_column("Priority", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Enabled by")
    table.add_column("TTS")
    for kind, type_conf in sorted(config.types.items(), key=lambda kv: -kv[1].priority):
        table.add_row(
            f"platform:{kind.value}",
            str(type_conf.priority),
            f"{type_conf.duration}ms",
            type_conf.enabled_key,
            "yes" if type_conf.tts else "no",
        )
    console.print(table)

    spam = config.spam
    console.print(
        f"[dim]Spam detection: {'on' if spam.spam_detection_enabled else 'off'}, "
        f"window {spam.spam_detection_window}s, max {spam.max_individual_notifications} "
        f"gifts at or below {spam.low_value_threshold}[/dim]"
    )
    console.print("[green]✓ Config is valid[/green]")


@cli.command()
@click.argument("events", type=click.Path(exists=True, dir_okay=False))
@click.option("--config", "-c", "config_path", default=None, help="Notification config YAML")
@click.option("--start", default=0, type=int, help="Replay clock start (ms epoch)")
def replay(events: str, config_path: Optional[str], start: int):
    """Run recorded events through the pipeline and show the display queue."""
    config = _load_config(config_path)
    clock = ManualClock(start)
    lines = _read_events(Path(events))

    async def run() -> tuple[NotificationService, list]:
        service = NotificationService(config, clock=clock)
        rows = []
        for number, event in lines:
            if "at" in event and int(event["at"]) > clock.now_ms():
                clock.set(int(event["at"]))
            try:
                platform, label, result = await _run_event(service, event)
            except ValueError as e:
                console.print(f"[yellow]Skipping line {number}: {e}[/yellow]")
                continue
            rows.append((number, platform, label, result))
        # Let held-back gifts reach the end of their window
        clock.advance(int(config.spam.spam_detection_window * 1000))
        await service.stop()
        return service, rows

    service, rows = asyncio.run(run())

    results = Table(title="Events")
    results.add_column("Line", justify="right")
    results.add_column("Platform")
    results.add_column("Type")
    results.add_column("Outcome")
    for number, platform, label, result in rows:
        results.add_row(str(number), str(platform), label, _outcome(label, result))
    console.print(results)

    queue = Table(title="Display queue")
    queue.add_column("#", justify="right")
    queue.add_column("Priority", justify="right")
    queue.add_column("Platform")
    queue.add_column("Type")
    queue.add_column("Message")
    for position, item in enumerate(service.queue.items(), start=1):
        queue.add_row(
            str(position), str(item.priority), item.platform.value, item.type, item.data.display_message
        )
    console.print(queue)

    counts = service.manager.get_stats()["results"]
    summary = ", ".join(f"{name}: {count}" for name, count in sorted(counts.items()))
    console.print(f"[dim]{summary or 'no events'}[/dim]")


@cli.command()
@click.argument("events", type=click.Path(exists=True, dir_okay=False))
@click.option("--config", "-c", "config_path", default=None, help="Notification config YAML")
def serve(events: str, config_path: Optional[str]):
    """Run the full service (scheduler, overlay, TTS) on an event feed."""
    config = _load_config(config_path)
    lines = _read_events(Path(events))

    async def run() -> None:
        service = NotificationService(config)
        await service.start()
        try:
            for number, event in lines:
                try:
                    platform, label, result = await _run_event(service, event)
                except ValueError as e:
                    console.print(f"[yellow]Skipping line {number}: {e}[/yellow]")
                    continue
                console.print(f"{platform} {label}: {_outcome(label, result)}")
        finally:
            await service.stop()

    with console.status("[bold blue]Processing events...", spinner="dots"):
        asyncio.run(run())
    console.print("[green]✨ All events processed[/green]")


if __name__ == "__main__":
    cli()
