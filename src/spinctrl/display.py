"""
Display manager for Rich-based REPL output and live updates.

Handles all console output including formatted tables, status display,
and toggle-able live telemetry.
"""

import logging
from typing import Any, Optional

from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from .protocol import ResultCode

logger = logging.getLogger(__name__)


class DisplayManager:
    """Manages console output with Rich library."""

    def __init__(self, console: Optional[Console] = None):
        """Initialize display manager.

        Args:
            console: Rich Console instance (creates one if None)
        """
        self.console = console or Console()
        self.live_enabled = False
        self._live: Optional[Live] = None
        self._live_data: dict[str, Any] = {}

    def print_banner(self) -> None:
        """Print startup banner."""
        panel = Panel(
            "[bold cyan]SpinCtrl - FTMS Bike Control[/bold cyan]\n"
            "[dim]Type 'help' for commands, 'quit' to exit[/dim]",
            expand=False,
        )
        self.console.print(panel)

    def print_status(self, data: dict) -> None:
        """Display one-time telemetry table.

        Args:
            data: Status dict from BikeController.get_status()
        """
        self.console.print(self.format_status_table(data))

    def print_result(self, cmd: str, result: ResultCode) -> None:
        """Display command result.

        Args:
            cmd: Command name
            result: ResultCode enum
        """
        if result == ResultCode.SUCCESS:
            self.console.print(f"[green]✓[/green] {cmd} succeeded", highlight=False)
        elif result == ResultCode.NOT_SUPPORTED:
            self.console.print(
                f"[yellow]⚠[/yellow] {cmd} not supported by device",
                highlight=False,
            )
        elif result == ResultCode.INVALID_PARAMETER:
            self.console.print(f"[red]✗[/red] {cmd} invalid parameter", highlight=False)
        elif result == ResultCode.NOT_PERMITTED:
            self.console.print(f"[red]✗[/red] {cmd} not permitted", highlight=False)
        else:
            self.console.print(f"[red]✗[/red] {cmd} failed", highlight=False)

    def print_error(self, message: str) -> None:
        self.console.print(f"[red]Error:[/red] {message}", highlight=False)

    def print_info(self, message: str) -> None:
        self.console.print(f"[cyan]Info:[/cyan] {message}", highlight=False)

    def print_help(self, commands: list) -> None:
        """Display command reference.

        Args:
            commands: List of Command objects
        """
        table = Table(title="Available Commands", show_header=True)
        table.add_column("Command", style="cyan")
        table.add_column("Aliases", style="magenta")
        table.add_column("Description", style="white")
        table.add_column("Usage", style="yellow")

        for cmd in commands:
            aliases = ", ".join(cmd.aliases) if cmd.aliases else "-"
            table.add_row(cmd.name, aliases, cmd.description, cmd.usage)

        self.console.print(table)
        self.console.print(
            "[dim]Keyboard shortcuts: Ctrl+C to interrupt, Ctrl+D to exit[/dim]"
        )

    def start_live(self) -> None:
        """Start live display refresh mode."""
        if self.live_enabled:
            return

        self.live_enabled = True
        self._live_data = {"status": "Waiting for data..."}
        self._live = Live(
            self.format_status_table(self._live_data),
            console=self.console,
            refresh_per_second=2,
        )
        self._live.start()
        self.console.print("[dim]Live display enabled ['live' to disable][/dim]")

    def stop_live(self) -> None:
        """Stop live display refresh mode."""
        if not self.live_enabled:
            return

        self.live_enabled = False
        if self._live is not None:
            self._live.stop()
            self._live = None

    def update_live(self, data: dict) -> None:
        """Update live display with a new status dict."""
        if not self.live_enabled or self._live is None:
            return

        self._live_data.update(data)
        try:
            self._live.update(self.format_status_table(self._live_data))
        except Exception as e:
            logger.error(f"Live update error: {e}")

    def toggle_live(self) -> bool:
        """Toggle live display on/off.

        Returns:
            New live display state (True = on, False = off)
        """
        if self.live_enabled:
            self.stop_live()
        else:
            self.start_live()
        return self.live_enabled

    def format_status_table(self, data: dict) -> Table:
        """Create Rich Table for telemetry display.

        Args:
            data: Dictionary with status and TelemetryRecord fields

        Returns:
            Rich Table object
        """
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="yellow")

        table.add_row("Status", str(data.get("status", "UNKNOWN")))
        table.add_row("Speed", self.format_speed(data.get("speed", 0.0)))
        table.add_row("Cadence", self.format_cadence(data.get("cadence", 0.0)))
        table.add_row("Power", f"{data.get('power', 0)} W")
        table.add_row("Resistance", f"{data.get('resistance', 0.0):g}")
        table.add_row("Distance", self.format_distance(data.get("distance", 0.0)))
        table.add_row("Heart rate", f"{data.get('heart_rate', 0.0):.0f} bpm")
        table.add_row("Calories", self.format_energy(data.get("calories", 0.0)))
        table.add_row("Time", self.format_time(data.get("time", 0)))

        return table

    @staticmethod
    def format_time(seconds: int) -> str:
        """Convert seconds to MM:SS format."""
        seconds = int(seconds)
        mins = seconds // 60
        secs = seconds % 60
        return f"{mins}:{secs:02d}"

    @staticmethod
    def format_speed(km_h: float) -> str:
        return f"{km_h:.1f} km/h"

    @staticmethod
    def format_cadence(rpm: float) -> str:
        return f"{rpm:.0f} rpm"

    @staticmethod
    def format_distance(meters: float) -> str:
        """Format distance value intelligently.

        Args:
            meters: Distance in meters

        Returns:
            Formatted distance (km if >1000m, otherwise m)
        """
        if meters >= 1000:
            return f"{meters / 1000:.2f} km"
        return f"{meters:.0f} m"

    @staticmethod
    def format_energy(kcal: float) -> str:
        return f"{kcal:.0f} kcal"
