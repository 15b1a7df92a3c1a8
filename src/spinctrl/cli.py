"""
Main REPL application for FTMS bike control.

Interactive command loop with async support, auto-completion,
and live telemetry display.
"""

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from typing import Iterator, Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import FormattedText
from prompt_toolkit.history import InMemoryHistory

from .commands import COMMANDS, CommandCompleter, get_command
from .controller import BikeController
from .core import DEFAULT_MAX_LEVEL, SCAN_TIMEOUT, __description__
from .display import DisplayManager
from .factory import EquipmentKind
from .protocol import ResultCode, StopCode
from .transport import BleakTransport

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def cancel_on_interrupt(controller: BikeController) -> Iterator[None]:
    """Route Ctrl+C to the controller's shutdown signal while discovering."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, controller.cancel)
    except (NotImplementedError, RuntimeError):
        # Not supported on this platform/thread; Ctrl+C cancels the task instead
        yield
        return
    try:
        yield
    finally:
        loop.remove_signal_handler(signal.SIGINT)


class SpinCtrlREPL:
    """Interactive REPL for FTMS bike control."""

    def __init__(self, controller: BikeController) -> None:
        self.controller = controller
        self.display = DisplayManager()
        self.running = False
        self.session: PromptSession = PromptSession(
            completer=CommandCompleter(controller.max_level),
            history=InMemoryHistory(),
            enable_history_search=True,
        )
        self._update_task: Optional[asyncio.Task] = None

    async def run(self) -> None:
        """Run the main REPL loop."""
        self.running = True
        self.display.print_banner()

        await self.cmd_connect([])

        try:
            while self.running:
                try:
                    text = await self.session.prompt_async(self._get_prompt())
                    if text.strip():
                        await self._handle_input(text.strip())
                except KeyboardInterrupt:
                    self.display.console.print()
                    continue
        except EOFError:
            await self.cmd_quit([])
        finally:
            self.running = False
            await self._stop_updates()

    def _get_prompt(self) -> FormattedText:
        if self.controller.is_connected:
            name = self.controller.device_name or "bike"
            return FormattedText([("class:prompt", f"[{name}] > ")])
        return FormattedText([("class:prompt", "[disconnected] > ")])

    async def _handle_input(self, text: str) -> None:
        parts = text.split(maxsplit=1)
        cmd_name = parts[0].lower()
        args = parts[1].split() if len(parts) > 1 else []

        cmd = get_command(cmd_name)
        if not cmd:
            self.display.print_error(
                f"Unknown command: {cmd_name}. Type 'help' for available commands."
            )
            return

        handler = getattr(self, cmd.handler, None)
        if handler is None:
            self.display.print_error(f"Handler not found: {cmd.handler}")
            return

        try:
            await handler(args)
        except Exception as e:
            self.display.print_error(f"Command failed: {e}")
            logger.exception("Command exception")

    async def _update_loop(self) -> None:
        """Background task feeding the live display."""
        async for data in self.controller.get_updates():
            if self.display.live_enabled:
                self.display.update_live(data)

    async def _stop_updates(self) -> None:
        if self._update_task is None:
            return
        self._update_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._update_task
        self._update_task = None

    def _require_connection(self) -> bool:
        if not self.controller.is_connected:
            self.display.print_error("Not connected. Use 'connect' first.")
            return False
        return True

    # ========== Command Handlers ==========

    async def cmd_connect(self, args: list) -> None:
        if self.controller.is_connected:
            self.display.print_info("Already connected")
            return

        self.display.print_info("Scanning... (Ctrl+C to cancel)")
        with cancel_on_interrupt(self.controller):
            connected = await self.controller.connect()
        if not connected:
            self.display.print_error("Connection failed. Use 'connect' to retry.")
            return

        self.display.print_info(f"Connected to {self.controller.device_name}")
        if not self.controller.control_granted:
            self.display.print_info("Control refused: targets cannot be set")
        self._update_task = asyncio.create_task(self._update_loop())

    async def cmd_disconnect(self, args: list) -> None:
        if not self.controller.is_connected:
            self.display.print_info("Not connected")
            return

        self.display.stop_live()
        await self._stop_updates()
        await self.controller.disconnect()
        self.display.print_info("Disconnected")

    def _parse_level(self, args: list, label: str, unit: str) -> Optional[int]:
        if not self._require_connection():
            return None
        if not args:
            self.display.print_error(f"Usage: {label} <{unit}>")
            self.display.print_info(f"Range: 1-{self.controller.max_level}")
            return None
        try:
            return int(args[0])
        except ValueError:
            self.display.print_error(f"Invalid {label}: {args[0]}")
            return None

    async def cmd_cadence(self, args: list) -> None:
        rpm = self._parse_level(args, "cadence", "rpm")
        if rpm is not None:
            self.display.print_result("cadence", await self.controller.set_cadence(rpm))

    async def cmd_power(self, args: list) -> None:
        watts = self._parse_level(args, "power", "watts")
        if watts is not None:
            self.display.print_result("power", await self.controller.set_power(watts))

    async def cmd_start(self, args: list) -> None:
        if self._require_connection():
            self.display.print_result("start", await self.controller.start())

    async def cmd_stop(self, args: list) -> None:
        if self._require_connection():
            self.display.print_result("stop", await self.controller.stop())

    async def cmd_pause(self, args: list) -> None:
        if self._require_connection():
            self.display.print_result(
                "pause", await self.controller.stop(StopCode.PAUSE)
            )

    async def cmd_status(self, args: list) -> None:
        self.display.print_status(await self.controller.get_status())

    async def cmd_live(self, args: list) -> None:
        if self.display.toggle_live():
            self.display.update_live(await self.controller.get_status())
        else:
            self.display.print_info("Live display disabled")

    async def cmd_help(self, args: list) -> None:
        self.display.print_help(COMMANDS)

    async def cmd_quit(self, args: list) -> None:
        self.display.stop_live()
        if self.controller.is_connected:
            self.display.print_info("Disconnecting...")
            await self._stop_updates()
            await self.controller.disconnect()

        self.display.console.print("[cyan]Goodbye![/cyan]")
        self.running = False


async def run_cli_command(
    controller: BikeController, command: str, value: Optional[int] = None
) -> int:
    """Run a single CLI command and return the exit status."""
    display = DisplayManager()

    with cancel_on_interrupt(controller):
        connected = await controller.connect()
    if not connected:
        display.print_error("Failed to connect to device")
        return 1

    try:
        if command == "status":
            # Give the bike a moment to send its first notification
            await asyncio.sleep(1)
            display.print_status(await controller.get_status())
            return 0

        if command == "cadence":
            result = await controller.set_cadence(value)  # type: ignore[arg-type]
        else:
            result = await controller.set_power(value)  # type: ignore[arg-type]
        display.print_result(command, result)
        return 0 if result == ResultCode.SUCCESS else 1
    finally:
        await controller.disconnect()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description=__description__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  spinctrl                        # Interactive REPL with the iConsole 0028 bike
  spinctrl --kind debug           # Bind to any console-style BLE device
  spinctrl --kind device --status # Simulated device, print telemetry
  spinctrl --power 8              # Set target power and exit
        """,
    )
    parser.add_argument(
        "--kind",
        default=EquipmentKind.ICONSOLE_0028.value,
        choices=[kind.value for kind in EquipmentKind],
        help="Equipment kind: 28 (iConsole 0028), debug, device (simulated)",
    )
    parser.add_argument(
        "--max-level",
        type=int,
        default=DEFAULT_MAX_LEVEL,
        help=f"Upper bound for cadence and power targets (default {DEFAULT_MAX_LEVEL})",
    )
    parser.add_argument(
        "--scan-timeout",
        type=float,
        default=SCAN_TIMEOUT,
        help=f"Seconds per BLE scan (default {SCAN_TIMEOUT})",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    group = parser.add_mutually_exclusive_group()
    group.add_argument("--status", action="store_true", help="Show telemetry and exit")
    group.add_argument("--cadence", type=int, metavar="RPM", help="Set target cadence")
    group.add_argument("--power", type=int, metavar="WATTS", help="Set target power")
    return parser


def main() -> None:
    """Entry point for the spinctrl command."""
    args = build_parser().parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
    )

    controller = BikeController(
        kind=args.kind,
        max_level=args.max_level,
        transport=BleakTransport(scan_timeout=args.scan_timeout),
    )

    command: Optional[str] = None
    value: Optional[int] = None
    if args.status:
        command = "status"
    elif args.cadence is not None:
        command, value = "cadence", args.cadence
    elif args.power is not None:
        command, value = "power", args.power

    try:
        if command is None:
            asyncio.run(SpinCtrlREPL(controller).run())
        else:
            sys.exit(asyncio.run(run_cli_command(controller, command, value)))
    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(1)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
