"""
Command definitions and auto-completion for REPL.

Defines all available commands with metadata and provides a completer
for prompt_toolkit auto-completion.
"""

from dataclasses import dataclass
from typing import Any, List

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document


@dataclass
class Command:
    """Command definition with metadata."""

    name: str
    aliases: List[str]
    description: str
    usage: str
    handler: str


COMMANDS = [
    Command(
        name="connect",
        aliases=["c"],
        description="Discover and connect to the bike",
        usage="connect",
        handler="cmd_connect",
    ),
    Command(
        name="disconnect",
        aliases=["dc"],
        description="Disconnect from the bike",
        usage="disconnect",
        handler="cmd_disconnect",
    ),
    Command(
        name="cadence",
        aliases=["cad"],
        description="Set target cadence in rpm",
        usage="cadence <rpm>",
        handler="cmd_cadence",
    ),
    Command(
        name="power",
        aliases=["pw"],
        description="Set target power in watts",
        usage="power <watts>",
        handler="cmd_power",
    ),
    Command(
        name="start",
        aliases=["s"],
        description="Start or resume the workout",
        usage="start",
        handler="cmd_start",
    ),
    Command(
        name="stop",
        aliases=["x"],
        description="Stop the workout",
        usage="stop",
        handler="cmd_stop",
    ),
    Command(
        name="pause",
        aliases=["p"],
        description="Pause the workout",
        usage="pause",
        handler="cmd_pause",
    ),
    Command(
        name="status",
        aliases=["st"],
        description="Show current telemetry",
        usage="status",
        handler="cmd_status",
    ),
    Command(
        name="live",
        aliases=["l"],
        description="Toggle live telemetry display",
        usage="live",
        handler="cmd_live",
    ),
    Command(
        name="help",
        aliases=["h", "?"],
        description="Show all available commands",
        usage="help",
        handler="cmd_help",
    ),
    Command(
        name="quit",
        aliases=["q", "exit"],
        description="Exit the REPL",
        usage="quit",
        handler="cmd_quit",
    ),
]

# Commands whose argument is a level in [1, max_level]
LEVEL_COMMANDS = ("cadence", "cad", "power", "pw")


def get_command(name: str) -> Command | None:
    """Get command by name or alias.

    Args:
        name: Command name or alias

    Returns:
        Command object if found, None otherwise
    """
    for cmd in COMMANDS:
        if cmd.name == name or name in cmd.aliases:
            return cmd
    return None


class CommandCompleter(Completer):
    """Auto-completion for commands and level arguments."""

    def __init__(self, max_level: int = 0) -> None:
        self.max_level = max_level
        self._command_names = {cmd.name for cmd in COMMANDS}
        self._command_aliases = {alias for cmd in COMMANDS for alias in cmd.aliases}

    def get_completions(self, document: Document, complete_event) -> Any:  # type: ignore[no-untyped-def]
        """Get completion suggestions for current input.

        Yields:
            Completion objects for matching commands/arguments
        """
        text = document.text_before_cursor.lstrip()
        parts = text.split()

        if not text:
            return

        # Still typing the command name
        if len(parts) == 1 and not text.endswith(" "):
            partial_cmd = parts[0].lower()
            for name in sorted(self._command_names | self._command_aliases):
                if name.startswith(partial_cmd):
                    yield Completion(
                        name[len(partial_cmd) :],
                        start_position=0,
                        display=name,
                    )
            return

        if parts[0].lower() in LEVEL_COMMANDS and self.max_level > 0:
            partial = parts[1] if len(parts) > 1 and not text.endswith(" ") else ""
            for level in range(1, self.max_level + 1):
                level_str = str(level)
                if level_str.startswith(partial):
                    yield Completion(
                        level_str[len(partial) :],
                        start_position=0,
                        display=level_str,
                    )
