"""REPL with prompt_toolkit for user interaction."""

import os
import sys

from prompt_toolkit import PromptSession
from prompt_toolkit.history import InMemoryHistory

from cli.commands import (
    handle_backup,
    handle_clear_cache,
    handle_prune,
    handle_repopulate,
    handle_restore,
    handle_retention,
    handle_snapshots,
)
from cli.completer import VaultCompleter
from cli.constants import (
    HELP_TEXT,
    LOGO,
    PROMPT_TEXT,
    STYLE,
    WELCOME_HELP,
    WELCOME_TITLE,
)
from cli.models import (
    BackupCommand,
    ClearCacheCommand,
    CommandRequest,
    PruneCommand,
    RepopulateCommand,
    RestoreCommand,
    RetentionCommand,
    SnapshotsCommand,
)
from cli.parser import ParseError, parse_command


def clear_screen() -> None:
    """Clear the terminal screen (cross-platform)."""
    if sys.platform == "win32":
        os.system("cls")
    else:
        os.system("clear")


def show_logo() -> None:
    """Display ChunkVault logo with ANSI colors."""
    print(LOGO)


async def dispatch_command(cmd_obj: CommandRequest) -> str:
    """Dispatch parsed command to appropriate handler."""
    if isinstance(cmd_obj, BackupCommand):
        return await handle_backup(cmd_obj)
    elif isinstance(cmd_obj, SnapshotsCommand):
        return await handle_snapshots(cmd_obj)
    elif isinstance(cmd_obj, RestoreCommand):
        return await handle_restore(cmd_obj)
    elif isinstance(cmd_obj, PruneCommand):
        return await handle_prune(cmd_obj)
    elif isinstance(cmd_obj, RetentionCommand):
        return await handle_retention(cmd_obj)
    elif isinstance(cmd_obj, RepopulateCommand):
        return await handle_repopulate(cmd_obj)
    elif isinstance(cmd_obj, ClearCacheCommand):
        return await handle_clear_cache(cmd_obj)
    else:
        return f"Unknown command type: {type(cmd_obj)}"


async def run_once(user_input: str) -> str:
    """Parse and run a single command line."""
    try:
        return await dispatch_command(parse_command(user_input))
    except ParseError as e:
        return f"Error: {e}"


async def repl_loop() -> None:
    """Start interactive REPL with prompt_toolkit."""
    history = InMemoryHistory()
    session: PromptSession = PromptSession(
        completer=VaultCompleter(), history=history, style=STYLE
    )

    clear_screen()
    show_logo()
    print(WELCOME_TITLE)
    print(WELCOME_HELP)

    while True:
        try:
            user_input = await session.prompt_async([("class:prompt", PROMPT_TEXT)])

            if not user_input.strip():
                continue

            if user_input.strip() == "exit":
                print("Goodbye!")
                break

            if user_input.strip() == "help":
                print(HELP_TEXT)
                continue

            if user_input.strip() == "clear":
                clear_screen()
                show_logo()
                print(WELCOME_TITLE)
                print(WELCOME_HELP)
                continue

            cmd_obj = parse_command(user_input)
            result = await dispatch_command(cmd_obj)
            print(result)

        except ParseError as e:
            print(f"Error: {e}")
        except KeyboardInterrupt:
            continue
        except EOFError:
            print("\nGoodbye!")
            break
