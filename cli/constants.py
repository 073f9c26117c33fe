"""CLI constants and configuration."""

from prompt_toolkit.styles import Style

COMMANDS = [
    "backup",
    "snapshots",
    "restore",
    "prune",
    "retention",
    "repopulate",
    "clear-cache",
    "clear",
    "exit",
    "help",
]

# commands whose arguments are local folders
PATH_COMMANDS = ("backup", "restore")

STYLE = Style.from_dict(
    {
        "prompt": "#2E9BF4 bold",
        "command": "#0088ff bold",
    }
)

BLUE = "\033[38;2;46;155;244m"
GREEN = "\033[32m"
RED = "\033[31m"
RESET = "\033[0m"

LOGO = f"""{BLUE}
  ██████╗██╗  ██╗██╗   ██╗███╗   ██╗██╗  ██╗██╗   ██╗ █████╗ ██╗   ██╗██╗  ████████╗
 ██╔════╝██║  ██║██║   ██║████╗  ██║██║ ██╔╝██║   ██║██╔══██╗██║   ██║██║  ╚══██╔══╝
 ██║     ███████║██║   ██║██╔██╗ ██║█████╔╝ ██║   ██║███████║██║   ██║██║     ██║
 ██║     ██╔══██║██║   ██║██║╚██╗██║██╔═██╗ ╚██╗ ██╔╝██╔══██║██║   ██║██║     ██║
 ╚██████╗██║  ██║╚██████╔╝██║ ╚████║██║  ██╗ ╚████╔╝ ██║  ██║╚██████╔╝███████╗██║
  ╚═════╝╚═╝  ╚═╝ ╚═════╝ ╚═╝  ╚═══╝╚═╝  ╚═╝  ╚═══╝  ╚═╝  ╚═╝ ╚═════╝ ╚══════╝╚═╝
{RESET}"""

WELCOME_TITLE = "ChunkVault CLI - Encrypted Deduplicating Backups"
WELCOME_HELP = "Type 'help' for commands or 'exit' to quit.\n"

PROMPT_TEXT = "chunkvault> "

CONFIG_PATH = "~/.chunkvault/config.json"

HELP_TEXT = """Available commands:
  backup [dir ...]                    Back up the given folders (default: configured sources)
  snapshots                           List snapshots that can be restored, newest first
  restore <timestamp> [dest]          Restore a snapshot (default destination: ./restore)
  prune                               Delete snapshots the retention policy no longer keeps
  retention [daily weekly monthly yearly]
                                      Show or set the retention policy
  repopulate                          Rebuild the local chunk cache from the backend
  clear-cache                         Forget all cached chunks and files
  clear                               Clear screen and redisplay welcome message
  help                                Show this help
  exit                                Exit REPL

Examples:
  backup ~/Documents ~/Pictures
  snapshots
  restore 1700000000000 ~/restored
  retention 7 4 12 2
  prune"""
