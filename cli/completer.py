"""Custom completer for ChunkVault CLI with folder autocompletion."""

from pathlib import Path
from typing import Iterable

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from cli.constants import COMMANDS, PATH_COMMANDS


class VaultCompleter(Completer):
    """
    Custom completer that provides:
    - Command name completion for the first token
    - Folder completion for 'backup' arguments and the 'restore' destination
    """

    def get_completions(
        self, document: Document, complete_event
    ) -> Iterable[Completion]:
        """
        Generate completions based on cursor position and context.
        """
        text = document.text_before_cursor
        tokens = text.split()

        is_typing_new_token = text.endswith(" ") or not tokens

        if not tokens or (len(tokens) == 1 and not is_typing_new_token):
            yield from self._complete_commands(tokens[0] if tokens else "")
            return

        command = tokens[0].lower()
        if command not in PATH_COMMANDS:
            return

        current_word = "" if is_typing_new_token else tokens[-1]
        if command == "restore":
            # only the destination after the timestamp is a folder
            arg_position = len(tokens) - (0 if is_typing_new_token else 1)
            if arg_position != 2:
                return

        yield from self._complete_folders(current_word)

    def _complete_commands(self, partial: str) -> Iterable[Completion]:
        """Complete command names matching the partial input."""
        partial_lower = partial.lower()
        for cmd in COMMANDS:
            if cmd.startswith(partial_lower):
                yield Completion(cmd, start_position=-len(partial))

    def _complete_folders(self, partial: str) -> Iterable[Completion]:
        """
        Complete folder paths relative to the current directory or ~.

        Hidden folders are only offered once their leading dot is typed.
        """
        head, sep, prefix = partial.rpartition("/")
        head += sep
        parent = Path(head).expanduser() if head else Path(".")

        try:
            entries = sorted(parent.iterdir())
        except OSError:
            return

        for entry in entries:
            if not entry.is_dir():
                continue
            if not entry.name.startswith(prefix):
                continue
            if entry.name.startswith(".") and not prefix.startswith("."):
                continue
            yield Completion(f"{head}{entry.name}/", start_position=-len(partial))
