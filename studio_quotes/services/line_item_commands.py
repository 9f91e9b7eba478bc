"""
Optimistic line-item commands.

A command is applied to the in-memory editor right away; the remote
confirmation runs afterwards and, if it fails, the editor is restored to the
snapshot taken before the command.
"""
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from studio_quotes.engine.calculator import Breakdown
from studio_quotes.engine.editor import QuoteEditor
from studio_quotes.engine.types import LineItem, QuoteState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AddLineItem:
    line: LineItem
    index: Optional[int] = None

    def apply(self, editor: QuoteEditor) -> None:
        editor.add_line(self.line, self.index)


@dataclass(frozen=True)
class RemoveLineItem:
    key: str

    def apply(self, editor: QuoteEditor) -> None:
        editor.remove_line(self.key)


@dataclass(frozen=True)
class ReorderLineItems:
    keys: List[str]

    def apply(self, editor: QuoteEditor) -> None:
        editor.reorder_lines(list(self.keys))


@dataclass(frozen=True)
class CommandResult:
    ok: bool
    breakdown: Breakdown
    error: Optional[Exception] = None


def run_optimistic(editor: QuoteEditor, command, confirm: Callable[[QuoteState], object]) -> CommandResult:
    """
    Apply ``command`` locally, then confirm it remotely.

    ``confirm`` receives a copy of the updated state. Any exception it raises
    reverts the editor to the state it had before the command. Errors raised
    by the command itself also revert the editor, then propagate.
    """
    snapshot = editor.snapshot()
    try:
        command.apply(editor)
    except Exception:
        editor.restore(snapshot)
        raise
    try:
        confirm(editor.state.copy())
    except Exception as e:
        logger.warning(f"[QUOTE] Confirmación fallida de {type(command).__name__}: {e}. Revirtiendo cambios locales.")
        editor.restore(snapshot)
        return CommandResult(ok=False, breakdown=editor.breakdown, error=e)
    return CommandResult(ok=True, breakdown=editor.recompute())
