"""Line history and tab completion for interactive sessions.

readline is optional; without it the console still works, just without
recall or completion.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional

try:
    import readline
except ImportError:
    readline = None  # type: ignore[assignment]

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


def word_completer(words: Callable[[], list[str]]) -> Callable[[str, int], Optional[str]]:
    """Build a readline completer over a (possibly changing) word list."""

    def complete(text: str, state: int) -> Optional[str]:
        hits = [w for w in words() if w.startswith(text)]
        return hits[state] if state < len(hits) else None

    return complete


class History:
    """Append-only history file attached to readline for one session."""

    def __init__(self, path: Optional[Path], *, length: int = 1000) -> None:
        self.path = path
        self.length = length
        self._start_len = 0
        self._active = False

    def open(self, completer: Optional[Callable[[str, int], Optional[str]]] = None) -> None:
        """Load prior history and install the completer."""
        if readline is None:
            logger.debug("readline unavailable; history and completion disabled")
            return
        if completer is not None:
            readline.set_completer(completer)
            readline.parse_and_bind("tab: complete")
        if self.path is None:
            return
        readline.set_history_length(self.length)
        if self.path.exists():
            try:
                readline.read_history_file(str(self.path))
            except OSError as exc:
                logger.warning("Could not read history file %s: %s", self.path, exc)
        self._start_len = readline.get_current_history_length()
        self._active = True

    def close(self) -> None:
        """Append lines entered this session to the history file."""
        if readline is None or not self._active:
            return
        self._active = False
        new_lines = readline.get_current_history_length() - self._start_len
        if new_lines <= 0:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.touch(exist_ok=True)
            readline.append_history_file(new_lines, str(self.path))
        except OSError as exc:
            logger.warning("Could not write history file %s: %s", self.path, exc)
