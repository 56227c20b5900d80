from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler


def configure_logging(level: str | int = "INFO", *, console: Console | None = None) -> None:
    """Route the package's loggers through a single rich handler.

    Library modules only call `logging.getLogger(__name__)`; entry points
    decide where records go.
    """
    handler = RichHandler(console=console, show_path=False, rich_tracebacks=True, markup=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    root = logging.getLogger("define")
    root.handlers[:] = [handler]
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.propagate = False
