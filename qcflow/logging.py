
from __future__ import annotations
import logging
from typing import Optional
from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

_custom_theme = Theme({
    "ok": "bold green",
    "warn": "bold yellow",
    "err": "bold red",
    "info": "cyan",
})

console = Console(theme=_custom_theme)

def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Route the ``qcflow`` logger tree through the shared rich console."""
    root = logging.getLogger("qcflow")
    root.setLevel(level.upper())
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.addHandler(RichHandler(console=console, show_path=False, markup=False))
    if log_file:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        root.addHandler(fh)
    return root
