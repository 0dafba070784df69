# visage/logger.py
import os

from rich import pretty
from rich.console import Console
from rich.theme import Theme
from rich.traceback import install

# Markup styles used across the service: [ok], [event], [warn], [fail]
VISAGE_THEME = Theme(
    {
        "ok": "green",
        "event": "blue",
        "warn": "yellow",
        "fail": "bold red",
    }
)

install(show_locals=False)
pretty.install()

# Shared console for sessions, capture and upstream calls.
# VISAGE_QUIET=1 silences it (e.g. under load tests).
console = Console(theme=VISAGE_THEME, quiet=os.getenv("VISAGE_QUIET") == "1")
