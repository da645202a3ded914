"""Allow ``python -m tkproxy``."""

from tkproxy.cli import app

app()
