"""
Module entrypoint for the Backuper CLI.

This file exists so that `python -m backuper ...` works when the console-script
wrapper is not installed. It contains no business logic.
"""

from __future__ import annotations

from backuper.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
