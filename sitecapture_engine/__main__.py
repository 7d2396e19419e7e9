"""Entry point for running sitecapture_engine as a module.

Usage:
    python -m sitecapture_engine <command> [options]
"""
from .cli import main

if __name__ == "__main__":
    raise SystemExit(main())
