"""
Entry point for running the review CLI as a module.

Usage:
    python -m src.review due
    python -m src.review mistakes --all
    python -m src.review --help
"""
from .cli import main

if __name__ == "__main__":
    main()
