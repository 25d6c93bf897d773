"""Allow running as ``python -m identiq``."""

from .cli import main

main()
