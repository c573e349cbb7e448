"""
CLI entry point for skills-sync.

Allows running as: python -m skills_sync
"""

from .cli import main

if __name__ == "__main__":
    main()
