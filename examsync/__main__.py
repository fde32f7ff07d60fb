"""
Package entry point.

Allows running the application via:

    python -m examsync

This simply forwards execution to examsync.cli.main().
"""

from examsync.cli import main

if __name__ == "__main__":
    main()
