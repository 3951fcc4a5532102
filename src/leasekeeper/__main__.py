"""Main entry point for the leasekeeper CLI.

Usage:
    python -m leasekeeper --help
    leasekeeper --help  # If installed via pip/uv
"""

from leasekeeper.cli import main

if __name__ == "__main__":
    main()
