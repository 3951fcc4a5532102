"""CLI commands for leasekeeper.

Provides command-line interface using Typer:
- leasekeeper serve: Run the election and the status server
- leasekeeper leader: Ask a running instance who the leader is

Usage:
    leasekeeper --help
    leasekeeper serve --lease-name my-app --namespace prod
    leasekeeper leader --url http://localhost:4040
"""

import typer

from leasekeeper.cli.leader_cmd import app as leader_app
from leasekeeper.cli.serve import app as serve_app

# Main CLI application
app = typer.Typer(
    name="leasekeeper",
    help="leasekeeper: lease-based leader election with an HTTP status API",
    no_args_is_help=True,
)

app.add_typer(serve_app, name="serve")
app.add_typer(leader_app, name="leader")


@app.callback()
def callback() -> None:
    """leasekeeper: lease-based leader election with an HTTP status API."""
    pass


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
