"""
Top-level CLI that aggregates the runbook sub-apps.
"""

import typer

from vdiops.cli.aad_cli import aad_app
from vdiops.cli.env_cli import info
from vdiops.cli.odfc_cli import odfc_app
from vdiops.cli.search_cli import search_app
from vdiops.core.logging_setup import configure_logging

main_app = typer.Typer(help="vdiops CLI")

# Add subcommands as Typer sub-apps:
main_app.add_typer(search_app, name="search")
main_app.add_typer(odfc_app, name="odfc")
main_app.add_typer(aad_app, name="aad")
main_app.command("info")(info)


@main_app.callback()
def setup(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output")):
    """VDI fleet administration runbooks."""
    configure_logging(verbose=verbose)


def main():
    main_app()


if __name__ == "__main__":
    main()
