"""Entry point for the ``deployotron`` command."""

from __future__ import annotations

import click

from deployotron import __version__
from deployotron.cli.commands.deploy import deploy


@click.group()
@click.version_option(__version__, prog_name="deployotron")
def main() -> None:
    """Deployotron: deploy git repositories as containerized cloud services.

    Run 'deployotron deploy --help' for the deployment commands.
    """


main.add_command(deploy)


if __name__ == "__main__":  # pragma: no cover
    main()
