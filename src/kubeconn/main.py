"""kubeconn CLI entry point.

Small operational CLI over the client library: credential inspection,
credential cache maintenance, raw GET and watch.
"""

from __future__ import annotations

import logging

import typer

from kubeconn.commands.api_cmd import app as api_app
from kubeconn.commands.auth_cmd import app as auth_app

app = typer.Typer(
    name="kubeconn",
    help="Authenticated, pooled access to a Kubernetes API server.",
    no_args_is_help=True,
)

app.add_typer(auth_app, name="auth")
app.add_typer(api_app, name="api")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """kubeconn - credentials, raw API calls and watches."""
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(name)s: %(message)s")


if __name__ == "__main__":
    app()
