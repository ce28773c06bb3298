"""CLI commands for credential inspection and the exec credential cache."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.console import Console

from kubeconn.auth import CredentialResolver
from kubeconn.config import get_settings, load_kubeconfig
from kubeconn.exceptions import KubeError
from kubeconn.utils.cache import CredentialCache
from kubeconn.utils.errors import handle_error
from kubeconn.utils.output import OutputFormat, print_output

console = Console(stderr=True)
app = typer.Typer(name="auth", help="Inspect credentials and the credential cache.")


@app.command()
def show(
    kubeconfig: Annotated[str | None, typer.Option("--kubeconfig", help="Path to the kubeconfig file")] = None,
    context: Annotated[str | None, typer.Option("--context", help="Context to use")] = None,
    output: Annotated[OutputFormat, typer.Option("--output", "-o", help="Output format")] = OutputFormat.TABLE,
) -> None:
    """Resolve the credential for a context and show which strategy won."""
    settings = get_settings()
    cache = CredentialCache(settings.cache_dir) if settings.cache_enabled else None
    resolver = CredentialResolver(cache)

    try:
        config = load_kubeconfig(kubeconfig)
        cluster, user = config.resolve(context or settings.context or None)
        credential = resolver.resolve(user)
    except KubeError as e:
        handle_error(e)
        raise typer.Exit(1)

    try:
        result = {
            "server": cluster.server,
            "strategy": resolver.select(user) or "none",
            "auth_mode": credential.auth_mode,
            "token_file": credential.token_file or "",
            "client_certificate": credential.client_cert_file or "",
        }
        print_output(result, output, title="Credential")
    finally:
        credential.cleanup_temp_files()


@app.command("clear-cache")
def clear_cache(
    output: Annotated[OutputFormat, typer.Option("--output", "-o", help="Output format")] = OutputFormat.TABLE,
) -> None:
    """Delete every cached exec provider credential."""
    cache = CredentialCache(get_settings().cache_dir)
    removed = cache.clear_all()
    print_output({"cache_dir": str(cache.directory), "removed": removed}, output, title="Credential Cache")
