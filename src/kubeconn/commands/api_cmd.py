"""CLI commands for raw API access: get a path, watch a collection."""

from __future__ import annotations

from typing import Annotated

import httpx
import typer
from rich.console import Console

from kubeconn.client import KubeClient
from kubeconn.config import get_settings
from kubeconn.exceptions import KubeError
from kubeconn.utils.errors import handle_error
from kubeconn.utils.output import OutputFormat, print_json, print_output, summarize
from kubeconn.watch import WatchStream

console = Console(stderr=True)
app = typer.Typer(name="api", help="Call the API server directly.")


def _client(kubeconfig: str | None, context: str | None) -> KubeClient:
    if kubeconfig or context:
        return KubeClient.from_config(kubeconfig, context=context)
    return KubeClient.auto()


@app.command()
def get(
    path: Annotated[str, typer.Argument(help="API path, e.g. /api/v1/namespaces/default/pods")],
    label_selector: Annotated[str | None, typer.Option("--selector", "-l", help="Label selector")] = None,
    kubeconfig: Annotated[str | None, typer.Option("--kubeconfig", help="Path to the kubeconfig file")] = None,
    context: Annotated[str | None, typer.Option("--context", help="Context to use")] = None,
    output: Annotated[OutputFormat, typer.Option("--output", "-o", help="Output format")] = OutputFormat.JSON,
) -> None:
    """GET an API path and print the response."""
    try:
        client = _client(kubeconfig, context)
    except KubeError as e:
        handle_error(e)
        raise typer.Exit(1)

    try:
        params = {"labelSelector": label_selector} if label_selector else None
        data = client.get(path, params).json()
        if output == OutputFormat.JSON:
            print_json(data)
        elif "items" in data:
            print_output([summarize(item) for item in data["items"]], output, title=path)
        else:
            print_output(summarize(data), output, title=path)
    except (KubeError, httpx.HTTPError) as e:
        handle_error(e)
        raise typer.Exit(1)
    finally:
        client.close()


@app.command()
def watch(
    path: Annotated[str, typer.Argument(help="Collection path, e.g. /api/v1/namespaces/default/pods")],
    resource_version: Annotated[str, typer.Option("--resource-version", help="Resume from this version")] = "0",
    max_events: Annotated[int, typer.Option("--max-events", help="Stop after N events (0 = unlimited)")] = 0,
    max_retries: Annotated[int, typer.Option("--max-retries", help="Consecutive failures before giving up")] = -1,
    timeout: Annotated[int | None, typer.Option("--timeout", help="Server-side timeout in seconds")] = None,
    kubeconfig: Annotated[str | None, typer.Option("--kubeconfig", help="Path to the kubeconfig file")] = None,
    context: Annotated[str | None, typer.Option("--context", help="Context to use")] = None,
) -> None:
    """Stream watch events as JSON lines until interrupted."""
    try:
        client = _client(kubeconfig, context)
    except KubeError as e:
        handle_error(e)
        raise typer.Exit(1)

    stream = WatchStream(
        client,
        path,
        resource_version=resource_version,
        timeout_seconds=timeout if timeout is not None else get_settings().watch_timeout,
        max_retries=max_retries,
    )
    seen = 0

    def emit(event) -> bool:
        nonlocal seen
        print_json({"type": event.type.value, **summarize(event.object)}, indent=None)
        seen += 1
        return not (max_events and seen >= max_events)

    try:
        console.print(f"Watching [bold]{path}[/bold] from resourceVersion {resource_version}...", style="yellow")
        stream.run(emit)
    except KeyboardInterrupt:
        stream.stop()
    except KubeError as e:
        handle_error(e)
        raise typer.Exit(1)
    finally:
        client.close()
