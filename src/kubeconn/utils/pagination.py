"""Pagination helpers for list requests."""

from __future__ import annotations

from typing import Any, Callable, Iterator


def paginate(
    fetch_fn: Callable[[dict[str, str]], dict[str, Any]],
    params: dict[str, str],
    results_key: str = "items",
) -> Iterator[dict[str, Any]]:
    """Yield every item across pages by following ``metadata.continue``.

    Args:
        fetch_fn: A callable that takes query params and returns a decoded list response.
        params: The initial query params (usually including ``limit``).
        results_key: The key in the response containing the results list.

    Yields:
        Items in server order, one page at a time.
    """
    params = dict(params)

    while True:
        response = fetch_fn(params)
        yield from response.get(results_key) or []

        next_token = (response.get("metadata") or {}).get("continue")
        if not next_token:
            break
        params["continue"] = next_token
