"""
Supabase client initialization.

This module contains *only* the database connection setup. The client is
created on first use so that modules importing repositories (and tests that
inject their own client) do not need credentials.

Environment variables required when the client is first requested:
- SUPABASE_URL: Your Supabase project URL
- SUPABASE_KEY: Your Supabase API key (use a server-side key only on the backend)
"""

from __future__ import annotations

import threading
from typing import Any, List, Optional

import httpx
from postgrest.exceptions import APIError

# The dependency is `supabase` (supabase-py). If your editor can't resolve it,
# install it in your environment: `pip install supabase`.
from supabase import Client, create_client  # type: ignore[import-not-found]

from config.settings import get_settings
from domain.errors import TransientDependencyError

_client: Optional[Client] = None
_client_lock = threading.Lock()


def get_supabase() -> Client:
    """Return the process-wide Supabase client, creating it on first call."""

    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                settings = get_settings()
                if not settings.supabase_url:
                    raise RuntimeError(
                        "Missing environment variable: SUPABASE_URL. "
                        "Set SUPABASE_URL to your Supabase project URL."
                    )
                if not settings.supabase_key:
                    raise RuntimeError(
                        "Missing environment variable: SUPABASE_KEY. "
                        "Set SUPABASE_KEY to your Supabase API key."
                    )
                _client = create_client(settings.supabase_url, settings.supabase_key)
    return _client


def execute_query(query: Any, *, action: str) -> List[dict]:
    """
    Execute a Supabase query builder and return its rows.

    Connection and timeout failures are transient and surface as
    TransientDependencyError so the resilient executor can retry them.
    Every other failure raises RuntimeError naming the action.
    """

    try:
        response = query.execute()
    except (httpx.TransportError, ConnectionError, TimeoutError) as e:
        raise TransientDependencyError("supabase", f"Failed to {action}: {e}") from e
    except APIError as e:
        code = str(getattr(e, "code", "") or "")
        if code.startswith("5"):
            raise TransientDependencyError("supabase", f"Failed to {action}: {e}") from e
        raise RuntimeError(f"Failed to {action}: {e}") from e

    error = getattr(response, "error", None)
    if error:
        raise RuntimeError(f"Failed to {action}: {error}")

    return list(getattr(response, "data", None) or [])


__all__ = ["get_supabase", "execute_query"]
