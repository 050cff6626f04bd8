"""Run the cassava diagnosis server: ``cassava-server`` or ``python -m cassava.core.server.main``.

The tools act on the signed-in Supabase session and on the local offline
store, so the server only binds to loopback unless told otherwise.
"""

from __future__ import annotations

import logging
from ipaddress import ip_address

from cassava.core.config.settings import get_settings
from cassava.core.server.app import create_app


def _is_loopback_host(host: str) -> bool:
    if host.lower() == "localhost":
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def run() -> None:
    """Configure logging from CASSAVA_LOG_LEVEL and serve over streamable HTTP."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.cassava_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger = logging.getLogger(__name__)
    if not settings.cassava_allow_insecure_bind and not _is_loopback_host(settings.cassava_host):
        raise RuntimeError(
            "Refusing to expose the offline analysis store and Supabase session on "
            f"non-loopback host {settings.cassava_host!r}. "
            "Set CASSAVA_ALLOW_INSECURE_BIND=true to serve it anyway."
        )
    logger.info(
        "Starting cassava analysis server on %s:%d",
        settings.cassava_host,
        settings.cassava_port,
    )

    mcp = create_app()
    mcp.run(
        transport="streamable-http",
        host=settings.cassava_host,
        port=settings.cassava_port,
    )


if __name__ == "__main__":
    run()
