"""Run the TanyaAyomi API with ``python -m tanyaayomi`` or the ``tanyaayomi`` script."""

from __future__ import annotations

import logging

import uvicorn

from app.config import settings

logger = logging.getLogger("tanyaayomi")


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    development = settings.environment == "development"
    logger.info(
        "Serving %s on %s:%s (%s)",
        settings.app_name,
        settings.server_host,
        settings.server_port,
        settings.environment,
    )
    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=development,
        proxy_headers=not development,
    )


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
