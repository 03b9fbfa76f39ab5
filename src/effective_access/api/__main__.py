"""
effective_access.api.__main__

Entrypoint for running the service via `python -m effective_access.api`.
"""

from __future__ import annotations

import uvicorn

from effective_access.api.app import create_app
from effective_access.settings import get_settings


def main() -> None:
    settings = get_settings()
    app = create_app(settings=settings)

    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,  # structlog
    )


if __name__ == "__main__":
    main()
