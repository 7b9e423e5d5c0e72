"""Run the API server: ``python -m trailmark``."""

import uvicorn

from trailmark.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "trailmark.main:app",
        host=settings.api_host,
        port=settings.api_port,
        # uvicorn ignores workers when reloading
        workers=1 if settings.api_reload else settings.api_workers,
        reload=settings.api_reload,
        log_config=None,
    )


if __name__ == "__main__":
    main()
