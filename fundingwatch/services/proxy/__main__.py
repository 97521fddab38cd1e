"""Module entrypoint for running the proxy service with shared settings."""

import uvicorn

from fundingwatch.core.config import get_settings


def main() -> int:
    """Run the proxy service using configured host and port."""

    settings = get_settings()
    uvicorn.run(
        "fundingwatch.services.proxy.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_config=None,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
