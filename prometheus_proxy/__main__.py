"""Run the proxy with uvicorn: ``python -m prometheus_proxy``."""

import uvicorn

from prometheus_proxy.config.settings import get_settings
from prometheus_proxy.main import create_app


def main() -> None:
    # Invalid configuration fails here, before the credential is built
    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower().replace("warn", "warning"),
        access_log=False,
    )


if __name__ == "__main__":
    main()
