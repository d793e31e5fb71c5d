"""Run the gateway with uvicorn: ``python -m src.wa_gateway``."""

import uvicorn

from .config import get_settings
from .logging_config import get_logging_config


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "src.wa_gateway.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        log_config=get_logging_config(settings.log_level),
    )


if __name__ == "__main__":
    main()
