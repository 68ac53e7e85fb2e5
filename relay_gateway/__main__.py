import logging

import uvicorn

from relay_gateway.config.settings import get_settings
from relay_gateway.main import app

logger = logging.getLogger("relay_gateway")


def main() -> None:
    settings = get_settings()
    logger.info(
        "gateway_listening",
        extra={
            "endpoint": f"{settings.host}:{settings.port}",
            "origin": app.state.origin_rules.describe(),
        },
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
