"""Run the API server with ``python -m flowsmith_ai.server``."""

import uvicorn

from flowsmith_ai.server.core.config import settings


def main() -> None:
    uvicorn.run(
        "flowsmith_ai.server.main:app",
        host=settings.server_host,
        port=settings.server_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
