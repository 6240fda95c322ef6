"""Deadblock API server entry point"""

import uvicorn

from deadblock.api.app import create_app
from deadblock.api.core.config import get_settings

app = create_app()


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "deadblock.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_config=None,
    )


if __name__ == "__main__":
    main()
