import logging
import os

import uvicorn

from taskboard.config import settings


def run() -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))
    uvicorn.run("taskboard.main:app", host=host, port=port)


if __name__ == "__main__":
    run()
