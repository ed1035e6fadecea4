"""Cloud Run entrypoint for the Symptra diagnosis API."""

from __future__ import annotations

import logging
import os

from symptra.api import create_app
from symptra.config import get_settings

logging.basicConfig(
    level=os.getenv("SYMPTRA_LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

settings = get_settings()
app = create_app(settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8080")))
