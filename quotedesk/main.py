# main.py
from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent

# Load .env before settings are read
load_dotenv(BASE_DIR / ".env")
load_dotenv()

from quotedesk.app.api import create_app  # noqa: E402
from quotedesk.settings import Settings, build_service_context  # noqa: E402

# ---------- Logging ----------
logger = logging.getLogger("quotedesk")
if not logger.handlers:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

SETTINGS = Settings.from_env()
SETTINGS.data_root.mkdir(parents=True, exist_ok=True)

ctx = build_service_context(SETTINGS)
app = create_app(ctx)


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "3000")))
