# main.py
# ──────────────────────────────────────────────────────────────────────────────
# DM Flow FastAPI backend:
# - Script registry + validation (backend/app.py)
# - Sessions stepped through the pure executor in dmflow/executor.py
# - /simulate dry runs for the script editor
# - Step events forwarded to Supabase in the background (dmflow/telemetry.py)
# Production notes:
#   • Run with: uvicorn main:app --host :: --port 8080
#   • SESSIONS_PATH / SCRIPTS_PATH must point at a writable volume
# ──────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from backend.app import create_app

# ──────────────────────────────────────────────────────────────────────────────
# Bootstrap & config
# ──────────────────────────────────────────────────────────────────────────────

load_dotenv()

LOG_LEVEL_NAME = (os.getenv("LOG_LEVEL") or "INFO").upper()
LOG_LEVEL = getattr(logging, LOG_LEVEL_NAME, logging.INFO)
logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger("dmflow.main")

app = create_app()

# ──────────────────────────────────────────────────────────────────────────────
# Error shaping & startup
# ──────────────────────────────────────────────────────────────────────────────


@app.exception_handler(HTTPException)
async def http_exc_handler(_: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def unhandled_exc_handler(_: Request, exc: Exception):
    logger.exception("Unhandled error")
    return JSONResponse(status_code=500, content={"detail": f"Internal error: {exc}"})


@app.on_event("startup")
async def _startup_log():
    settings = app.state.settings
    logger.info(
        "Startup: env=%s port=%s scripts=%d max_steps=%d supabase=%s",
        settings.environment,
        os.getenv("PORT", "8080"),
        len(app.state.scripts.list_scripts()),
        settings.max_steps,
        "yes" if os.getenv("SUPABASE_URL") else "no",
    )

# ──────────────────────────────────────────────────────────────────────────────
# Local dev entrypoint
# ──────────────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="::",
        port=int(os.getenv("PORT", "8080")),
        reload=False,
        log_level=os.getenv("LOG_LEVEL", "info"),
    )
