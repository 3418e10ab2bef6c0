"""
elkalk API
FastAPI adapter over the electrical calculation core and its learning loop.
"""
import os
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from elkalk.services.logging_config import setup_logging
from elkalk.services.middleware import RequestTimingMiddleware

load_dotenv()

_log_level = os.getenv("LOG_LEVEL", "INFO")
_json_logs = os.getenv("LOG_FORMAT", "json").lower() != "text"
setup_logging(level=_log_level, json_output=_json_logs)
logger = logging.getLogger("elkalk-api")

from elkalk import db  # noqa: E402  (reads DATABASE_URL after .env is loaded)
from elkalk.api.deps import build_services, get_services, set_services  # noqa: E402
from elkalk.api.estimate_routes import router as estimate_router  # noqa: E402
from elkalk.api.learning_routes import router as learning_router  # noqa: E402

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db.AsyncSessionLocal is None:
        logger.warning("DATABASE_URL not set — using in-memory stores")
        get_services()
    else:
        await db.init_db()
        services = build_services(db.AsyncSessionLocal)
        await services.learning.load_coefficients()
        set_services(services)
    yield
    if db.engine is not None:
        await db.engine.dispose()


app = FastAPI(
    title="elkalk Electrical Estimator API",
    version=VERSION,
    description="DS/HD 60364 project calculation, compliance and self-calibrating estimates",
    lifespan=lifespan,
)

_cors_default = "http://localhost:3000,http://localhost:8000"
cors_origins = [o.strip() for o in os.getenv("CORS_ORIGINS", _cors_default).split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept", "X-Requested-With", "X-Request-ID"],
)
# Request timing + X-Request-ID must be outermost so it wraps all other middleware
app.add_middleware(RequestTimingMiddleware)

app.include_router(estimate_router)
app.include_router(learning_router)


@app.get("/health")
async def health_check():
    return {
        "status": "active",
        "version": VERSION,
        "db_configured": db.AsyncSessionLocal is not None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "elkalk.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )
