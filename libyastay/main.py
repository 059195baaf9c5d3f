# Application entrypoint: configures logging, middleware, error handling, startup routines and API routers.
import logging
import os

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import models  # noqa: F401  (registers tables on Base.metadata)
from .db import Base, DATABASE_URL, engine
from .errors import install_error_handlers
from .models import utcnow
from .realtime import start_redis_subscriber
from .routes.admin import router as admin_router
from .routes.auth import router as auth_router
from .routes.bookings import router as bookings_router
from .routes.conversations import router as conversations_router
from .routes.live_ws import router as live_ws_router
from .routes.notifications import router as notifications_router
from .routes.properties import router as properties_router
from .routes.reviews import router as reviews_router
from .routes.users import router as users_router
from .schemas import HealthResponse

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("libyastay")


# Parse CORS origins from a comma-separated env var.
# Note: '*' cannot be used with allow_credentials=True; we fall back to explicit localhost origins for dev.
def _parse_cors_origins(env_value: str | None) -> list[str]:
    default_dev_origins = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:8081",
        "http://localhost:19006",
    ]

    if not env_value:
        return default_dev_origins

    origins = [o.strip() for o in env_value.split(",") if o.strip()]
    if "*" in origins:
        return default_dev_origins

    return origins


app = FastAPI(title="LibyaStay API", version="1.0.0")
allow_list = _parse_cors_origins(os.getenv("CORS_ORIGINS"))

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_error_handlers(app)


@app.on_event("startup")
def on_startup() -> None:
    # For local SQLite, auto-create tables; production DBs rely on Alembic migrations.
    if DATABASE_URL.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
    # Redis Pub/Sub subscriber that fans live events out across processes
    start_redis_subscriber()
    logger.info("app.started", extra={"cors_origins": allow_list})


@app.get("/api/health", response_model=HealthResponse, tags=["health"])
def health() -> HealthResponse:
    return HealthResponse(status="ok", timestamp=utcnow())


app.include_router(auth_router, prefix="/api", tags=["auth"])
app.include_router(users_router, prefix="/api", tags=["users"])
app.include_router(properties_router, prefix="/api", tags=["properties"])
app.include_router(bookings_router, prefix="/api", tags=["bookings"])
app.include_router(reviews_router, prefix="/api", tags=["reviews"])
app.include_router(conversations_router, prefix="/api", tags=["conversations"])
app.include_router(notifications_router, prefix="/api", tags=["notifications"])
app.include_router(admin_router, prefix="/api", tags=["admin"])
app.include_router(live_ws_router, prefix="/ws", tags=["live"])


if __name__ == "__main__":
    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "3000")))
