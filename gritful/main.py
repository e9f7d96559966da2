import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

# Load env from the repository .env (tests configure their own database)
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(os.path.dirname(package_dir), ".env"))

from gritful.core.config import settings, validate_config
from gritful.core.database import create_all_tables
from gritful.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from gritful.core.logging import configure_logging
from gritful.core.middleware.request_id import RequestIdMiddleware
from gritful.api import challenges, entries, health, periods, tasks

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("gritful")
    logger.info("Starting Gritful backend...")
    if settings.ENV != "production" and settings.DATABASE_URL:
        # Local convenience; production schemas are managed by migrations
        create_all_tables()
    try:
        yield
    finally:
        logging.getLogger("gritful").info("Stopping Gritful backend...")


app = FastAPI(title="Gritful - Backend", lifespan=lifespan)

app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ALLOWED_ORIGINS.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.root_router, tags=["health"])
app.include_router(challenges.router, tags=["challenges"])
app.include_router(entries.router, tags=["entries"])
app.include_router(tasks.router, tags=["tasks"])
app.include_router(periods.router, tags=["periods"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("gritful.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")), reload=settings.ENV == "development")
