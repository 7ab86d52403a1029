import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException

# Load env from tiergate/.env
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

from tiergate.core.config import settings, validate_config
from tiergate.core.database import create_all_tables
from tiergate.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    unhandled_exception_handler,
)
from tiergate.core.logging import configure_logging
from tiergate.core.middleware.request_id import RequestIdMiddleware
from tiergate.features.catalog.capabilities import validate_capabilities
from tiergate.features.catalog.service import validate_catalog
from tiergate.api import admin, capabilities, generations, health, quota

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("tiergate")
    logger.info("Starting tiergate...")
    validate_catalog()
    validate_capabilities()
    create_all_tables()
    app.state.startup_time = time.time()
    try:
        yield
    finally:
        logging.getLogger("tiergate").info("Stopping tiergate...")


app = FastAPI(title="tiergate - entitlement and usage metering", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(quota.router, tags=["quota"])
app.include_router(generations.router, tags=["generations"])
app.include_router(capabilities.router, tags=["capabilities"])
app.include_router(admin.router, tags=["admin"])
app.include_router(health.root_router, tags=["health"])
