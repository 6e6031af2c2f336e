import logging
import os
import time
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

# Load env from keyforge/.env
package_dir = os.path.dirname(os.path.abspath(__file__))
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv(dotenv_path=os.path.join(package_dir, ".env"))

# Import after dotenv is loaded
from keyforge.core.config import settings, validate_config  # noqa: E402
from keyforge.core.database import create_all_tables  # noqa: E402
from keyforge.core.errors import (  # noqa: E402
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_handler,
    unhandled_exception_handler,
)
from keyforge.core.logging import configure_logging  # noqa: E402
from keyforge.core.middleware.request_id import RequestIdMiddleware  # noqa: E402
from keyforge.core.validation import validate_env  # noqa: E402
from keyforge.api import (  # noqa: E402
    auth,
    billing,
    collections,
    dashboard,
    health,
    keys,
    notifications,
    projects,
    settings as settings_api,
)

configure_logging(settings.ENV)
validate_env()
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("keyforge")
    logger.info("Starting keyforge backend...")
    app.state.startup_time = time.time()
    if not settings.is_production:
        create_all_tables()
    try:
        yield
    finally:
        logging.getLogger("keyforge").info("Stopping keyforge backend...")


app = FastAPI(title="keyforge", lifespan=lifespan)

# Middlewares
app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(StarletteHTTPException, http_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# Credentials are cookies, so origins must be explicit
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router, prefix="/api")
app.include_router(projects.router, prefix="/api")
app.include_router(collections.router, prefix="/api")
app.include_router(keys.router, prefix="/api")
app.include_router(dashboard.router, prefix="/api")
app.include_router(billing.router, prefix="/api")
app.include_router(billing.payments_router, prefix="/api")
app.include_router(notifications.router, prefix="/api")
app.include_router(settings_api.router, prefix="/api")
app.include_router(health.root_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("keyforge.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
