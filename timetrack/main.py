import logging
from contextlib import asynccontextmanager

import uvicorn

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

from timetrack.config import settings
from timetrack.cron_jobs import scheduler
from timetrack.db import ensure_indexes
from timetrack.exceptions import TimeTrackingError, ValidationError
from timetrack.routers import time_tracker
from timetrack.schemas.time_entry import api_error

PROD_MODE = settings.PRODUCTION_MODE

logging.basicConfig(
    level=logging.INFO,  # Set the logging level to INFO
    format='%(asctime)s - %(levelname)s - %(message)s',  # Log format
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await ensure_indexes()
    # Start cron job scheduler
    scheduler.start()
    yield
    scheduler.shutdown(wait=False)


app = FastAPI(title=settings.PROJECT_TITLE, lifespan=lifespan)

app.include_router(time_tracker.router, prefix="/user", tags=["time_tracker"])

# Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TimeTrackingError)
async def time_tracking_error_handler(request: Request, exc: TimeTrackingError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected ({exc.code}): {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=api_error(exc.status_code, exc.message, exc.code))


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    field = ".".join(str(part) for part in errors[0]["loc"][1:]) if errors else ""
    message = f"Invalid or missing {field or 'request body'}"
    return JSONResponse(status_code=400, content=api_error(400, message, ValidationError.code))


@app.get("/")
def index():
    return {"message": "Time tracking service is running"}


if __name__ == "__main__":
    if PROD_MODE == True:
    # Run Uvicorn without reload in production
        uvicorn.run("timetrack.main:app", host="0.0.0.0", port=6007, reload=False)

    else:
        # Run Uvicorn with reload=True in development mode
        uvicorn.run("timetrack.main:app", host="0.0.0.0", port=6007, reload=True)
