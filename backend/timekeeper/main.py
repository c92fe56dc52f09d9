"""FastAPI application entrypoint for the Timekeeper backend.

Sets up the application, middleware, exception handlers and routes and
provides a lifespan context manager that initializes the database on
startup and disposes the engine on shutdown.
"""

import asyncio
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError

from timekeeper.api.routes.auth import router as auth_router
from timekeeper.config.config import settings
from timekeeper.core.errors import register_exception_handlers
from timekeeper.core.logging import logger
from timekeeper.db.session import engine, initialize_database


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context to run startup and shutdown routines.

    On startup this will attempt to create the metadata tables, retrying a
    few times if the DB isn't ready yet.

    Yields:
        None: Control is returned to FastAPI while the app is running.
    """

    logger.info("Starting up")

    max_retries = 5
    for attempt in range(max_retries):
        try:
            await initialize_database()
            break
        except (OperationalError, OSError) as e:
            # NOTE: the database container may still be starting
            if attempt < max_retries - 1:
                logger.warning(
                    "Database connection attempt {} failed: {}. Retrying..",
                    attempt + 1,
                    e,
                )
                await asyncio.sleep(2)
            else:
                logger.exception(
                    "Failed to create database tables after {} attempts", max_retries
                )
                raise

    yield

    logger.info("Shutting down")
    await engine.dispose()


app = FastAPI(lifespan=lifespan, root_path="/api")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)


@app.get("/")
async def root():
    """Return a simple health check / landing response."""

    return JSONResponse({"message": "Timekeeper Backend"})


app.include_router(auth_router)


if __name__ == "__main__":
    uvicorn.run("timekeeper.main:app", host="0.0.0.0", port=8000, reload=True)
