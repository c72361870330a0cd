# Copyright (C) 2024 Midden Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Midden Server - Main FastAPI application."""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from midden_server.config import settings
from midden_server.database import init_db
from midden_server.errors import AuthError, ServerError, auth_error_handler
from midden_server.routers import auth, users
from midden_server.services.email import EmailSender

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def _get_cors_origins() -> list[str]:
    raw = (settings.cors_origins or "*").strip()
    if raw == "*":
        return ["*"]
    return [o.strip() for o in raw.split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    await init_db()
    if settings.skip_email_verification:
        logger.warning("SKIP_EMAIL_VERIFICATION is on: login codes are returned in responses")
    elif not app.state.email_sender.configured:
        logger.info("SMTP not configured - login codes will be logged instead of emailed")
    yield
    # shutdown


app = FastAPI(
    title="Midden Server",
    description="Password login with emailed 2FA codes and role-based permissions",
    version=VERSION,
    lifespan=lifespan,
)

app.state.email_sender = EmailSender.from_settings(settings)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(AuthError, auth_error_handler)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log method, path, status, and duration for each request (no body or auth headers).

    Unhandled exceptions are logged here and answered with a generic 500.
    """
    start = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        error = ServerError()
        response = JSONResponse(status_code=error.status_code, content=error.to_body())
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info("%s %s %s %.1fms", request.method, request.url.path, response.status_code, duration_ms)
    return response


app.include_router(auth.router)
app.include_router(users.router)


@app.get("/", response_class=PlainTextResponse)
async def root():
    """Liveness text."""
    return "At least this looks OK!"


@app.get("/health")
async def health():
    """Health check for load balancers."""
    return {"status": "ok", "version": VERSION}
