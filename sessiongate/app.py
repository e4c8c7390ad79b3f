"""FastAPI application for the SessionGate authentication service."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .auth import auth_router
from .auth.config import TRUSTED_PROXY_HOSTS
from .config import API_ALLOWED_ORIGINS, API_HOST, API_PORT
from .logging_config import configure_logging

configure_logging()
LOGGER = logging.getLogger(__name__)
LOGGER.info("Creating SessionGate FastAPI application")

app = FastAPI(
    title="SessionGate API",
    version="1.0.0",
    description="Registration, password and provider sign-in, and session management.",
)

# Cookies carry the session, so credentialed CORS is limited to the configured origins.
app.add_middleware(
    CORSMiddleware,
    allow_origins=API_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
# X-Forwarded-For is honoured only from TRUSTED_PROXY_HOSTS.
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=TRUSTED_PROXY_HOSTS)

app.include_router(auth_router)


@app.get("/health", tags=["health"])
def healthcheck() -> dict[str, str]:
    """Report a simple OK status used for readiness checks.

    Returns:
        dict[str, str]: A service status payload.
    """
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    LOGGER.info("Launching Uvicorn development server on %s:%s", API_HOST, API_PORT)
    uvicorn.run("sessiongate.app:app", host=API_HOST, port=API_PORT, reload=True, proxy_headers=False)
