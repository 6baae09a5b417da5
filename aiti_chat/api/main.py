"""FastAPI application exposing the public JSON API."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..config import CONFIG, load_envs
from ..logger import configure_logging
from .routes import chats, settings


load_envs()
configure_logging(CONFIG.log_level)

app = FastAPI(
    title=CONFIG.api_title,
    version=CONFIG.api_version,
    description=(
        "JSON API for AITI agent chat clients. "
        "Authenticate using a Supabase JWT in the Authorization header."
    ),
)


def _configure_cors(api_app: FastAPI) -> None:
    origins = list(CONFIG.api_cors_origins)
    if not origins:
        return

    api_app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


_configure_cors(app)


@app.get("/health", tags=["health"])
def healthcheck() -> dict[str, str]:
    """Simple health endpoint for load balancers and smoke tests."""

    return {"status": "ok"}


app.include_router(chats.router, prefix="/v1", tags=["chats"])
app.include_router(settings.router, prefix="/v1", tags=["settings"])
