"""FastAPI application factory."""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from .config import Config
from .middleware import ModemThrottleMiddleware, no_store_html
from .storage import build_stores
from .routes import home as home_routes
from .routes import guestbook as guestbook_routes

BASE_DIR = Path(__file__).resolve().parent


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    config = app.state.config
    if config.modem_active:
        profile = app.state.modem_profile
        print(
            f"[MODEM] {config.modem.speed.upper()} MODEM MODE: ON ("
            f"{profile.chunk_size} bytes every {profile.interval_ms}ms, "
            f"{profile.latency_ms}ms latency)"
        )
    else:
        print("[MODEM] Modem mode: off")
    yield
    await app.state.entries.close()
    await app.state.counter.close()


def create_app(config: Optional[Config] = None) -> FastAPI:
    """Build the site.

    Raises:
        ConfigError: if a guestbook limit is not positive.
        ThrottleConfigError: if modem mode is on and its profile is unusable.
    """
    if config is None:
        config = Config.from_env()

    # Reject settings that would fail every request before serving anything
    config.validate()
    profile = config.modem_profile() if config.modem_active else None

    app = FastAPI(title="DEMONICSKULL.COM", lifespan=lifespan)
    app.state.config = config
    app.state.modem_profile = profile
    app.state.entries, app.state.counter = build_stores(config)

    # Templates
    templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))
    app.state.templates = templates

    # Include routers
    app.include_router(home_routes.router)
    app.include_router(guestbook_routes.router)

    # Everything else is a static file
    app.mount(
        "/",
        StaticFiles(directory=str(BASE_DIR / "static")),
        name="static",
    )

    # Apply the modem throttle to ALL requests (the authentic experience)
    if profile is not None:
        app.middleware("http")(no_store_html)
        app.add_middleware(
            ModemThrottleMiddleware,
            profile=profile,
            bypass_param=config.modem.bypass_param,
        )

    return app
