"""aiohttp HTTP API for hallcal.

Serves week views built by ``CalendarService`` and the shared feed list kept
in ``FeedConfigStore``. The service owns refreshing; handlers only read its
snapshots or ask it to reconcile.
"""

from __future__ import annotations

import asyncio
import contextlib
import datetime
import logging
import signal
from typing import Any, Optional

from aiohttp import web

from .calendar_service import CalendarService, coerce_feed_configs
from .config_loader import AppConfig
from .config_store import FeedConfigStore
from .feed_exceptions import FeedConfigValidationError
from .http_client import close_all_clients
from .timezone_utils import configure_display_timezone
from .week_bucketizer import get_week_start

logger = logging.getLogger(__name__)

SERVICE_KEY = web.AppKey("service", CalendarService)
STORE_KEY = web.AppKey("store", FeedConfigStore)


def _feed_status(service: CalendarService) -> list[dict[str, Any]]:
    status = []
    for feed_id, state in service.states().items():
        last_error = state.last_error
        status.append(
            {
                "id": feed_id,
                "revision": state.revision,
                "event_count": len(state.events),
                "last_success_at": state.last_success_at.isoformat() if state.last_success_at else None,
                "last_error": last_error.model_dump(mode="json") if last_error else None,
            }
        )
    return status


async def get_week(request: web.Request) -> web.Response:
    """Week view for ?start=YYYY-MM-DD (normalized to its Monday) or the selected week."""
    service = request.app[SERVICE_KEY]
    start_raw = request.query.get("start")
    week_start: Optional[datetime.date] = None
    if start_raw:
        try:
            week_start = get_week_start(datetime.date.fromisoformat(start_raw))
        except ValueError:
            return web.json_response({"error": "start must be YYYY-MM-DD"}, status=400)

    view = service.week_view(week_start)
    return web.json_response(view.model_dump(mode="json"), status=200)


async def post_refresh(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    await service.refresh_all()
    return web.json_response(
        {"feeds": _feed_status(service), "error": service.error_summary()}, status=200
    )


async def get_config(request: web.Request) -> web.Response:
    store = request.app[STORE_KEY]
    return web.json_response(store.read(), status=200)


async def post_config(request: web.Request) -> web.Response:
    """Replace the shared feed list and resynchronize feed timers."""
    service = request.app[SERVICE_KEY]
    store = request.app[STORE_KEY]
    try:
        data = await request.json()
    except ValueError:
        return web.json_response({"error": "invalid json"}, status=400)
    if not isinstance(data, list):
        return web.json_response({"error": "Body must be an array"}, status=400)

    try:
        feeds = coerce_feed_configs(data)
        records = store.write(feeds)
    except FeedConfigValidationError as e:
        return web.json_response({"error": str(e)}, status=400)
    except OSError:
        return web.json_response({"error": "Failed to save config"}, status=500)

    service.update_config(feeds)
    return web.json_response(records, status=200)


async def get_health(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    failed = service.failed_feeds()
    return web.json_response(
        {
            "status": "degraded" if failed else "ok",
            "started": service.started,
            "feeds": _feed_status(service),
            "failed_feeds": failed,
        },
        status=200,
    )


def make_app(service: CalendarService, store: FeedConfigStore) -> web.Application:
    """Create the aiohttp application with routes wired to ``service`` and ``store``.

    The service is started when the app starts and stopped on cleanup, so
    every per-feed timer is cancelled when the server goes away.
    """
    app = web.Application()
    app[SERVICE_KEY] = service
    app[STORE_KEY] = store

    app.router.add_get("/api/week", get_week)
    app.router.add_post("/api/refresh", post_refresh)
    app.router.add_get("/api/config", get_config)
    app.router.add_post("/api/config", post_config)
    app.router.add_get("/api/health", get_health)

    async def _start_service(app: web.Application) -> None:
        await app[SERVICE_KEY].start()

    async def _stop_service(app: web.Application) -> None:
        await app[SERVICE_KEY].stop()
        await close_all_clients()

    app.on_startup.append(_start_service)
    app.on_cleanup.append(_stop_service)
    return app


def build_service(config: AppConfig) -> tuple[CalendarService, FeedConfigStore]:
    """Create the service and store for ``config``.

    Feeds come from the shared store when it holds any; otherwise the
    config file's feeds seed the store.
    """
    configure_display_timezone(config.display_timezone or None)
    store = FeedConfigStore(config.config_store_path)
    stored = store.read_feeds()
    if stored:
        feeds: list[Any] = stored
    else:
        feeds = list(config.feeds)
        if feeds:
            store.write(feeds)
    return CalendarService(feeds, settings=config), store


async def _serve(config: AppConfig, stop_event: Optional[asyncio.Event] = None) -> None:
    """Run the HTTP server until signalled to stop."""
    service, store = build_service(config)
    app = make_app(service, store)

    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host=config.server_bind, port=config.server_port)
    try:
        await site.start()
    except OSError:
        logger.exception("Failed to start server on %s:%d", config.server_bind, config.server_port)
        await runner.cleanup()
        raise
    logger.info("Server started on %s:%d", config.server_bind, config.server_port)

    owns_signals = stop_event is None
    stop_event = stop_event or asyncio.Event()
    if owns_signals:
        loop = asyncio.get_running_loop()

        def _on_signal() -> None:
            logger.info("Shutdown signal received")
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, _on_signal)

    await stop_event.wait()
    logger.info("Stop event received, shutting down")
    await runner.cleanup()
    logger.info("Server shutdown complete")


def start_server(config: AppConfig) -> None:
    """Run the server on a fresh event loop; blocks until SIGINT/SIGTERM."""
    try:
        asyncio.run(_serve(config))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
