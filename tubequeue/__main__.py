"""Module executed when running ``python -m tubequeue``."""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import AsyncExitStack

import httpx

from .config import Settings, get_settings
from .database import Database
from .messages import RelayMessage
from .services.coordinator import OptimisticMutationCoordinator, ViewModel
from .services.executor import PlatformExecutor
from .services.innertube import AuthenticatedRequestClient, SessionCookies
from .services.library import YouTubeLibrary
from .services.overlays import OverlayStore
from .services.relay import CrossContextRelay, InProcessExecutorHost, Sender, SurfaceChannel
from .services.storage import RuntimeOptions, SQLKeyValueStore

logger = logging.getLogger("tubequeue")


async def run(settings: Settings) -> ViewModel:
    """Wire the full stack, load every list once and return the view model."""

    async with AsyncExitStack() as exit_stack:
        database = Database(settings.database_url)
        await database.create_all()
        exit_stack.push_async_callback(database.dispose)

        store = SQLKeyValueStore(database)
        options = RuntimeOptions(store, settings)
        operation = await options.get()
        cookies = SessionCookies.from_settings(settings)
        if cookies.session_secret() is None:
            logger.warning("No SAPISID cookie configured; every request will fail to authenticate")

        async def build_executor() -> PlatformExecutor:
            http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(settings.request_timeout_seconds, connect=10.0)
            )
            client = AuthenticatedRequestClient(
                settings, http_client, cookies=cookies, options=options
            )
            return PlatformExecutor(YouTubeLibrary(client), on_close=http_client.aclose)

        relay = CrossContextRelay(
            InProcessExecutorHost(build_executor),
            settings,
            concurrency=operation.concurrency,
        )
        exit_stack.push_async_callback(relay.close)

        async def open_surface(message: RelayMessage, sender: Sender) -> None:
            logger.info("%s requested by %s", message.type, sender.surface or sender.app_id)

        relay.register_control("OPEN_DASHBOARD", open_surface)
        relay.register_control("OPEN_SIDE_PANEL", open_surface)

        channel = SurfaceChannel(relay, Sender(app_id=settings.app_id, surface="dashboard"))
        overlays = OverlayStore(store, retention_days=settings.watched_override_retention_days)
        coordinator = OptimisticMutationCoordinator(channel, overlays, settings)
        await coordinator.load_all()
        await coordinator.drain()
        return coordinator.view


def main() -> None:
    """Load the library once and print the resulting view as JSON."""

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    view = asyncio.run(run(settings))
    print(json.dumps(view.to_payload(), indent=2))


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
