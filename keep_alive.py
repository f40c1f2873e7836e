"""
Minimal HTTP server so uptime monitors can see the bot process is running.

It shares the bot's event loop instead of running in a separate thread.
"""

import logging

from aiohttp import web

logger = logging.getLogger(__name__)

ALIVE_TEXT = "Bot is alive!"


async def home(request: web.Request) -> web.Response:
    return web.Response(text=ALIVE_TEXT)


def create_app() -> web.Application:
    app = web.Application()
    app.router.add_get('/', home)
    return app


async def start_keep_alive(host: str, port: int) -> web.AppRunner:
    """
    Start the keep-alive server on the running event loop.

    Args:
        host: Interface to bind (e.g. '0.0.0.0')
        port: TCP port to listen on

    Returns:
        web.AppRunner: Runner to pass to stop_keep_alive() on shutdown
    """
    runner = web.AppRunner(create_app())
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("Keep-alive server listening on %s:%s", host, port)
    return runner


async def stop_keep_alive(runner: web.AppRunner | None):
    if runner is not None:
        await runner.cleanup()
