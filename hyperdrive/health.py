# hyperdrive/health.py
from aiohttp import web

ALIVE_BODY = "ALIVE"

async def _alive(request: web.Request) -> web.Response:
    return web.Response(text=ALIVE_BODY)

def build_health_app() -> web.Application:
    """Answers every path and method with ALIVE. Knows nothing about the dispatch loop."""
    app = web.Application()
    app.router.add_route('*', '/{tail:.*}', _alive)
    return app

class HealthServer:
    def __init__(self, port: int, logger, host: str = "0.0.0.0"):
        self.port = port
        self.host = host
        self.logger = logger
        self._runner = None

    async def start(self):
        self._runner = web.AppRunner(build_health_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        self.logger.info(f"💓 Health check listening on :{self.port}")

    async def shutdown(self):
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
