"""
HTTPS listener of virt-api.

A single TLS listener serves every route of the router, behind the
authorization gate.
"""

import logging
import ssl

from aiohttp.web import AppRunner, Application, TCPSite

from .authorization import Authorizer, authorization_gate
from .router import ApiRouter

logger = logging.getLogger(__name__)


class ApiServer:
    """aiohttp server bound to one HTTPS address."""

    def __init__(
        self,
        router: ApiRouter,
        ssl_context: ssl.SSLContext,
        authorizer: Authorizer,
        host: str = "0.0.0.0",
        port: int = 443,
    ):
        """
        Initialize the server.

        Args:
            router: Fully populated router
            ssl_context: Server TLS context from the serving policy
            authorizer: Decision point consulted before every handler
            host: Host interface to bind to
            port: Port to serve on
        """
        self.host = host
        self.port = port
        self.ssl_context = ssl_context
        self.app = Application(middlewares=[authorization_gate(authorizer)])
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None
        router.install(self.app)

    async def start(self) -> None:
        """Start serving."""
        try:
            self.runner = AppRunner(self.app)
            await self.runner.setup()

            self.site = TCPSite(
                self.runner, self.host, self.port, ssl_context=self.ssl_context
            )
            await self.site.start()

            logger.info(f"virt-api serving on https://{self.host}:{self.port}")
        except Exception as e:
            logger.error(f"Failed to start HTTPS server: {e}")
            if self.runner:
                await self.runner.cleanup()
            self.runner = None
            self.site = None
            raise

    async def stop(self) -> None:
        """Stop serving."""
        try:
            if self.site:
                await self.site.stop()
                self.site = None

            if self.runner:
                await self.runner.cleanup()
                self.runner = None

            logger.info("HTTPS server stopped")
        except Exception as e:
            logger.error(f"Error stopping HTTPS server: {e}")
