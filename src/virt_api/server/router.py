"""
Explicit handler table of the virt-api HTTPS listener.

The router is built once during startup, filled by the registrars, and then
handed to the server, which installs it into its aiohttp application.
"""

import logging
from collections.abc import Awaitable, Callable

from aiohttp import web

from ..models import WebhookKind
from .admission import AdmissionHandler, admission_endpoint

logger = logging.getLogger(__name__)

RouteHandler = Callable[[web.Request], Awaitable[web.StreamResponse]]


class ApiRouter:
    """Routes keyed by (method, path), plus the set of admission callback paths."""

    def __init__(self) -> None:
        self._routes: dict[tuple[str, str], RouteHandler] = {}
        self._admission_paths: set[str] = set()

    @property
    def admission_paths(self) -> frozenset[str]:
        return frozenset(self._admission_paths)

    @property
    def routes(self) -> dict[tuple[str, str], RouteHandler]:
        return dict(self._routes)

    def add_route(self, method: str, path: str, handler: RouteHandler) -> None:
        """
        Register a handler.

        Raises:
            ValueError: If the (method, path) pair is already registered
        """
        key = (method.upper(), path)
        if key in self._routes:
            raise ValueError(f"Route {method.upper()} {path} already registered")
        self._routes[key] = handler

    def add_admission_route(
        self, path: str, handler: AdmissionHandler, kind: WebhookKind
    ) -> None:
        """Bind an admission callback path to an external admission handler."""
        self.add_route("POST", path, admission_endpoint(handler, kind))
        self._admission_paths.add(path)
        logger.debug(f"Registered {kind.value} admission callback {path}")

    def install(self, app: web.Application) -> None:
        """Add every registered route to an aiohttp application."""
        for (method, path), handler in self._routes.items():
            app.router.add_route(method, path, handler)
