from __future__ import annotations

from typing import TYPE_CHECKING

from litestar import Litestar, Request, get
from litestar.config.cors import CORSConfig
from litestar.handlers import asgi
from litestar.plugins.prometheus import PrometheusConfig, PrometheusController

from .gateway import FileGateway

if TYPE_CHECKING:
    from litestar.types import Receive, Scope, Send


prometheus_config = PrometheusConfig(app_name="file_gateway", prefix="file_gateway")

METADATA_HEADERS = ["e_tag", "header_custom", "file_size", "file_extension"]


def request_path(scope: Scope) -> str:
    """Return the file path a client asked for.

    Litestar hands mounted handlers their path with a trailing ``/`` added.
    That slash is dropped unless the client really sent one, so
    ``/bucket/dir/`` still reaches the gateway as a path without a file name.
    """
    path = scope.get("path", "/")
    if not path.startswith("/"):
        path = f"/{path}"
    raw_path = (scope.get("raw_path") or b"").split(b"?", 1)[0]
    if path != "/" and path.endswith("/") and not raw_path.endswith(b"/"):
        path = path.rstrip("/") or "/"
    return path


def create_app(gateway: FileGateway | None = None) -> Litestar:
    """Create the file gateway ASGI application."""
    if gateway is None:
        gateway = FileGateway.from_env()

    @get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @asgi(path="/", is_mount=True, copy_scope=True)
    async def file_handler(scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope=scope, receive=receive)
        response = await gateway.handle(request, request_path(scope))
        asgi_response = response.to_asgi_response(None, request)
        await asgi_response(scope, receive, send)

    async def startup(app: Litestar) -> None:
        await gateway.startup()

    async def shutdown(app: Litestar) -> None:
        await gateway.shutdown()

    return Litestar(
        route_handlers=[health, file_handler, PrometheusController],
        on_startup=[startup],
        on_shutdown=[shutdown],
        cors_config=CORSConfig(
            allow_origins=["*"],
            allow_methods=["GET", "HEAD"],
            allow_headers=["*"],
            expose_headers=METADATA_HEADERS,
        ),
        middleware=[prometheus_config.middleware],
    )


app = create_app()
