from fastapi import APIRouter, Request
from fastapi.responses import Response

from cors_proxy.dispatcher import ProxyDispatcher
from cors_proxy.models import IncomingRequest

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]

router = APIRouter()


@router.get("/health")
async def health():
    return {"status": "ok"}


def create_proxy_router(entry_path: str) -> APIRouter:
    """
    Router exposing the proxy on ``entry_path`` and everything below it.

    ``{entry_path}/v1/users`` is forwarded to ``<destination path>/v1/users``.
    """
    proxy_router = APIRouter()
    base = entry_path.rstrip("/")

    async def proxy_entry(request: Request) -> Response:
        dispatcher: ProxyDispatcher = request.app.state.dispatcher
        return await dispatcher.dispatch(IncomingRequest.from_starlette(request))

    proxy_router.add_api_route(
        base or "/", proxy_entry, methods=PROXY_METHODS, include_in_schema=False
    )
    proxy_router.add_api_route(
        f"{base}/{{rest:path}}",
        proxy_entry,
        methods=PROXY_METHODS,
        include_in_schema=False,
    )
    return proxy_router
