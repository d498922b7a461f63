from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import cast

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from starlette.staticfiles import StaticFiles
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from assets_backend.config import settings  # pyright: ignore[reportMissingTypeStubs]
from assets_backend.db import dispose_engine_cache  # pyright: ignore[reportMissingTypeStubs]
from assets_backend.error_handlers import register_error_handlers
from assets_backend.routers import assets, folders  # pyright: ignore[reportMissingTypeStubs]
from assets_backend.schemas_common import ErrorResponse, HealthResponse


class RequestIdMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app: ASGIApp = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        request_id_header: bytes | None = None
        inbound_headers = cast(list[tuple[bytes, bytes]], scope.get("headers") or [])
        for key, value in inbound_headers:
            if key.lower() == b"x-request-id":
                value = value.strip()
                if value:
                    request_id_header = value
                break

        if request_id_header is None:
            request_id = str(uuid.uuid4())
            request_id_header = request_id.encode("ascii")
        else:
            # latin-1 is a 1-1 mapping for bytes -> str.
            request_id = request_id_header.decode("latin-1")

        scope.setdefault("state", {})["request_id"] = request_id

        async def send_wrapper(message: Message) -> None:
            if message.get("type") == "http.response.start":
                headers = cast(list[tuple[bytes, bytes]], message.get("headers", []))
                headers = [(k, v) for (k, v) in headers if k.lower() != b"x-request-id"]
                headers.append((b"x-request-id", request_id_header))
                message["headers"] = headers
            await send(message)

        await self.app(scope, receive, send_wrapper)


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    yield
    # Ensure sqlite/aiosqlite worker threads don't keep the process alive.
    dispose_engine_cache()


app = FastAPI(title=settings.app_name, lifespan=_lifespan)

app.add_middleware(RequestIdMiddleware)
register_error_handlers(app)


logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))

logger = logging.getLogger(__name__)
for msg in settings.security_warnings():
    logger.warning("SECURITY WARNING: %s", msg)


origins = settings.cors_origins_list()
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        # Bearer tokens only; no cookies cross-origin.
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse()


app.include_router(folders.router, prefix=settings.api_prefix)
app.include_router(assets.router, prefix=settings.api_prefix)


@app.api_route(
    f"{settings.api_prefix.rstrip('/')}/{{path:path}}",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"],
    include_in_schema=False,
)
async def _api_fallback_not_found(path: str) -> None:  # noqa: ARG001
    # Unknown API paths stay JSON even when the asset mount below matches a prefix.
    raise HTTPException(status_code=404, detail="Not Found")


def _mount_local_assets(_app: FastAPI) -> None:
    """Serve local-disk objects under ``/assets`` so ``url(path)`` resolves.

    Skipped when S3 is configured; presigned URLs are used instead.
    """
    if settings.s3_configured():
        return

    root = Path(settings.storage_local_dir)
    logger.info("mounting local asset storage: %s", root)
    _app.mount("/assets", StaticFiles(directory=str(root), check_dir=False), name="assets")


_mount_local_assets(app)


def _openapi_schema_ref(name: str) -> dict[str, str]:
    return {"$ref": f"#/components/schemas/{name}"}


def _ensure_components_schema(schema: dict[str, object], *, name: str, model) -> None:  # type: ignore[no-untyped-def]
    components = cast(dict[str, object], schema.setdefault("components", {}))
    schemas = cast(dict[str, object], components.setdefault("schemas", {}))
    if name in schemas:
        return
    schemas[name] = model.model_json_schema(ref_template="#/components/schemas/{model}")


def _patch_main_openapi(schema: dict[str, object]) -> dict[str, object]:
    _ensure_components_schema(schema, name="ErrorResponse", model=ErrorResponse)

    api_prefix = settings.api_prefix.rstrip("/")
    paths = cast(dict[str, object], schema.get("paths") or {})

    for _path, path_item_obj in paths.items():
        if not isinstance(path_item_obj, dict):
            continue
        path_item = cast(dict[str, object], path_item_obj)

        for method in ("get", "post", "put", "patch", "delete"):
            op_obj = path_item.get(method)
            if not isinstance(op_obj, dict):
                continue
            op = cast(dict[str, object], op_obj)
            responses = cast(dict[str, object], op.setdefault("responses", {}))

            # API errors share one body shape; FastAPI only documents 422 by default.
            if _path.startswith(api_prefix + "/"):
                for code, description in (
                    ("401", "Unauthorized"),
                    ("404", "Not Found"),
                    ("409", "Conflict"),
                    ("422", "Validation Error"),
                ):
                    resp = cast(
                        dict[str, object], responses.setdefault(code, {"description": description})
                    )
                    content = cast(dict[str, object], resp.setdefault("content", {}))
                    content["application/json"] = {"schema": _openapi_schema_ref("ErrorResponse")}

            # Document X-Request-Id response header (added by middleware).
            for resp_obj in responses.values():
                if not isinstance(resp_obj, dict):
                    continue
                headers = cast(dict[str, object], resp_obj.setdefault("headers", {}))
                headers.setdefault(
                    "X-Request-Id",
                    {
                        "schema": {"type": "string"},
                        "description": "Echoed or generated request id.",
                    },
                )

    return schema


def custom_openapi() -> dict[str, object]:
    if app.openapi_schema:
        return cast(dict[str, object], app.openapi_schema)

    schema = cast(
        dict[str, object],
        get_openapi(
            title=app.title,
            version=cast(str, app.version) if app.version else "0.1.0",
            routes=app.routes,
        ),
    )
    app.openapi_schema = _patch_main_openapi(schema)
    return cast(dict[str, object], app.openapi_schema)


app.openapi = custom_openapi  # type: ignore[method-assign]
