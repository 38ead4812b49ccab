"""
FastAPI application serving a directory tree with in-browser EPUB reading.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional, TypeVar
from urllib.parse import quote

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import HTMLResponse, StreamingResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from .config import ServerSettings
from .services import (
    ArchiveOpenError,
    AuthCache,
    EpubCache,
    EpubLibrary,
    NoContent,
    PathDecodeError,
    ResolvedContent,
    ResourceNotFound,
)
from .services.filesystem import (
    file_etag,
    guess_content_type,
    iter_file,
    parse_range_header,
    render_listing,
    resolve_under_root,
)

logger = logging.getLogger(__name__)

AUTH_REALM = "My-Content-Server"

T = TypeVar("T")

_basic_auth = HTTPBasic(realm=AUTH_REALM, auto_error=False)


def get_settings(request: Request) -> ServerSettings:
    return request.app.state.settings


def get_library(request: Request) -> EpubLibrary:
    return request.app.state.library


def get_auth_cache(request: Request) -> Optional[AuthCache]:
    return getattr(request.app.state, "auth_cache", None)


async def require_credentials(
    credentials: Optional[HTTPBasicCredentials] = Depends(_basic_auth),
    auth_cache: Optional[AuthCache] = Depends(get_auth_cache),
) -> None:
    if auth_cache is None:
        return
    # Unknown user and wrong password get the same answer.
    if credentials is None or not await run_in_threadpool(
        auth_cache.verify, credentials.username, credentials.password
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": f'Basic realm="{AUTH_REALM}"'},
        )


async def _in_parse_pool(request: Request, func: Callable[..., T], *args: object) -> T:
    """Runs archive work on the bounded parse pool, off the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(request.app.state.parse_executor, functools.partial(func, *args))


def _content_response(result: ResolvedContent) -> Response:
    return Response(content=result.body, media_type=result.mime or "application/octet-stream")


def create_app(settings: Optional[ServerSettings] = None) -> FastAPI:
    settings = settings or ServerSettings.load()

    cache = EpubCache(
        toc_capacity=settings.toc_cache_size,
        content_capacity=settings.content_cache_size,
    )
    library = EpubLibrary(settings.root_dir, cache)
    parse_executor = ThreadPoolExecutor(max_workers=settings.workers, thread_name_prefix="epub-parse")

    auth_cache: Optional[AuthCache] = None
    if settings.auth_enabled:
        auth_cache = AuthCache(settings.user_name or "", settings.password_hash or "")
        logger.info("Basic authentication enabled for user %s", settings.user_name)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        parse_executor.shutdown(wait=False)

    app = FastAPI(
        title="Content Server",
        version="0.1.0",
        description="Serves a directory tree and reads EPUB books in the browser.",
        # Every path not claimed by the EPUB routes belongs to the file tree.
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        dependencies=[Depends(require_credentials)],
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.library = library
    app.state.auth_cache = auth_cache
    app.state.parse_executor = parse_executor

    app.add_middleware(GZipMiddleware, minimum_size=settings.gzip_min_size)

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:
    @app.get("/epub_toc/{archive_path:path}")
    async def epub_toc(
        archive_path: str,
        request: Request,
        library: EpubLibrary = Depends(get_library),
    ) -> Response:
        try:
            result = await _in_parse_pool(request, library.table_of_contents, archive_path)
        except ArchiveOpenError as exc:
            logger.warning("%s", exc)
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
        except (NoContent, ResourceNotFound) as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return _content_response(result)

    @app.get("/epub_cont/{token}/{inner_path:path}")
    async def epub_cont(
        token: str,
        inner_path: str,
        request: Request,
        library: EpubLibrary = Depends(get_library),
    ) -> Response:
        try:
            result = await _in_parse_pool(request, library.content, token, inner_path)
        except PathDecodeError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        except ArchiveOpenError as exc:
            logger.warning("%s", exc)
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
        except ResourceNotFound as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return _content_response(result)

    @app.api_route("/{file_path:path}", methods=["GET", "HEAD"])
    async def fs_get(
        file_path: str,
        request: Request,
        settings: ServerSettings = Depends(get_settings),
    ) -> Response:
        target = resolve_under_root(settings.root_dir, file_path)
        if target is None or not target.exists():
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Resource not found")

        if target.is_dir():
            try:
                listing = await run_in_threadpool(render_listing, target, "/" + quote(file_path))
            except OSError as exc:
                logger.exception("Reading dir %s failed", target)
                raise HTTPException(
                    status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                    detail=f"Reading dir[{file_path}] failed: {exc}",
                ) from exc
            return HTMLResponse(listing)

        if not target.is_file():
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Resource not found")

        file_size = target.stat().st_size
        media_type = guess_content_type(target.name)
        etag = file_etag(target)
        range_header = request.headers.get("range")

        if range_header:
            start, end = parse_range_header(range_header, file_size)
            if start is None or end is None:
                raise HTTPException(status_code=status.HTTP_416_REQUESTED_RANGE_NOT_SATISFIABLE)
            headers = {
                "Content-Range": f"bytes {start}-{end}/{file_size}",
                "Accept-Ranges": "bytes",
                "ETag": etag or "",
                "Content-Length": str(end - start + 1),
            }
            return StreamingResponse(
                iter_file(target, start, end),
                status_code=status.HTTP_206_PARTIAL_CONTENT,
                media_type=media_type,
                headers=headers,
            )

        headers = {
            "Content-Length": str(file_size),
            "Accept-Ranges": "bytes",
        }
        if etag:
            headers["ETag"] = etag

        return StreamingResponse(
            iter_file(target, 0, file_size - 1),
            media_type=media_type,
            headers=headers,
        )


app = create_app()
