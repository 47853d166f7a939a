from __future__ import annotations

import logging
import os
import stat
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import FileResponse, HTMLResponse, RedirectResponse, Response, StreamingResponse
from starlette.concurrency import run_in_threadpool

from tarshare_backend.config import ShareSettings
from tarshare_backend.errors import SelectionError
from tarshare_backend.listing import get_dir_index, render_index
from tarshare_backend.pipeline import ArchiveExport, ArchiveExportPipeline
from tarshare_backend.security import parse_selection_form, resolve_share_path


logger = logging.getLogger(__name__)

TAR_MEDIA_TYPE = "application/x-tar"


def content_disposition(file_name: str) -> str:
    # Names from undecodable filenames carry surrogates; show them as U+FFFD.
    printable = os.fsencode(file_name).decode("utf-8", "replace")
    return f"attachment; filename*=UTF-8''{quote(printable, safe='')}"


class ArchiveResponse(StreamingResponse):
    """Streams a running archive and always releases its worker.

    The export is closed even when the server gives up before the body is
    first iterated (early disconnect, failed header send).
    """

    def __init__(self, export: ArchiveExport, headers: Optional[dict] = None) -> None:
        super().__init__(export.stream, media_type=TAR_MEDIA_TYPE, headers=headers)
        self.export = export

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.export.aclose()


def _stat_or_none(path: Path) -> Optional[os.stat_result]:
    try:
        return path.stat()
    except OSError:
        return None


@asynccontextmanager
async def lifespan(app: FastAPI):
    # One pool for the whole process; every archive download borrows a thread.
    settings: ShareSettings = app.state.settings
    executor = ThreadPoolExecutor(
        max_workers=settings.archive_workers,
        thread_name_prefix="tarshare-archive",
    )
    app.state.pipeline = ArchiveExportPipeline(
        settings.root,
        executor,
        capacity=settings.bridge_capacity,
        read_chunk_bytes=settings.read_chunk_bytes,
    )
    logger.info("Sharing %s with %d archive worker(s)", settings.root, settings.archive_workers)
    try:
        yield
    finally:
        # Blocked workers notice the stopped loop and exit on their own.
        executor.shutdown(wait=False, cancel_futures=True)


async def _resolve(settings: ShareSettings, path: str) -> Path:
    # resolve() stats each component, so it runs in the threadpool.
    try:
        return await run_in_threadpool(resolve_share_path, settings.root, path)
    except SelectionError:
        raise HTTPException(status_code=404, detail="Not found")


def create_app(settings: Optional[ShareSettings] = None) -> FastAPI:
    settings = settings or ShareSettings.from_env()
    app = FastAPI(lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.settings = settings

    @app.get("/{path:path}")
    async def browse(path: str) -> Response:
        """Directory listing, or the raw bytes of a single file."""
        target = await _resolve(settings, path)
        st = await run_in_threadpool(_stat_or_none, target)
        if st is None:
            raise HTTPException(status_code=404, detail="Not found")

        if stat.S_ISDIR(st.st_mode):
            if path and not path.endswith("/"):
                return RedirectResponse(quote(f"/{path}/"), status_code=302)
            try:
                entries = await run_in_threadpool(get_dir_index, target)
            except OSError:
                logger.exception("Cannot list %s", target)
                raise HTTPException(status_code=500, detail="Cannot read directory")
            return HTMLResponse(render_index(entries, title=f"/{path}"))

        if not stat.S_ISREG(st.st_mode):
            raise HTTPException(status_code=404, detail="Not found")
        return FileResponse(
            target,
            stat_result=st,
            headers={"X-Content-Type-Options": "nosniff"},
        )

    @app.post("/{path:path}")
    async def download_archive(path: str, request: Request) -> Response:
        """Stream the checked entries of a directory listing as one tar file."""
        directory = await _resolve(settings, path)
        st = await run_in_threadpool(_stat_or_none, directory)
        if st is None or not stat.S_ISDIR(st.st_mode):
            raise HTTPException(status_code=404, detail="Not found")

        body = await request.body()
        try:
            selection = parse_selection_form(body)
        except ValueError:
            raise HTTPException(status_code=400, detail="Bad request")

        pipeline: ArchiveExportPipeline = request.app.state.pipeline
        try:
            export = await pipeline.build(directory, selection)
        except SelectionError as e:
            logger.info("Rejected selection under /%s: %s", path, e)
            raise HTTPException(status_code=400, detail="Invalid selection")

        headers = {
            "Content-Disposition": content_disposition(export.file_name),
            "Cache-Control": "no-store",
            "X-Content-Type-Options": "nosniff",
        }
        # A producer failure raises out of the body iterator, which makes the
        # server drop the connection instead of finishing the chunked body.
        return ArchiveResponse(export, headers=headers)

    return app


app = create_app()


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    _settings: ShareSettings = app.state.settings
    uvicorn.run("server:app", host=_settings.host, port=_settings.port, reload=False)
