"""
Content Routes
==============

HTTP surface for the files the rendered page displays.

Endpoints:
    POST   /upload            - Upload images (+ optional text), redirect to manager
    GET    /api/files         - List content files with sizes
    DELETE /api/files/{name}  - Delete one content file

Static mounts (see mount_static):
    /content/*  - Content directory
    /*          - Public pages (preview.html, manage.html)

Design Rules:
    - File names are sanitized: whitespace → "_", path components dropped
    - Deleting a missing file is not an error
"""

import logging
import re
import shutil
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles


logger = logging.getLogger(__name__)


PACKAGED_PUBLIC_DIR = Path(__file__).resolve().parent.parent / "public"

_WHITESPACE = re.compile(r"\s+")


def safe_filename(name: str) -> str:
    """
    Sanitize an uploaded file name.

    Returns:
        Base name with whitespace runs replaced by underscores

    Raises:
        ValueError: Nothing usable remains
    """
    base = Path(name.replace("\\", "/")).name
    base = _WHITESPACE.sub("_", base.strip())
    if base in ("", ".", ".."):
        raise ValueError(f"Invalid file name: {name!r}")
    return base


def create_content_router(content_dir: Path, text_filename: str = "text.txt") -> APIRouter:
    """
    Build the upload / list / delete router for ``content_dir``.

    Args:
        content_dir: Directory holding content files (created if missing)
        text_filename: File the optional ``text`` form field is written to
    """
    content_dir = Path(content_dir)
    content_dir.mkdir(parents=True, exist_ok=True)
    router = APIRouter()

    @router.post("/upload")
    async def upload(
        images: Optional[List[UploadFile]] = File(default=None),
        text: Optional[str] = Form(default=None),
    ) -> RedirectResponse:
        """Store uploaded images and the optional text, then redirect to the manager."""
        if text:
            (content_dir / text_filename).write_text(text, encoding="utf-8")

        stored = []
        for upload_file in images or []:
            if not upload_file.filename:
                continue
            try:
                name = safe_filename(upload_file.filename)
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e)) from e
            with open(content_dir / name, "wb") as out:
                shutil.copyfileobj(upload_file.file, out)
            stored.append(name)

        logger.info(f"Files uploaded: {stored}")
        return RedirectResponse(url="/manage.html", status_code=303)

    @router.get("/api/files")
    async def list_files() -> JSONResponse:
        """List content files with their sizes."""
        files = [
            {"name": path.name, "size": path.stat().st_size}
            for path in sorted(content_dir.iterdir())
            if path.is_file()
        ]
        return JSONResponse(files)

    @router.delete("/api/files/{name}")
    async def delete_file(name: str) -> JSONResponse:
        """Delete one content file."""
        try:
            target = content_dir / safe_filename(name)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        if target.is_file():
            target.unlink()
            logger.info(f"File deleted: {target.name}")
        return JSONResponse({"ok": True})

    return router


def mount_static(app: FastAPI, content_dir: Path, public_dir: Optional[Path] = None) -> None:
    """
    Mount the content directory at /content and public pages at /.

    Must be called after all other routes are registered, since the
    root mount catches every remaining path.
    """
    public_dir = Path(public_dir) if public_dir else PACKAGED_PUBLIC_DIR
    app.mount("/content", StaticFiles(directory=str(content_dir)), name="content")
    app.mount("/", StaticFiles(directory=str(public_dir), html=True), name="public")
