"""Local staging for uploaded files.

Uploads land here before they are rendered or pushed to object storage.
Everything handed out by this module is scoped: leaving the ``with`` block
removes the file or directory whatever happened inside it.
"""
from __future__ import annotations

import enum
import logging
import os
import shutil
import tempfile
import time
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from typing import BinaryIO, Iterator, List, Sequence

from PIL import Image, UnidentifiedImageError

from .errors import FileTooLarge, MissingFile, TooManyFiles, UnsupportedMediaType

logger = logging.getLogger(__name__)


class UploadKind(enum.Enum):
    PDF = "pdf"
    IMAGE = "image"


ALLOWED_TYPES = {
    UploadKind.PDF: {"application/pdf": ".pdf"},
    UploadKind.IMAGE: {
        "image/jpeg": ".jpg",
        "image/jpg": ".jpg",
        "image/png": ".png",
        "image/gif": ".gif",
        "image/webp": ".webp",
    },
}

TYPE_ERRORS = {
    UploadKind.PDF: "Only PDF files are allowed",
    UploadKind.IMAGE: "Only image files (JPEG, PNG, GIF, WebP) are allowed",
}

STAGE_PREFIX = {
    UploadKind.PDF: "resume",
    UploadKind.IMAGE: "image",
}


@dataclass
class Upload:
    """An incoming file, independent of the web framework that received it."""
    stream: BinaryIO
    filename: str
    mimetype: str
    size: int

    @classmethod
    def from_file_storage(cls, file_storage) -> "Upload":
        stream = file_storage.stream
        stream.seek(0, os.SEEK_END)
        size = stream.tell()
        stream.seek(0)
        return cls(
            stream=stream,
            filename=(file_storage.filename or "").strip(),
            mimetype=(file_storage.mimetype or "").lower(),
            size=size,
        )


@dataclass
class StagedFile:
    path: str
    original_name: str
    mimetype: str
    size: int


class StagingStore:
    def __init__(self, root: str, max_pdf_bytes: int, max_image_bytes: int, max_images_per_batch: int):
        self.root = os.path.abspath(root)
        self.limits = {
            UploadKind.PDF: max_pdf_bytes,
            UploadKind.IMAGE: max_image_bytes,
        }
        self.max_images_per_batch = max_images_per_batch

    def validate(self, upload: Upload, kind: UploadKind) -> None:
        """Reject an upload on declared type and size, before touching the disk."""
        if upload is None:
            raise MissingFile()
        if upload.mimetype not in ALLOWED_TYPES[kind]:
            raise UnsupportedMediaType(TYPE_ERRORS[kind])
        if upload.size <= 0:
            raise MissingFile("Uploaded file is empty")
        if upload.size > self.limits[kind]:
            limit_mb = self.limits[kind] // (1024 * 1024)
            raise FileTooLarge(f"File too large (limit {limit_mb}MB)")

    def validate_batch(self, uploads: Sequence[Upload], kind: UploadKind) -> None:
        if not uploads:
            raise MissingFile()
        if len(uploads) > self.max_images_per_batch:
            raise TooManyFiles(f"Too many files (limit {self.max_images_per_batch})")
        for upload in uploads:
            self.validate(upload, kind)

    def _ensure_root(self) -> None:
        os.makedirs(self.root, exist_ok=True)

    def _unique_path(self, upload: Upload, kind: UploadKind) -> str:
        allowed = ALLOWED_TYPES[kind]
        ext = os.path.splitext(upload.filename)[1].lower()
        if ext not in allowed.values():
            ext = allowed[upload.mimetype]
        suffix = f"{int(time.time() * 1000)}-{os.urandom(6).hex()}"
        return os.path.join(self.root, f"{STAGE_PREFIX[kind]}-{suffix}{ext}")

    @contextmanager
    def stage(self, upload: Upload, kind: UploadKind) -> Iterator[StagedFile]:
        self.validate(upload, kind)
        self._ensure_root()
        path = self._unique_path(upload, kind)
        try:
            upload.stream.seek(0)
            with open(path, "wb") as f:
                shutil.copyfileobj(upload.stream, f)
            if kind is UploadKind.IMAGE:
                _verify_image(path, TYPE_ERRORS[kind])
            logger.debug("Staged %s (%d bytes) at %s", upload.filename, upload.size, path)
            yield StagedFile(path=path, original_name=upload.filename, mimetype=upload.mimetype, size=upload.size)
        finally:
            _remove_file(path)

    @contextmanager
    def stage_many(self, uploads: Sequence[Upload], kind: UploadKind) -> Iterator[List[StagedFile]]:
        self.validate_batch(uploads, kind)
        staged: List[StagedFile] = []
        with ExitStack() as stack:
            for upload in uploads:
                staged.append(stack.enter_context(self.stage(upload, kind)))
            yield staged

    @contextmanager
    def scratch_dir(self) -> Iterator[str]:
        """Request-unique directory for renderer output."""
        self._ensure_root()
        path = tempfile.mkdtemp(prefix="render-", dir=self.root)
        try:
            yield path
        finally:
            shutil.rmtree(path, ignore_errors=True)

    def list_entries(self) -> List[str]:
        if not os.path.isdir(self.root):
            return []
        return sorted(os.listdir(self.root))

    def sweep(self, max_age_seconds: int) -> int:
        """Remove staged files and scratch dirs older than ``max_age_seconds``."""
        cutoff = time.time() - max_age_seconds
        removed = 0
        for name in self.list_entries():
            path = os.path.join(self.root, name)
            try:
                if os.path.getmtime(path) >= cutoff:
                    continue
            except FileNotFoundError:
                continue
            if os.path.isdir(path):
                shutil.rmtree(path, ignore_errors=True)
            else:
                _remove_file(path)
            removed += 1
        if removed:
            logger.info("Swept %d stale staging entries from %s", removed, self.root)
        return removed


def _verify_image(path: str, message: str) -> None:
    try:
        with Image.open(path) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise UnsupportedMediaType(message) from e


def _remove_file(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
