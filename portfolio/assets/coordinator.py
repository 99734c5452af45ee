"""
Asset Lifecycle Coordinator

The only place that replaces or removes an owner's assets. Every operation
walks the same states:

    START -> STAGED -> RENDERED (resumes only) -> UPLOADED -> PERSISTED -> CLEANED
                                 any of them -> FAILED

Ordering rules:
- nothing is staged or uploaded until the upload passes validation
- if any upload in an operation fails, the objects this operation already
  uploaded are deleted before the error propagates
- the owner's pointers are swapped in one commit, and the previous
  generation is deleted only after that commit; a failed commit deletes the
  new uploads instead
- deleting the previous generation is best effort: failures are logged and
  never undo the new pointers
- staged and scratch files are removed on every path out
"""
from __future__ import annotations

import enum
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, Tuple

from .deadline import Failed, Ok, TimedOut
from .errors import (
    AssetError,
    AssetNotFound,
    AssetRecordNotFound,
    ConversionTimeout,
    StorageUnavailable,
)
from .pointers import AssetKind, AssetRef, PointerSet
from .staging import Upload, UploadKind
from .storage import ResourceKind, delete_with_fallback, fallback_attempts

logger = logging.getLogger(__name__)

RESUME_FOLDER = "resumes"
RESUME_PAGES_FOLDER = "resume-images"
PROFILE_FOLDER = "profile-images"
BLOG_FOLDER = "blog-images"
PROJECT_FOLDER = "project-images"

IMAGE_FOLDERS = {
    AssetKind.PROFILE_IMAGE: PROFILE_FOLDER,
    AssetKind.BLOG_FEATURED_IMAGE: BLOG_FOLDER,
    AssetKind.PROJECT_IMAGES: PROJECT_FOLDER,
}


def owner_folder(folder: str, owner_id: int) -> str:
    return f"{folder}/{owner_id}"


class ReplaceState(enum.Enum):
    START = "start"
    STAGED = "staged"
    RENDERED = "rendered"
    UPLOADED = "uploaded"
    PERSISTED = "persisted"
    CLEANED = "cleaned"
    FAILED = "failed"


class Operation:
    """State tracker for one coordinator run."""

    def __init__(self, owner_id: int, kind: AssetKind, listener: Optional[Callable] = None):
        self.id = uuid.uuid4().hex[:12]
        self.owner_id = owner_id
        self.kind = kind
        self.state = ReplaceState.START
        self.history = [ReplaceState.START]
        self.error: Optional[Exception] = None
        self._listener = listener

    def advance(self, state: ReplaceState) -> None:
        self.state = state
        self.history.append(state)
        logger.debug("asset op %s %s/%s -> %s", self.id, self.kind.value, self.owner_id, state.value)
        if self._listener is not None:
            self._listener(self, state)

    def fail(self, error: Exception) -> None:
        self.error = error
        logger.warning("asset op %s %s/%s failed in %s: %s",
                       self.id, self.kind.value, self.owner_id, self.state.value, error)
        self.advance(ReplaceState.FAILED)


class AssetCoordinator:
    def __init__(self, context, listener: Optional[Callable] = None):
        self.staging = context.staging
        self.renderer = context.renderer
        self.storage = context.storage
        self.records = context.records
        self.settings = context.settings
        self.listener = listener

    def _operation(self, owner_id: int, kind: AssetKind) -> Operation:
        return Operation(owner_id, kind, self.listener)

    # ============ Resume ============

    def replace_resume(self, user_id: int, upload: Upload) -> PointerSet:
        op = self._operation(user_id, AssetKind.RESUME)
        try:
            self.staging.validate(upload, UploadKind.PDF)
            with self.records.locked(user_id, AssetKind.RESUME):
                self.records.require_owner(user_id, AssetKind.RESUME)
                with self.staging.stage(upload, UploadKind.PDF) as staged, self.staging.scratch_dir() as scratch:
                    op.advance(ReplaceState.STAGED)

                    rendered = self._render(staged.path, scratch)
                    op.advance(ReplaceState.RENDERED)

                    items = [(staged.path, owner_folder(RESUME_FOLDER, user_id), ResourceKind.RAW)]
                    items += [(p, owner_folder(RESUME_PAGES_FOLDER, user_id), ResourceKind.IMAGE)
                              for p in rendered.page_paths]
                    uploaded = self._upload_all(items)
                    op.advance(ReplaceState.UPLOADED)

                    new = PointerSet(
                        document=uploaded[0],
                        pages=uploaded[1:],
                        original_file_name=staged.original_name or "resume.pdf",
                        file_size=staged.size,
                    )
                    previous = self._persist(user_id, AssetKind.RESUME, new, uploaded)
                    op.advance(ReplaceState.PERSISTED)

                    self._cleanup(previous, keep=new)
            op.advance(ReplaceState.CLEANED)
        except Exception as e:
            op.fail(e)
            raise
        logger.info("Resume for user %s replaced: %d pages", user_id, new.page_count)
        return new

    def delete_resume(self, user_id: int) -> PointerSet:
        return self._remove_all(user_id, AssetKind.RESUME, "No resume found")

    def _render(self, pdf_path: str, scratch: str):
        timeout = self.settings.render_timeout
        result = self.renderer.render_with_deadline(pdf_path, scratch, timeout)
        if isinstance(result, Ok):
            return result.value
        if isinstance(result, TimedOut):
            raise ConversionTimeout()
        if isinstance(result, Failed):
            raise result.error
        raise TypeError(f"unexpected render result {result!r}")

    # ============ Images ============

    def replace_profile_image(self, user_id: int, upload: Upload) -> PointerSet:
        return self._put_images(user_id, AssetKind.PROFILE_IMAGE, [upload], append=False)

    def remove_profile_image(self, user_id: int) -> PointerSet:
        return self._remove_all(user_id, AssetKind.PROFILE_IMAGE, "No profile image")

    def replace_blog_image(self, blog_id: int, upload: Upload) -> PointerSet:
        return self._put_images(blog_id, AssetKind.BLOG_FEATURED_IMAGE, [upload], append=False)

    def remove_blog_image(self, blog_id: int) -> PointerSet:
        return self._remove_all(blog_id, AssetKind.BLOG_FEATURED_IMAGE, "No featured image")

    def add_project_images(self, project_id: int, uploads: Sequence[Upload]) -> PointerSet:
        return self._put_images(project_id, AssetKind.PROJECT_IMAGES, list(uploads), append=True)

    def remove_project_image(self, project_id: int, storage_id: str) -> PointerSet:
        kind = AssetKind.PROJECT_IMAGES
        op = self._operation(project_id, kind)
        try:
            with self.records.locked(project_id, kind):
                current = self.records.load(project_id, kind)
                images = current.images if current else []
                kept = [i for i in images if i.storage_id != storage_id]
                if len(kept) == len(images):
                    raise AssetRecordNotFound("Image not found")
                new = PointerSet(images=kept)
                previous = self._persist(project_id, kind, new if kept else None, [])
                op.advance(ReplaceState.PERSISTED)
                self._cleanup(previous, keep=new)
            op.advance(ReplaceState.CLEANED)
        except Exception as e:
            op.fail(e)
            raise
        return new

    def _put_images(self, owner_id: int, kind: AssetKind, uploads: List[Upload], append: bool) -> PointerSet:
        op = self._operation(owner_id, kind)
        folder = owner_folder(IMAGE_FOLDERS[kind], owner_id)
        try:
            self.staging.validate_batch(uploads, UploadKind.IMAGE)
            with self.records.locked(owner_id, kind):
                current = self.records.load(owner_id, kind)
                with self.staging.stage_many(uploads, UploadKind.IMAGE) as staged:
                    op.advance(ReplaceState.STAGED)

                    uploaded = self._upload_all([(s.path, folder, ResourceKind.IMAGE) for s in staged])
                    op.advance(ReplaceState.UPLOADED)

                    kept = current.images if (append and current) else []
                    new = PointerSet(images=kept + uploaded)
                    previous = self._persist(owner_id, kind, new, uploaded)
                    op.advance(ReplaceState.PERSISTED)

                    self._cleanup(previous, keep=new)
            op.advance(ReplaceState.CLEANED)
        except Exception as e:
            op.fail(e)
            raise
        return new

    # ============ Removal ============

    def _remove_all(self, owner_id: int, kind: AssetKind, not_found: Optional[str]) -> Optional[PointerSet]:
        """Clear owner+kind. With ``not_found=None`` an empty owner is a no-op."""
        op = self._operation(owner_id, kind)
        try:
            with self.records.locked(owner_id, kind):
                if self.records.load(owner_id, kind) is None:
                    if not_found is None:
                        return None
                    raise AssetRecordNotFound(not_found)
                previous = self._persist(owner_id, kind, None, [])
                op.advance(ReplaceState.PERSISTED)
                self._cleanup(previous)
            op.advance(ReplaceState.CLEANED)
        except Exception as e:
            op.fail(e)
            raise
        return previous

    def purge(self, owner_id: int, kind: AssetKind) -> Optional[PointerSet]:
        """Remove whatever owner+kind references; nothing referenced is not an error."""
        return self._remove_all(owner_id, kind, None)

    def purge_user(self, user) -> None:
        """Release every asset a user account references, ahead of deleting it."""
        user_id = user.id
        # Each purge commits, so collect ids before the first one runs
        project_ids = [p.id for p in user.projects]
        blog_ids = [b.id for b in user.blogs]
        self.purge(user_id, AssetKind.RESUME)
        self.purge(user_id, AssetKind.PROFILE_IMAGE)
        for project_id in project_ids:
            self.purge(project_id, AssetKind.PROJECT_IMAGES)
        for blog_id in blog_ids:
            self.purge(blog_id, AssetKind.BLOG_FEATURED_IMAGE)

    # ============ Steps ============

    def _map_bounded(self, fn: Callable, items: Sequence) -> List[Tuple[object, Optional[Exception]]]:
        """Run ``fn(*item)`` for every item on a bounded pool, keeping input order."""
        if not items:
            return []
        workers = max(1, min(self.settings.upload_concurrency, len(items)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="assets") as pool:
            futures = [pool.submit(fn, *item) for item in items]
            out: List[Tuple[object, Optional[Exception]]] = []
            for future in futures:
                try:
                    out.append((future.result(), None))
                except Exception as e:
                    out.append((None, e))
        return out

    def _upload_all(self, items: Sequence[Tuple[str, str, ResourceKind]]) -> List[AssetRef]:
        results = self._map_bounded(self.storage.put, items)
        stored = [r for r, err in results if err is None]
        errors = [err for _, err in results if err is not None]
        if errors:
            logger.warning("%d of %d uploads failed, rolling back %d", len(errors), len(items), len(stored))
            self._rollback([AssetRef.from_stored(s) for s in stored])
            first = errors[0]
            if isinstance(first, AssetError):
                raise first
            if isinstance(first, OSError):
                raise StorageUnavailable() from first
            raise first
        return [AssetRef.from_stored(s) for s in stored]

    def _rollback(self, refs: Sequence[AssetRef]) -> None:
        for ref in refs:
            try:
                self.storage.delete(ref.storage_id, ref.kind)
            except AssetNotFound:
                continue
            except StorageUnavailable as e:
                logger.error("Rollback could not delete %s, object is orphaned: %s", ref.storage_id, e)

    def _persist(self, owner_id: int, kind: AssetKind, new: Optional[PointerSet],
                 uploaded: Sequence[AssetRef]) -> Optional[PointerSet]:
        try:
            return self.records.swap(owner_id, kind, new)
        except AssetError:
            self._rollback(uploaded)
            raise

    def _cleanup(self, previous: Optional[PointerSet], keep: Optional[PointerSet] = None) -> None:
        """Delete the previous generation's objects that ``keep`` no longer references."""
        if previous is None:
            return
        kept_ids = set(keep.storage_ids()) if keep else set()
        targets = []
        for ref in previous.refs():
            storage_id = ref.storage_id or self.storage.storage_id_from_url(ref.url)
            if not storage_id:
                logger.warning("Cannot resolve storage id for %s, leaving it", ref.url)
                continue
            if storage_id not in kept_ids:
                targets.append((self.storage, storage_id, fallback_attempts(ref.kind)))

        for outcome, err in self._map_bounded(delete_with_fallback, targets):
            if err is not None:
                logger.warning("Could not delete previous asset: %s", err)
            elif not outcome.found:
                logger.info("Previous asset %s was already gone", outcome.storage_id)
