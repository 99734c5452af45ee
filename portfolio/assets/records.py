"""
Asset Record Store

Reads and swaps the pointer set held by an owning row (user, resume,
project, blog). A swap reads the previous pointers and writes the new ones
in one transaction, with the owning row locked ``FOR UPDATE`` where the
database supports it. ``locked()`` serializes whole replace operations for
one owner+kind inside this process.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from portfolio import db
from portfolio.models import Blog, Project, Resume, User, utcnow

from .errors import OwnerNotFound, RecordPersistFailure
from .pointers import AssetKind, AssetRef, PointerSet
from .storage import ResourceKind

logger = logging.getLogger(__name__)

OWNER_MODELS = {
    AssetKind.RESUME: User,
    AssetKind.PROFILE_IMAGE: User,
    AssetKind.BLOG_FEATURED_IMAGE: Blog,
    AssetKind.PROJECT_IMAGES: Project,
}

OWNER_LABELS = {
    User: "User not found",
    Blog: "Blog not found",
    Project: "Project not found",
}


class AssetRecordStore:
    def __init__(self):
        self._locks: Dict[Tuple[int, AssetKind], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ---- serialization ----

    def _lock_for(self, owner_id: int, kind: AssetKind) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get((owner_id, kind))
            if lock is None:
                lock = self._locks[(owner_id, kind)] = threading.Lock()
            return lock

    @contextmanager
    def locked(self, owner_id: int, kind: AssetKind) -> Iterator[None]:
        with self._lock_for(owner_id, kind):
            yield

    # ---- reads ----

    def _owner(self, owner_id: int, kind: AssetKind, for_update: bool = False):
        model = OWNER_MODELS[kind]
        query = db.session.query(model).filter(model.id == owner_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        owner = query.one_or_none()
        if owner is None:
            raise OwnerNotFound(OWNER_LABELS[model])
        return owner

    def require_owner(self, owner_id: int, kind: AssetKind) -> None:
        """Raise OwnerNotFound unless the row that owns ``kind`` exists."""
        self.load(owner_id, kind)

    def load(self, owner_id: int, kind: AssetKind) -> Optional[PointerSet]:
        """Current pointer set for owner+kind, or None when nothing is referenced."""
        try:
            owner = self._owner(owner_id, kind)
            return _read(owner, kind)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Pointer load failed for %s %s: %s", kind.value, owner_id, e)
            raise RecordPersistFailure() from e

    # ---- writes ----

    def swap(self, owner_id: int, kind: AssetKind, new: Optional[PointerSet]) -> Optional[PointerSet]:
        """Replace the owner's pointers with ``new`` (None clears them).

        Returns the previous pointer set so the caller can delete it.
        """
        try:
            owner = self._owner(owner_id, kind, for_update=True)
            previous = _read(owner, kind)
            _write(owner, kind, new)
            db.session.commit()
        except OwnerNotFound:
            db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Pointer swap failed for %s %s: %s", kind.value, owner_id, e)
            raise RecordPersistFailure() from e
        return previous


def _read(owner, kind: AssetKind) -> Optional[PointerSet]:
    if kind is AssetKind.RESUME:
        resume = owner.resume
        if resume is None:
            return None
        urls = list(resume.page_image_urls or [])
        ids = list(resume.page_image_storage_ids or [])
        ids += [None] * (len(urls) - len(ids))
        return PointerSet(
            document=AssetRef(url=resume.document_url, storage_id=resume.document_storage_id, kind=ResourceKind.RAW),
            pages=[AssetRef(url=u, storage_id=i, kind=ResourceKind.IMAGE) for u, i in zip(urls, ids)],
            original_file_name=resume.original_file_name,
            file_size=resume.file_size,
        )

    if kind is AssetKind.PROFILE_IMAGE:
        if not owner.profile_image_url:
            return None
        return PointerSet(images=[AssetRef(
            url=owner.profile_image_url,
            storage_id=owner.profile_image_storage_id,
            kind=ResourceKind.IMAGE,
        )])

    if kind is AssetKind.BLOG_FEATURED_IMAGE:
        if not owner.featured_image:
            return None
        return PointerSet(images=[AssetRef.from_json(owner.featured_image)])

    images: List[AssetRef] = [AssetRef.from_json(i) for i in (owner.images or [])]
    return PointerSet(images=images) if images else None


def _write(owner, kind: AssetKind, new: Optional[PointerSet]) -> None:
    if kind is AssetKind.RESUME:
        if new is None:
            if owner.resume is not None:
                db.session.delete(owner.resume)
            return
        resume = owner.resume
        if resume is None:
            resume = Resume(user=owner)
            db.session.add(resume)
        resume.original_file_name = new.original_file_name
        resume.file_size = new.file_size
        resume.page_count = new.page_count
        resume.document_url = new.document.url
        resume.document_storage_id = new.document.storage_id
        resume.page_image_urls = [p.url for p in new.pages]
        resume.page_image_storage_ids = [p.storage_id for p in new.pages]
        resume.uploaded_at = utcnow()
        return

    if kind is AssetKind.PROFILE_IMAGE:
        image = new.images[0] if new and new.images else None
        owner.profile_image_url = image.url if image else None
        owner.profile_image_storage_id = image.storage_id if image else None
        return

    if kind is AssetKind.BLOG_FEATURED_IMAGE:
        image = new.images[0] if new and new.images else None
        owner.featured_image = image.to_json() if image else None
        return

    owner.images = [i.to_json() for i in (new.images if new else [])]
