"""Pointer sets: what an owning record currently references in object storage."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .storage import ResourceKind, StoredObject


class AssetKind(enum.Enum):
    RESUME = "resume"
    PROFILE_IMAGE = "profile_image"
    BLOG_FEATURED_IMAGE = "blog_featured_image"
    PROJECT_IMAGES = "project_images"


@dataclass(frozen=True)
class AssetRef:
    url: str
    storage_id: Optional[str]
    # None for pointers written before the kind was recorded
    kind: Optional[ResourceKind] = None
    caption: str = ""

    @classmethod
    def from_stored(cls, obj: StoredObject, caption: str = "") -> "AssetRef":
        return cls(url=obj.url, storage_id=obj.storage_id, kind=obj.kind, caption=caption)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "AssetRef":
        kind = data.get("kind")
        return cls(
            url=data.get("url") or "",
            storage_id=data.get("storageId") or None,
            kind=ResourceKind(kind) if kind else None,
            caption=data.get("caption") or "",
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "caption": self.caption,
            "storageId": self.storage_id,
            "kind": self.kind.value if self.kind else None,
        }


@dataclass
class PointerSet:
    """One generation of assets for an owner+kind.

    Resumes use ``document`` and ``pages``; image owners use ``images``.
    """
    document: Optional[AssetRef] = None
    pages: List[AssetRef] = field(default_factory=list)
    images: List[AssetRef] = field(default_factory=list)
    original_file_name: str = ""
    file_size: int = 0

    @property
    def page_count(self) -> int:
        return len(self.pages)

    def refs(self) -> List[AssetRef]:
        out: List[AssetRef] = []
        if self.document is not None:
            out.append(self.document)
        out.extend(self.pages)
        out.extend(self.images)
        return out

    def storage_ids(self) -> List[str]:
        return [r.storage_id for r in self.refs() if r.storage_id]

    def is_empty(self) -> bool:
        return not self.refs()
