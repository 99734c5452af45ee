"""Document asset pipeline: staging, rendering, storage and lifecycle."""
from .context import AssetContext, get_assets, get_coordinator, init_assets
from .coordinator import AssetCoordinator, ReplaceState
from .errors import AssetError
from .pointers import AssetKind, AssetRef, PointerSet
from .staging import Upload, UploadKind
from .storage import ResourceKind

__all__ = [
    "AssetContext",
    "AssetCoordinator",
    "AssetError",
    "AssetKind",
    "AssetRef",
    "PointerSet",
    "ReplaceState",
    "ResourceKind",
    "Upload",
    "UploadKind",
    "get_assets",
    "get_coordinator",
    "init_assets",
]
