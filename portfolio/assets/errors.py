"""
Asset pipeline error taxonomy.

Every error carries a short user-facing message and the HTTP status the API
layer should answer with. ``retryable`` separates "fix your input" failures
from "try again later" ones.
"""
from typing import Optional


class AssetError(Exception):
    status_code = 500
    retryable = False
    default_message = "Asset processing failed"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self):
        return {"message": self.message}


# ---- fix your input ----

class ValidationError(AssetError):
    status_code = 400
    default_message = "Invalid upload"


class MissingFile(ValidationError):
    default_message = "No file uploaded"


class UnsupportedMediaType(ValidationError):
    status_code = 415
    default_message = "Unsupported file type"


class FileTooLarge(ValidationError):
    status_code = 413
    default_message = "File too large"


class TooManyFiles(ValidationError):
    default_message = "Too many files"


class DocumentCorrupt(AssetError):
    status_code = 422
    default_message = "PDF processing failed. Please ensure the file is a valid PDF."


class DocumentEncrypted(DocumentCorrupt):
    default_message = "Password-protected PDFs are not supported."


# ---- try again later ----

class ConversionTimeout(AssetError):
    status_code = 504
    retryable = True
    default_message = "PDF processing timeout. Please try with a smaller file."


class StorageUnavailable(AssetError):
    status_code = 503
    retryable = True
    default_message = "File storage is unavailable. Please try again later."


class RecordPersistFailure(AssetError):
    status_code = 500
    retryable = True
    default_message = "Could not save your upload. Please try again later."


# ---- lookups ----

class AssetNotFound(AssetError):
    """Remote object is already gone. Callers treat this as a completed delete."""
    status_code = 404
    default_message = "Asset not found"


class AssetRecordNotFound(AssetError):
    status_code = 404
    default_message = "No asset found"


class OwnerNotFound(AssetError):
    status_code = 404
    default_message = "Not found"
