"""
Wiring for the asset pipeline.

The staging directory, renderer, storage client and record store are built
once per app from its config and kept in ``app.extensions["assets"]``.
"""
from __future__ import annotations

from dataclasses import dataclass

import click
from flask import current_app
from flask.cli import AppGroup

from config import validate_storage_config

from .coordinator import AssetCoordinator
from .records import AssetRecordStore
from .renderer import DocumentRenderer
from .staging import StagingStore
from .storage import MemoryObjectStorage, ObjectStorage, S3ObjectStorage

EXTENSION_KEY = "assets"


@dataclass
class AssetSettings:
    render_timeout: float = 30
    upload_concurrency: int = 4
    staging_max_age: int = 3600


@dataclass
class AssetContext:
    staging: StagingStore
    renderer: DocumentRenderer
    storage: ObjectStorage
    records: AssetRecordStore
    settings: AssetSettings


def build_storage(settings) -> ObjectStorage:
    backend = settings["STORAGE_BACKEND"].strip().lower()
    if backend == "memory":
        return MemoryObjectStorage()
    return S3ObjectStorage(
        bucket=settings["AWS_S3_BUCKET"],
        region=settings["AWS_REGION"],
        prefix=settings["ASSET_FOLDER_PREFIX"],
        public_base_url=settings.get("ASSET_PUBLIC_BASE_URL", ""),
        timeout=settings["STORAGE_TIMEOUT_SECONDS"],
    )


def build_asset_context(settings) -> AssetContext:
    return AssetContext(
        staging=StagingStore(
            root=settings["STAGING_DIR"],
            max_pdf_bytes=settings["MAX_PDF_BYTES"],
            max_image_bytes=settings["MAX_IMAGE_BYTES"],
            max_images_per_batch=settings["MAX_IMAGES_PER_BATCH"],
        ),
        renderer=DocumentRenderer(
            dpi=settings["RENDER_DPI"],
            jpeg_quality=settings["RENDER_JPEG_QUALITY"],
        ),
        storage=build_storage(settings),
        records=AssetRecordStore(),
        settings=AssetSettings(
            render_timeout=settings["RENDER_TIMEOUT_SECONDS"],
            upload_concurrency=settings["UPLOAD_CONCURRENCY"],
            staging_max_age=settings["STAGING_MAX_AGE_SECONDS"],
        ),
    )


def init_assets(app) -> AssetContext:
    """Validate storage settings and attach the asset context to ``app``.

    Raises ConfigurationError on missing storage settings so a
    misconfigured deploy fails at boot.
    """
    validate_storage_config(app.config)
    context = build_asset_context(app.config)
    app.extensions[EXTENSION_KEY] = context
    app.cli.add_command(assets_cli)
    app.logger.info("Asset storage: %s, staging at %s", context.storage.name, context.staging.root)
    return context


def get_assets() -> AssetContext:
    return current_app.extensions[EXTENSION_KEY]


def get_coordinator() -> AssetCoordinator:
    return AssetCoordinator(get_assets())


@click.group("assets", cls=AppGroup)
def assets_cli():
    """Asset pipeline maintenance."""


@assets_cli.command("sweep-staging")
@click.option("--max-age", type=int, default=None, help="Age in seconds; defaults to STAGING_MAX_AGE_SECONDS.")
def sweep_staging(max_age):
    """Remove staged uploads left behind by crashed workers."""
    context = get_assets()
    removed = context.staging.sweep(max_age if max_age is not None else context.settings.staging_max_age)
    click.echo(f"Removed {removed} stale staging entries")


@assets_cli.command("list")
@click.argument("folder")
def list_assets(folder):
    """List storage ids under FOLDER (e.g. resume-images/42)."""
    for storage_id in get_assets().storage.list_ids(folder):
        click.echo(storage_id)
