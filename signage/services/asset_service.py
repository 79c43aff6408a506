"""素材服务 - 可显示素材的目录

The scheduling engine treats asset references as opaque ids. This module is
the collaborator that knows whether an id exists and what it describes:
- AssetCatalog: protocol consumed by the scheduler (exists / resolve)
- InMemoryAssetCatalog: process-local registry
- JsonAssetCatalog: registry persisted to a human-editable JSON file
"""
import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol
import uuid

from loguru import logger

from ..scheduler.errors import NotFound
from ..scheduler.schedule import now_ms

logger = logger.bind(module="asset_service")


@dataclass
class AssetMetadata:
    """Metadata of a displayable asset (image, slide, clip...)."""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    title: str = ""
    category: str = ""
    background_color: str = "#000000"
    content_type: str = "image/png"
    uri: str = ""
    created_at_ms: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "category": self.category,
            "background_color": self.background_color,
            "content_type": self.content_type,
            "uri": self.uri,
            "created_at_ms": self.created_at_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AssetMetadata":
        return cls(
            id=data.get("id") or uuid.uuid4().hex,
            title=data.get("title", ""),
            category=data.get("category", ""),
            background_color=data.get("background_color", "#000000"),
            content_type=data.get("content_type", "image/png"),
            uri=data.get("uri", ""),
            created_at_ms=data.get("created_at_ms", now_ms()),
        )


class AssetCatalog(Protocol):
    """Protocol for the asset collaborator."""

    async def exists(self, asset_ref: str) -> bool:
        """Return True if the asset is known."""
        ...

    async def resolve(self, asset_ref: str) -> AssetMetadata:
        """Return metadata for the asset, raising NotFound if unknown."""
        ...


class InMemoryAssetCatalog:
    """Process-local asset registry."""

    def __init__(self, assets: list[AssetMetadata] | None = None):
        self._assets: dict[str, AssetMetadata] = {a.id: a for a in assets or []}

    async def exists(self, asset_ref: str) -> bool:
        return asset_ref in self._assets

    async def resolve(self, asset_ref: str) -> AssetMetadata:
        asset = self._assets.get(asset_ref)
        if asset is None:
            raise NotFound(asset_ref, kind="asset")
        return asset

    async def register(self, asset: AssetMetadata) -> AssetMetadata:
        """Add or replace an asset."""
        self._assets[asset.id] = asset
        logger.info(f"Registered asset {asset.id}: {asset.title}")
        return asset

    async def unregister(self, asset_ref: str) -> bool:
        """Forget an asset.

        Schedules that already reference it are left alone; the engine does
        not re-validate assets at resolution time.
        """
        removed = self._assets.pop(asset_ref, None) is not None
        if removed:
            logger.info(f"Unregistered asset {asset_ref}")
        return removed

    async def list(self) -> list[AssetMetadata]:
        """All assets, newest first."""
        return sorted(self._assets.values(), key=lambda a: a.created_at_ms, reverse=True)


class JsonAssetCatalog(InMemoryAssetCatalog):
    """Asset registry persisted to a JSON file.

    The file is rewritten atomically (temp file + rename) after every change
    so it can be inspected or edited by hand while the service is stopped.
    """

    def __init__(self, json_path: str | Path):
        super().__init__()
        self.json_path = Path(json_path).expanduser()
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Load assets from the JSON file, creating it if missing."""
        self.json_path.parent.mkdir(parents=True, exist_ok=True)
        if self.json_path.exists():
            await self._load_from_file()
        else:
            await self._save_to_file()
        logger.info(f"JSON asset catalog initialized at {self.json_path}")

    async def register(self, asset: AssetMetadata) -> AssetMetadata:
        await super().register(asset)
        await self._save_to_file()
        return asset

    async def unregister(self, asset_ref: str) -> bool:
        removed = await super().unregister(asset_ref)
        if removed:
            await self._save_to_file()
        return removed

    async def _load_from_file(self) -> None:
        async with self._lock:
            with open(self.json_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            self._assets = {}
            for asset_data in data.get("assets", []):
                asset = AssetMetadata.from_dict(asset_data)
                self._assets[asset.id] = asset
            logger.info(f"Loaded {len(self._assets)} assets from {self.json_path}")

    async def _save_to_file(self) -> None:
        async with self._lock:
            export_data = {
                "exported_at": datetime.now().isoformat(),
                "total_assets": len(self._assets),
                "assets": [a.to_dict() for a in await self.list()],
            }
            temp_path = self.json_path.with_suffix(".tmp")
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(export_data, f, ensure_ascii=False, indent=2)
            temp_path.replace(self.json_path)
            logger.debug(f"Saved {len(self._assets)} assets to {self.json_path}")
