from __future__ import annotations

import asyncio
import json
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING

import aiofiles

if TYPE_CHECKING:
    from source.context import Context

from source.services.manager import BaseTauntCatalogServiceManager

# -------------------------------------------------------------- #
# Taunt Model
# -------------------------------------------------------------- #


@dataclass(frozen=True)
class Taunt:
    """A canned reply: 1-based catalog position, text, and the matching audio clip."""

    index: int
    text: str
    audio_path: str


class TauntCatalogError(Exception):
    """Raised when the taunt catalog file is missing or malformed."""


# -------------------------------------------------------------- #
# Taunt Catalog Service
# -------------------------------------------------------------- #


class TauntCatalogService(BaseTauntCatalogServiceManager):
    """Static, ordered taunt list loaded once at startup."""

    AUDIO_EXTENSION = ".ogg"

    def __init__(self, context: Context, catalog_path: str, audio_path: str):
        super().__init__(context)
        self.catalog_path = catalog_path
        self.audio_path = audio_path
        self._taunts: tuple[Taunt, ...] = ()

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)

        texts = await self._read_catalog()
        self._taunts = tuple(
            Taunt(index=i, text=text, audio_path=self.get_audio_path(i))
            for i, text in enumerate(texts, start=1)
        )

        await self.services.logging_service.info(
            f"TauntCatalogService loaded {len(self._taunts)} taunts from {self.catalog_path}"
        )

        # Missing clips only disable voice playback for that taunt
        loop = asyncio.get_running_loop()
        missing = [
            taunt.index
            for taunt in self._taunts
            if not await loop.run_in_executor(None, os.path.isfile, taunt.audio_path)
        ]
        if missing:
            await self.services.logging_service.warning(
                f"No audio clip found in {self.audio_path} for taunt(s): {missing}"
            )
        return True

    async def on_close(self):
        return True

    # -------------------------------------------------------------- #
    # Catalog Methods
    # -------------------------------------------------------------- #

    def __len__(self) -> int:
        return len(self._taunts)

    def get_audio_path(self, index: int) -> str:
        """Audio clips are named by their 1-based catalog index."""
        return os.path.join(self.audio_path, f"{index}{self.AUDIO_EXTENSION}")

    def get_taunt(self, index: int) -> Taunt | None:
        """
        Get a taunt by 1-based index.

        Returns:
            The taunt, or None for indices outside 1..len(catalog)
        """
        if index < 1 or index > len(self._taunts):
            return None
        return self._taunts[index - 1]

    def list_taunts(self) -> list[Taunt]:
        return list(self._taunts)

    # -------------------------------------------------------------- #
    # Private Methods
    # -------------------------------------------------------------- #

    async def _read_catalog(self) -> list[str]:
        """Read the catalog file: a JSON array of strings."""
        try:
            async with aiofiles.open(self.catalog_path, mode="r", encoding="utf-8") as f:
                content = await f.read()
        except FileNotFoundError as e:
            raise TauntCatalogError(f"Taunt catalog not found: {self.catalog_path}") from e

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise TauntCatalogError(f"Taunt catalog is not valid JSON: {e}") from e

        if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
            raise TauntCatalogError("Taunt catalog must be a JSON array of strings")

        return data
