"""Local bookkeeping for the round currently being played."""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from roundkeeper.errors import StorageError
from roundkeeper.storage.local import CURRENT_ROUND_KEY, KeyValueStore, holes_key

from .models import HoleCollection, HoleRecord, ShotOutcome, ShotType

logger = logging.getLogger(__name__)


class CurrentRound(BaseModel):
    round_id: str = Field(alias="id")
    course_id: str | None = None
    current_hole: int = 1

    model_config = ConfigDict(populate_by_name=True)


class RoundTracker:
    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    async def load_holes(self, round_id: str) -> HoleCollection | None:
        raw = await self._store.get(holes_key(round_id))
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageError(f"hole data for round {round_id} is corrupt") from exc
        if not isinstance(payload, dict):
            raise StorageError(f"hole data for round {round_id} is corrupt")
        return HoleCollection.from_storage(round_id, payload)

    async def save_holes(self, collection: HoleCollection) -> None:
        await self._store.put(holes_key(collection.round_id), collection.to_storage())

    async def save_hole(
        self, round_id: str, hole_number: int, record: HoleRecord
    ) -> HoleCollection:
        existing = await self.load_holes(round_id)
        collection = existing or HoleCollection(round_id=round_id)
        collection = collection.with_hole(hole_number, record)
        await self.save_holes(collection)
        logger.debug("saved hole %s for round %s", hole_number, round_id)
        return collection

    async def get_hole(self, round_id: str, hole_number: int) -> HoleRecord:
        collection = await self.load_holes(round_id)
        if collection is None:
            return HoleRecord()
        return collection.holes.get(hole_number) or HoleRecord()

    async def add_shot(
        self,
        round_id: str,
        hole_number: int,
        shot_type: ShotType,
        outcome: ShotOutcome,
    ) -> HoleRecord:
        record = await self.get_hole(round_id, hole_number)
        updated = record.with_shot(shot_type, outcome)
        await self.save_hole(round_id, hole_number, updated)
        return updated

    async def remove_shot(
        self,
        round_id: str,
        hole_number: int,
        shot_type: ShotType,
        outcome: ShotOutcome,
    ) -> HoleRecord:
        record = await self.get_hole(round_id, hole_number)
        updated = record.without_shot(shot_type, outcome)
        if updated is not record:
            await self.save_hole(round_id, hole_number, updated)
        return updated

    async def set_current_round(self, current: CurrentRound) -> None:
        await self._store.put(
            CURRENT_ROUND_KEY, current.model_dump_json(by_alias=True)
        )

    async def get_current_round(self) -> CurrentRound | None:
        raw = await self._store.get(CURRENT_ROUND_KEY)
        if raw is None:
            return None
        try:
            data: Any = json.loads(raw)
            return CurrentRound.model_validate(data)
        except ValueError:
            logger.warning("discarding unreadable current round pointer")
            return None

    async def move_to_hole(self, round_id: str, hole_number: int) -> None:
        """Point the current-round marker at ``hole_number`` if it tracks ``round_id``."""

        current = await self.get_current_round()
        if current is None or current.round_id != round_id:
            return
        if current.current_hole != hole_number:
            await self.set_current_round(
                current.model_copy(update={"current_hole": hole_number})
            )

    async def clear_round(self, round_id: str) -> None:
        await self._store.delete(holes_key(round_id))
        await self._store.delete(CURRENT_ROUND_KEY)
