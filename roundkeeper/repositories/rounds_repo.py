from __future__ import annotations

import copy
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Protocol

import httpx

from roundkeeper.config import Settings
from roundkeeper.rounds.models import RoundRecord

__all__ = [
    "DEFAULT_COURSE_PAR",
    "RoundsRepository",
    "SupabaseRoundsRepository",
    "InMemoryRoundsRepository",
    "build_rounds_repository",
]

DEFAULT_COURSE_PAR = 72


class RoundsRepository(Protocol):
    async def create_round(
        self,
        *,
        profile_id: str,
        course_id: str | None,
        tee_id: str | None = None,
        tee_name: str | None = None,
    ) -> RoundRecord: ...

    async def fetch_round(self, round_id: str) -> RoundRecord | None: ...

    async def fetch_course_par(self, course_id: str) -> int | None: ...

    async def upsert_hole(
        self,
        round_id: str,
        hole_number: int,
        hole_data: Mapping[str, Any],
        total_score: int,
    ) -> None: ...

    async def list_hole_scores(self, round_id: str) -> List[Dict[str, Any]]: ...

    async def update_round(
        self, round_id: str, fields: Mapping[str, Any]
    ) -> RoundRecord | None: ...

    async def delete_incomplete_round(self, round_id: str) -> bool: ...

    async def invoke_function(self, name: str, body: Mapping[str, Any]) -> Any: ...

    async def latest_insight(
        self, *, profile_id: str | None = None, round_id: str | None = None
    ) -> Dict[str, Any] | None: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_ts(dt_value: datetime) -> str:
    return dt_value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


class SupabaseRoundsRepository:
    """PostgREST client for the ``rounds``, ``courses``, ``shots`` and ``insights`` tables."""

    def __init__(
        self,
        *,
        base_url: str,
        service_key: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        root = base_url.rstrip("/")
        if root.endswith("/rest/v1"):
            root = root[: -len("/rest/v1")]
        self._functions_url = f"{root}/functions/v1"
        self._client = httpx.AsyncClient(
            base_url=f"{root}/rest/v1",
            headers={
                "apikey": service_key,
                "Authorization": f"Bearer {service_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "SupabaseRoundsRepository":
        if not settings.supabase_url or not settings.supabase_key:
            raise RuntimeError("Supabase credentials not configured")
        return cls(
            base_url=settings.supabase_url,
            service_key=settings.supabase_key,
            timeout=settings.operation_timeout_s,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_round(
        self,
        *,
        profile_id: str,
        course_id: str | None,
        tee_id: str | None = None,
        tee_name: str | None = None,
    ) -> RoundRecord:
        payload = {
            "profile_id": profile_id,
            "course_id": course_id,
            "is_complete": False,
            "selected_tee_id": tee_id,
            "selected_tee_name": tee_name,
        }
        response = await self._client.post(
            "/rounds", json=payload, headers={"Prefer": "return=representation"}
        )
        response.raise_for_status()
        data = response.json()
        if not data:
            raise RuntimeError("failed to create round")
        return RoundRecord.model_validate(data[0])

    async def fetch_round(self, round_id: str) -> RoundRecord | None:
        response = await self._client.get(
            "/rounds", params={"id": f"eq.{round_id}", "limit": 1}
        )
        response.raise_for_status()
        data = response.json()
        if isinstance(data, list) and data:
            return RoundRecord.model_validate(data[0])
        return None

    async def fetch_course_par(self, course_id: str) -> int | None:
        response = await self._client.get(
            "/courses", params={"id": f"eq.{course_id}", "select": "par", "limit": 1}
        )
        response.raise_for_status()
        data = response.json()
        if isinstance(data, list) and data:
            par = data[0].get("par")
            return int(par) if par is not None else None
        return None

    async def upsert_hole(
        self,
        round_id: str,
        hole_number: int,
        hole_data: Mapping[str, Any],
        total_score: int,
    ) -> None:
        payload = {
            "round_id": round_id,
            "hole_number": hole_number,
            "hole_data": dict(hole_data),
            "total_score": total_score,
        }
        response = await self._client.post(
            "/shots",
            params={"on_conflict": "round_id,hole_number"},
            json=payload,
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )
        response.raise_for_status()

    async def list_hole_scores(self, round_id: str) -> List[Dict[str, Any]]:
        response = await self._client.get(
            "/shots",
            params={
                "round_id": f"eq.{round_id}",
                "select": "hole_number,total_score",
                "order": "hole_number.asc",
            },
        )
        response.raise_for_status()
        data = response.json()
        if isinstance(data, list):
            return data
        return []

    async def update_round(
        self, round_id: str, fields: Mapping[str, Any]
    ) -> RoundRecord | None:
        response = await self._client.patch(
            "/rounds",
            params={"id": f"eq.{round_id}"},
            json=dict(fields),
            headers={"Prefer": "return=representation"},
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        data = response.json()
        if isinstance(data, list) and data:
            return RoundRecord.model_validate(data[0])
        return None

    async def delete_incomplete_round(self, round_id: str) -> bool:
        response = await self._client.delete(
            "/rounds",
            params={"id": f"eq.{round_id}", "is_complete": "eq.false"},
            headers={"Prefer": "return=representation"},
        )
        response.raise_for_status()
        # Completed rounds are filtered out, so an empty body means nothing was deleted.
        deleted = response.json() if response.content else []
        return bool(deleted)

    async def invoke_function(self, name: str, body: Mapping[str, Any]) -> Any:
        response = await self._client.post(
            f"{self._functions_url}/{name}", json=dict(body)
        )
        response.raise_for_status()
        if not response.content:
            return None
        return response.json()

    async def latest_insight(
        self, *, profile_id: str | None = None, round_id: str | None = None
    ) -> Dict[str, Any] | None:
        params: Dict[str, Any] = {"order": "created_at.desc", "limit": 1}
        if profile_id:
            params["profile_id"] = f"eq.{profile_id}"
        if round_id:
            params["round_id"] = f"eq.{round_id}"
        response = await self._client.get("/insights", params=params)
        response.raise_for_status()
        data = response.json()
        if isinstance(data, list) and data:
            return data[0]
        return None


RemoteFunction = Callable[[Mapping[str, Any]], Awaitable[Any]]


class InMemoryRoundsRepository:
    """Process-local twin of the Supabase tables, used for tests and local runs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.rounds: Dict[str, Dict[str, Any]] = {}
        self.courses: Dict[str, Dict[str, Any]] = {}
        self.shots: Dict[tuple[str, int], Dict[str, Any]] = {}
        self.insights: List[Dict[str, Any]] = []
        self.functions: Dict[str, RemoteFunction] = {}
        self.calls: List[tuple[str, Any]] = []
        self._failures: Dict[str, List[BaseException]] = {}

    def add_course(self, course_id: str, *, par: int | None) -> None:
        with self._lock:
            self.courses[course_id] = {"id": course_id, "par": par}

    def fail_next(self, operation: str, exc: BaseException, *, times: int = 1) -> None:
        with self._lock:
            self._failures.setdefault(operation, []).extend([exc] * times)

    def _record(self, operation: str, detail: Any) -> None:
        with self._lock:
            self.calls.append((operation, detail))
            pending = self._failures.get(operation)
            exc = pending.pop(0) if pending else None
        if exc is not None:
            raise exc

    def call_count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    async def create_round(
        self,
        *,
        profile_id: str,
        course_id: str | None,
        tee_id: str | None = None,
        tee_name: str | None = None,
    ) -> RoundRecord:
        self._record("create_round", profile_id)
        round_id = str(uuid.uuid4())
        row = {
            "id": round_id,
            "profile_id": profile_id,
            "course_id": course_id,
            "is_complete": False,
            "selected_tee_id": tee_id,
            "selected_tee_name": tee_name,
            "created_at": _serialize_ts(_now()),
        }
        with self._lock:
            self.rounds[round_id] = row
        return RoundRecord.model_validate(row)

    async def fetch_round(self, round_id: str) -> RoundRecord | None:
        self._record("fetch_round", round_id)
        with self._lock:
            row = self.rounds.get(round_id)
        return RoundRecord.model_validate(row) if row else None

    async def fetch_course_par(self, course_id: str) -> int | None:
        self._record("fetch_course_par", course_id)
        with self._lock:
            course = self.courses.get(course_id)
        if not course:
            return None
        return course.get("par")

    async def upsert_hole(
        self,
        round_id: str,
        hole_number: int,
        hole_data: Mapping[str, Any],
        total_score: int,
    ) -> None:
        self._record("upsert_hole", (round_id, hole_number))
        with self._lock:
            self.shots[(round_id, hole_number)] = {
                "round_id": round_id,
                "hole_number": hole_number,
                "hole_data": copy.deepcopy(dict(hole_data)),
                "total_score": total_score,
            }

    async def list_hole_scores(self, round_id: str) -> List[Dict[str, Any]]:
        self._record("list_hole_scores", round_id)
        with self._lock:
            rows = [
                {"hole_number": row["hole_number"], "total_score": row["total_score"]}
                for key, row in self.shots.items()
                if key[0] == round_id
            ]
        rows.sort(key=lambda row: row["hole_number"])
        return rows

    async def update_round(
        self, round_id: str, fields: Mapping[str, Any]
    ) -> RoundRecord | None:
        self._record("update_round", (round_id, dict(fields)))
        with self._lock:
            row = self.rounds.get(round_id)
            if row is None:
                return None
            row.update(fields)
            return RoundRecord.model_validate(row)

    async def delete_incomplete_round(self, round_id: str) -> bool:
        self._record("delete_incomplete_round", round_id)
        with self._lock:
            row = self.rounds.get(round_id)
            if row is None or row.get("is_complete"):
                return False
            del self.rounds[round_id]
            for key in [k for k in self.shots if k[0] == round_id]:
                del self.shots[key]
        return True

    async def invoke_function(self, name: str, body: Mapping[str, Any]) -> Any:
        self._record("invoke_function", (name, dict(body)))
        handler = self.functions.get(name)
        if handler is None:
            return None
        return await handler(body)

    async def latest_insight(
        self, *, profile_id: str | None = None, round_id: str | None = None
    ) -> Dict[str, Any] | None:
        self._record("latest_insight", (profile_id, round_id))
        with self._lock:
            rows = [
                row
                for row in self.insights
                if (profile_id is None or row.get("profile_id") == profile_id)
                and (round_id is None or row.get("round_id") == round_id)
            ]
        if not rows:
            return None
        rows.sort(key=lambda row: str(row.get("created_at") or ""), reverse=True)
        return rows[0]


def build_rounds_repository(settings: Settings) -> RoundsRepository:
    if settings.supabase_url and settings.supabase_key:
        return SupabaseRoundsRepository.from_settings(settings)
    return InMemoryRoundsRepository()
