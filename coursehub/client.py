"""Async API client backed by the synchronization cache.

`CourseHubClient` wraps an `httpx.AsyncClient` and routes every read of a
listing endpoint through one `SyncCache`, so several views of the same
resource share a request and are notified together when it changes.
Writes go to the API first and then update the cache with the server's
answer, which spares the follow-up GET.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List, Optional

import httpx

from .config import settings
from .utils.sync_cache import NOT_MODIFIED, Fetched, RetrievalFailed, SyncCache, unwrap_field

logger = logging.getLogger("coursehub.client")

TASKS_KEY = "/user/tasks"
CLASSES_KEY = "/classes"


def groups_key(class_id: int, project_id: int) -> str:
    return f"/classes/{class_id}/projects/{project_id}/groups"


def projects_key(class_id: int) -> str:
    return f"/classes/{class_id}/projects"


class HttpResourceFetcher:
    """Fetch JSON resources with conditional GETs.

    The validation token is sent as ``If-None-Match``; a 304 answer becomes
    `NOT_MODIFIED` and the response ``ETag`` becomes the next token.
    """

    def __init__(self, http: httpx.AsyncClient):
        self._http = http

    async def fetch(self, key: str, token: Optional[str]) -> Fetched:
        headers = {"Accept": "application/json"}
        if token:
            headers["If-None-Match"] = token
        try:
            resp = await self._http.get(key, headers=headers)
        except httpx.HTTPError as exc:
            raise RetrievalFailed(key, str(exc)) from exc
        if resp.status_code == 304:
            return NOT_MODIFIED
        if not resp.is_success:
            raise RetrievalFailed(key, f"HTTP {resp.status_code}", status_code=resp.status_code)
        try:
            body = resp.json()
        except ValueError as exc:
            raise RetrievalFailed(key, "response is not JSON") from exc
        return Fetched(body=body, token=resp.headers.get("ETag"))


class CourseHubClient:
    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        ttl: Optional[float] = None,
        max_entries: Optional[int] = None,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.http = httpx.AsyncClient(base_url=base_url, headers=headers, transport=transport)
        self.cache = SyncCache(
            HttpResourceFetcher(self.http),
            default_ttl=settings.CACHE_TTL_SECONDS if ttl is None else ttl,
            max_entries=settings.CACHE_MAX_ENTRIES if max_entries is None else max_entries,
        )

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> "CourseHubClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _send(self, method: str, path: str, **kwargs) -> dict:
        resp = await self.http.request(method, path, **kwargs)
        resp.raise_for_status()
        return resp.json()

    async def tasks(self, ttl: Optional[float] = None) -> List[dict]:
        return await self.cache.read(TASKS_KEY, ttl=ttl, extract=unwrap_field("tasks"))

    def watch_tasks(self, callback: Callable[[List[dict]], Any]) -> Callable[[], None]:
        return self.cache.subscribe(TASKS_KEY, callback, extract=unwrap_field("tasks"))

    async def create_task(self, title: str, **fields) -> dict:
        """Create a task and append it to the cached list."""
        payload = {"title": title, **fields}
        task = (await self._send("POST", TASKS_KEY, json=payload))["task"]
        self._apply_to_tasks(lambda current: list(current) + [task])
        return task

    async def update_task(self, task_id: int, **changes) -> dict:
        task = (await self._send("PATCH", f"{TASKS_KEY}/{task_id}", json=changes))["task"]
        self._apply_to_tasks(lambda current: [task if t["id"] == task_id else t for t in current])
        return task

    def _apply_to_tasks(self, transform: Callable[[List[dict]], List[dict]]) -> None:
        # a list never read would be replaced by a partial one; refetch it instead
        if self.cache.has(TASKS_KEY):
            self.cache.mutate(TASKS_KEY, transform)
        else:
            self.cache.invalidate(TASKS_KEY, extract=unwrap_field("tasks"))

    async def classes(self, ttl: Optional[float] = None) -> List[dict]:
        return await self.cache.read(CLASSES_KEY, ttl=ttl, extract=unwrap_field("classes"))

    async def projects(self, class_id: int, ttl: Optional[float] = None) -> List[dict]:
        return await self.cache.read(projects_key(class_id), ttl=ttl, extract=unwrap_field("projects"))

    async def survey(self) -> dict:
        return (await self._send("GET", "/survey"))["ratings"]

    async def groups(self, class_id: int, project_id: int, ttl: Optional[float] = None) -> List[dict]:
        return await self.cache.read(groups_key(class_id, project_id), ttl=ttl, extract=unwrap_field("groups"))

    async def form_groups(self, class_id: int, project_id: int, mode: str,
                          groups: Optional[List[dict]] = None, group_size: Optional[int] = None) -> List[dict]:
        """Ask the server to regroup a project and publish the result to watchers."""
        payload = {"mode": mode, "groups": groups or [], "group_size": group_size}
        key = groups_key(class_id, project_id)
        formed = (await self._send("POST", key, json=payload))["groups"]
        self.cache.write(key, formed)
        logger.debug("groups_cached %s (%d groups)", key, len(formed))
        return formed

    def refresh(self, key: str) -> None:
        self.cache.invalidate(key)
