"""
HTTP remote store.

Maps each RemoteDraftStore call onto a JSON request against a small
REST API. ``requests`` is blocking, so every call runs in a worker
thread and the event loop keeps serving the form.

Endpoints:
    POST   /leases/{id}/acquire   {user_id, device_id} -> {acquired}
    POST   /leases/{id}/renew     {user_id}            -> {renewed}
    POST   /leases/{id}/release   {user_id}
    GET    /leases/{id}           -> {locked_by, locked_at, lock_device_id} | 404
    PUT    /drafts/{id}           {draft, expected_version, force}
                                  -> 200 {version} | 409 {draft, version, updated_at}
    GET    /drafts/{id}           -> {draft, version} | 404
    DELETE /drafts/{id}
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Dict, Optional

import requests

from ..models import Draft, LeaseInfo
from .base import PushResult, RemoteDraftStore, RemoteStoreError

logger = logging.getLogger("intakesync.remote.http")


class HttpRemoteStore(RemoteDraftStore):
    """RemoteDraftStore over a JSON/HTTP API.

    Args:
        base_url: API root, e.g. ``https://drafts.example.org/api``.
        token: Bearer token. Falls back to the ``token_env_var`` variable.
        timeout: Per-request timeout in seconds.
        token_env_var: Environment variable holding the token.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 15.0,
        token_env_var: str = "INTAKESYNC_TOKEN",
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._token = token or os.environ.get(token_env_var, "")
        self.timeout = timeout

    def _request_sync(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
        allow: tuple[int, ...] = (),
    ) -> tuple[int, Dict[str, Any]]:
        """Make an authenticated API call.

        Args:
            method: HTTP method.
            endpoint: Path below ``base_url``.
            data: JSON body.
            allow: Error statuses the caller handles itself.

        Returns:
            (status code, parsed JSON body or {}).

        Raises:
            RemoteStoreError: On connection failure or an unexpected status.
        """
        url = f"{self.base_url}{endpoint}"
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        try:
            resp = requests.request(
                method, url, headers=headers, json=data, timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise RemoteStoreError(f"{method} {endpoint}: {exc}") from exc

        if resp.status_code >= 400 and resp.status_code not in allow:
            raise RemoteStoreError(
                f"{method} {endpoint}: {resp.status_code} {resp.text}"
            )

        if not resp.content:
            return resp.status_code, {}
        try:
            body = resp.json()
        except ValueError as exc:
            raise RemoteStoreError(f"{method} {endpoint}: invalid JSON response") from exc
        return resp.status_code, body if isinstance(body, dict) else {}

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
        allow: tuple[int, ...] = (),
    ) -> tuple[int, Dict[str, Any]]:
        return await asyncio.to_thread(self._request_sync, method, endpoint, data, allow)

    async def acquire_lease(self, draft_id: str, user_id: str, device_id: str) -> bool:
        _, body = await self._request(
            "POST",
            f"/leases/{draft_id}/acquire",
            {"user_id": user_id, "device_id": device_id},
        )
        return bool(body.get("acquired"))

    async def renew_lease(self, draft_id: str, user_id: str) -> bool:
        _, body = await self._request(
            "POST", f"/leases/{draft_id}/renew", {"user_id": user_id}
        )
        return bool(body.get("renewed"))

    async def release_lease(self, draft_id: str, user_id: str) -> None:
        await self._request("POST", f"/leases/{draft_id}/release", {"user_id": user_id})

    async def get_lease_info(self, draft_id: str) -> Optional[LeaseInfo]:
        status, body = await self._request("GET", f"/leases/{draft_id}", allow=(404,))
        if status == 404 or not body.get("locked_by"):
            return None
        return LeaseInfo(
            locked_by=body["locked_by"],
            locked_at=body.get("locked_at") or "",
            lock_device_id=body.get("lock_device_id") or "",
        )

    async def push_draft(
        self,
        draft: Draft,
        expected_version: Optional[int],
        force: bool = False,
    ) -> PushResult:
        payload = {
            "draft": draft.model_dump(mode="json", exclude={"remote_version"}),
            "expected_version": expected_version,
            "force": force,
        }
        status, body = await self._request(
            "PUT", f"/drafts/{draft.id}", payload, allow=(409,)
        )
        if status == 409:
            logger.info("Version conflict pushing %s", draft.id)
            remote = body.get("draft")
            version = body.get("version")
            return PushResult(
                conflict=True,
                remote_draft=Draft(**{**remote, "remote_version": version}) if remote else None,
                remote_version=version,
                remote_updated_at=body.get("updated_at"),
            )
        return PushResult(ok=True, new_version=body.get("version"))

    async def fetch_draft(self, draft_id: str) -> Optional[Draft]:
        status, body = await self._request("GET", f"/drafts/{draft_id}", allow=(404,))
        if status == 404 or not body.get("draft"):
            return None
        try:
            return Draft(**{**body["draft"], "remote_version": body.get("version")})
        except (TypeError, ValueError) as exc:
            raise RemoteStoreError(f"Malformed draft {draft_id}: {exc}") from exc

    async def delete_draft(self, draft_id: str) -> None:
        await self._request("DELETE", f"/drafts/{draft_id}", allow=(404,))
