"""
REST client for the workflow server.

Reads feed reconciliation; mutations are what a user's actions call. Any
non-2xx answer is raised as a SyncError subclass carrying the server's reason
code (``Unauthorized``, ``InvalidState``, ``ConflictingAccept``, ...).
"""

from __future__ import annotations

import uuid
from typing import Any, Optional

import httpx
import structlog

from madadkaro_shared.schemas.bids import BidRead
from madadkaro_shared.schemas.common import RejectionCode
from madadkaro_shared.schemas.tasks import TaskRead

log = structlog.get_logger()

API_PREFIX = "/api/v1"
TASKS_PAGE_SIZE = 100  # largest per_page the server accepts


class SyncError(Exception):
    """A request the server refused or never answered."""

    def __init__(self, detail: str, code: Optional[RejectionCode] = None, status_code: Optional[int] = None):
        super().__init__(detail)
        self.detail = detail
        self.code = code
        self.status_code = status_code


class AuthenticationError(SyncError):
    pass


class PermissionDenied(SyncError):
    pass


class NotFoundError(SyncError):
    pass


class ConflictError(SyncError):
    """InvalidState or ConflictingAccept: refresh and decide again."""


class InvalidInput(SyncError):
    pass


_STATUS_ERRORS: dict[int, type[SyncError]] = {
    401: AuthenticationError,
    403: PermissionDenied,
    404: NotFoundError,
    409: ConflictError,
    422: InvalidInput,
}


def _error_for(response: httpx.Response) -> SyncError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    detail = body.get("detail") if isinstance(body, dict) else None
    if not isinstance(detail, str):
        detail = response.reason_phrase or f"HTTP {response.status_code}"
    code = None
    if isinstance(body, dict) and body.get("code"):
        try:
            code = RejectionCode(body["code"])
        except ValueError:
            code = None
    error_cls = _STATUS_ERRORS.get(response.status_code, SyncError)
    return error_cls(detail, code=code, status_code=response.status_code)


class ApiClient:
    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        verify_tls: bool = True,
        request_timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._verify_tls = verify_tls
        self._request_timeout = request_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def open(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self._base_url + API_PREFIX,
            headers={"Authorization": f"Bearer {self._token}"},
            timeout=httpx.Timeout(self._request_timeout),
            verify=self._verify_tls,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        assert self._client
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as exc:
            log.warning("api.unreachable", method=method, path=path, error=str(exc))
            raise SyncError(f"Server unreachable: {exc}") from exc
        if response.is_error:
            error = _error_for(response)
            log.info(
                "api.rejected",
                method=method,
                path=path,
                status=response.status_code,
                code=error.code.value if error.code else None,
            )
            raise error
        return response.json()

    # --- Reads ---

    async def list_my_tasks(self, page_size: int = TASKS_PAGE_SIZE) -> list[TaskRead]:
        """Every task the user owns or is assigned, fetched page by page."""
        tasks: list[TaskRead] = []
        page = 1
        while True:
            data = await self._request(
                "GET", "/tasks/", params={"mine": "true", "page": page, "per_page": page_size}
            )
            tasks.extend(TaskRead.model_validate(t) for t in data)
            if len(data) < page_size:
                return tasks
            page += 1

    async def list_my_bids(self) -> list[BidRead]:
        data = await self._request("GET", "/bids/mine")
        return [BidRead.model_validate(b) for b in data]

    async def get_task(self, task_id: uuid.UUID) -> TaskRead:
        return TaskRead.model_validate(await self._request("GET", f"/tasks/{task_id}"))

    async def list_task_bids(self, task_id: uuid.UUID) -> list[BidRead]:
        data = await self._request("GET", f"/tasks/{task_id}/bids")
        return [BidRead.model_validate(b) for b in data]

    # --- Bid mutations ---

    async def place_bid(
        self,
        task_id: uuid.UUID,
        amount: float,
        message: str,
        estimated_days: Optional[int] = None,
    ) -> BidRead:
        body = {
            "task_id": str(task_id),
            "amount": amount,
            "message": message,
            "estimated_days": estimated_days,
        }
        return BidRead.model_validate(await self._request("POST", "/bids/", json=body))

    async def update_bid(self, bid_id: uuid.UUID, **changes: Any) -> BidRead:
        body = {k: v for k, v in changes.items() if v is not None}
        return BidRead.model_validate(await self._request("PATCH", f"/bids/{bid_id}", json=body))

    async def accept_bid(self, bid_id: uuid.UUID) -> BidRead:
        return BidRead.model_validate(await self._request("POST", f"/bids/{bid_id}/accept"))

    async def reject_bid(self, bid_id: uuid.UUID, reason: Optional[str] = None) -> BidRead:
        data = await self._request("POST", f"/bids/{bid_id}/reject", json={"reason": reason})
        return BidRead.model_validate(data)

    async def withdraw_bid(self, bid_id: uuid.UUID) -> BidRead:
        return BidRead.model_validate(await self._request("POST", f"/bids/{bid_id}/withdraw"))

    # --- Task lifecycle ---

    async def start_task(self, task_id: uuid.UUID) -> TaskRead:
        return TaskRead.model_validate(await self._request("POST", f"/tasks/{task_id}/start"))

    async def request_completion(self, task_id: uuid.UUID, note: str) -> TaskRead:
        data = await self._request("POST", f"/tasks/{task_id}/request-completion", json={"note": note})
        return TaskRead.model_validate(data)

    async def confirm_completion(self, task_id: uuid.UUID, feedback: Optional[str] = None) -> TaskRead:
        data = await self._request(
            "POST", f"/tasks/{task_id}/confirm-completion", json={"feedback": feedback}
        )
        return TaskRead.model_validate(data)

    async def reject_completion(self, task_id: uuid.UUID, reason: str) -> TaskRead:
        data = await self._request(
            "POST", f"/tasks/{task_id}/reject-completion", json={"reason": reason}
        )
        return TaskRead.model_validate(data)

    async def cancel_task(self, task_id: uuid.UUID) -> TaskRead:
        return TaskRead.model_validate(await self._request("POST", f"/tasks/{task_id}/cancel"))
