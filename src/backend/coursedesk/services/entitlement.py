"""Read-only gate fed by the remote entitlement service.

The engine only consumes ``EntitlementGate.read_only``; fetching and caching
the remote status lives here so every mutating entry point can call
``ensure_writable()`` first.
"""
import logging
import threading
import time
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from coursedesk.config import settings
from coursedesk.models.enums import EntitlementStatus

logger = logging.getLogger(__name__)

TOKEN_ERROR_MARKERS = ("jwt", "refresh token", "session", "invalid token")


class ReadOnlyError(RuntimeError):
    def __init__(self, message: str = "Workspace is read-only; changes are disabled") -> None:
        super().__init__(message)


class EntitlementClientError(RuntimeError):
    pass


class EntitlementState(BaseModel):
    configured: bool = False
    authenticated: bool = False
    status: EntitlementStatus = EntitlementStatus.unknown
    read_only: bool = False
    plan_code: str | None = None
    days_until_read_only: int | None = None
    current_period_end: str | None = None
    grace_until: str | None = None
    error: str | None = None
    last_checked_at: datetime | None = None


class EntitlementClient:
    def __init__(
        self,
        rpc_url: str | None = None,
        api_key: str | None = None,
        access_token: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.rpc_url = (settings.entitlement_rpc_url if rpc_url is None else rpc_url).strip()
        self.api_key = settings.entitlement_api_key if api_key is None else api_key
        self.access_token = (
            settings.entitlement_access_token if access_token is None else access_token
        )
        self.transport = transport

    def is_configured(self) -> bool:
        return bool(self.rpc_url)

    def fetch(self) -> dict[str, Any] | None:
        """Return the entitlement row, or None when there is no signed-in session."""
        if not self.access_token:
            return None

        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token}",
        }
        try:
            with httpx.Client(timeout=15, transport=self.transport) as client:
                response = client.post(self.rpc_url, headers=headers, json={"p_tenant_id": None})
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            raise EntitlementClientError(
                f"Entitlement request failed ({exc.response.status_code}): {exc.response.text}"
            ) from exc
        except httpx.HTTPError as exc:
            raise EntitlementClientError(f"Entitlement HTTP error: {exc}") from exc
        except ValueError as exc:
            raise EntitlementClientError("Entitlement response is not valid JSON") from exc

        row = data[0] if isinstance(data, list) and data else data
        if not row or not isinstance(row, dict):
            raise EntitlementClientError("Entitlement data is missing")
        return row


def state_from_row(row: dict[str, Any]) -> EntitlementState:
    try:
        status = EntitlementStatus(str(row.get("status") or "unknown"))
    except ValueError:
        status = EntitlementStatus.unknown
    days = row.get("days_until_read_only")
    return EntitlementState(
        configured=True,
        authenticated=True,
        status=status,
        read_only=bool(row.get("read_only")),
        plan_code=row.get("plan_code") or None,
        days_until_read_only=days if isinstance(days, int) and not isinstance(days, bool) else None,
        current_period_end=row.get("current_period_end") or None,
        grace_until=row.get("grace_until") or None,
        error=None,
        last_checked_at=datetime.utcnow(),
    )


class EntitlementGate:
    def __init__(
        self,
        client: EntitlementClient | None = None,
        cache_path: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client or EntitlementClient()
        path = settings.entitlement_cache_path if cache_path is None else cache_path
        self.cache_path = Path(path) if path else None
        self.refresh_interval_seconds = settings.entitlement_refresh_interval_seconds
        self.focus_throttle_seconds = settings.entitlement_focus_throttle_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._last_focus_refresh: float | None = None
        self._timer: threading.Timer | None = None
        self._state = self._load_cache()

    @property
    def state(self) -> EntitlementState:
        return self._state

    @property
    def read_only(self) -> bool:
        return self._state.read_only

    def ensure_writable(self) -> None:
        if self._state.read_only:
            raise ReadOnlyError()

    def set_state(self, state: EntitlementState) -> EntitlementState:
        with self._lock:
            self._state = state
            self._persist(state)
        return state

    def refresh(self) -> EntitlementState:
        now = datetime.utcnow()
        if not self.client.is_configured():
            return self.set_state(EntitlementState(configured=False, last_checked_at=now))

        try:
            row = self.client.fetch()
        except EntitlementClientError as exc:
            message = str(exc)
            if any(marker in message.lower() for marker in TOKEN_ERROR_MARKERS):
                logger.info("Entitlement session is no longer valid; signing out")
                return self.set_state(
                    EntitlementState(configured=True, authenticated=False, last_checked_at=now)
                )
            logger.warning("Entitlement refresh failed, keeping cached state: %s", message)
            return self.set_state(
                self._state.model_copy(
                    update={"configured": True, "error": message, "last_checked_at": now}
                )
            )

        if row is None:
            return self.set_state(
                EntitlementState(configured=True, authenticated=False, last_checked_at=now)
            )
        state = self.set_state(state_from_row(row))
        if state.read_only:
            logger.warning("Entitlement status %s: workspace is read-only", state.status.value)
        return state

    def refresh_on_focus(self) -> bool:
        """Refresh unless the last focus-triggered refresh was too recent."""
        now = self._clock()
        if (
            self._last_focus_refresh is not None
            and now - self._last_focus_refresh < self.focus_throttle_seconds
        ):
            return False
        self._last_focus_refresh = now
        self.refresh()
        return True

    def start_background_refresh(self) -> None:
        if self._timer is not None:
            return
        self._schedule()

    def stop_background_refresh(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _schedule(self) -> None:
        self._timer = threading.Timer(self.refresh_interval_seconds, self._tick)
        self._timer.daemon = True
        self._timer.start()

    def _tick(self) -> None:
        try:
            self.refresh()
        finally:
            if self._timer is not None:
                self._schedule()

    def _load_cache(self) -> EntitlementState:
        if self.cache_path is None or not self.cache_path.exists():
            return EntitlementState()
        try:
            cached = EntitlementState.model_validate_json(self.cache_path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            logger.warning("Ignoring unreadable entitlement cache %s: %s", self.cache_path, exc)
            return EntitlementState()
        return cached.model_copy(update={"error": None})

    def _persist(self, state: EntitlementState) -> None:
        if self.cache_path is None:
            return
        self.cache_path.write_text(state.model_dump_json(), encoding="utf-8")


entitlement_gate = EntitlementGate()


def get_entitlement_gate() -> EntitlementGate:
    return entitlement_gate
