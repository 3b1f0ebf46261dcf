# device.py
# Fitbit wearable data: credential lifecycle and daily activity / sleep.
#
# Credentials live in an injectable TokenStore, never in module globals.
# "No data for this date" is None; an expired or missing credential raises,
# so callers can tell the two apart.

import base64
import json
import time
from datetime import date as date_type
from pathlib import Path
from typing import Any, Callable

import httpx
from pydantic import BaseModel

from health_journal.errors import (
    AuthorizationRequiredError,
    DeviceDataError,
    TokenExpiredError,
)
from health_journal.models import Activity, Sleep

FITBIT_API = "https://api.fitbit.com"
TOKEN_URL = f"{FITBIT_API}/oauth2/token"
EXPIRY_MARGIN_SECONDS = 60


class FitbitCredentials(BaseModel):
    access_token: str
    refresh_token: str | None = None
    expires_at: float = 0.0  # unix seconds
    scope: str | None = None
    token_type: str | None = None
    user_id: str | None = None

    def is_fresh(self, now: float) -> bool:
        return self.expires_at > now + EXPIRY_MARGIN_SECONDS


# ---------------------------------------------------------------------------
# Token stores
# ---------------------------------------------------------------------------


class InMemoryTokenStore:
    def __init__(self, credentials: FitbitCredentials | None = None) -> None:
        self._credentials = credentials

    def load(self) -> FitbitCredentials | None:
        return self._credentials

    def save(self, credentials: FitbitCredentials) -> None:
        self._credentials = credentials


class JsonFileTokenStore:
    """Credentials persisted as JSON so they survive restarts."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def load(self) -> FitbitCredentials | None:
        if not self._path.exists():
            return None
        return FitbitCredentials.model_validate_json(self._path.read_text(encoding="utf-8"))

    def save(self, credentials: FitbitCredentials) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(credentials.model_dump_json(indent=2), encoding="utf-8")


# ---------------------------------------------------------------------------
# Response reduction
# ---------------------------------------------------------------------------


def resolve_date(value: str | None) -> str:
    """'today' (or nothing) becomes an ISO date; anything else passes through."""
    if not value or value == "today":
        return date_type.today().isoformat()
    return value


def activity_from_response(day: str, data: dict[str, Any]) -> Activity | None:
    summary = data.get("summary")
    if not summary:
        return None
    distances = summary.get("distances") or [{}]
    return Activity(
        date=day,
        steps=summary.get("steps") or 0,
        calories=summary.get("caloriesOut") or 0,
        distance=distances[0].get("distance") or 0.0,
        active_minutes=(summary.get("fairlyActiveMinutes") or 0)
        + (summary.get("veryActiveMinutes") or 0),
        resting_heart_rate=summary.get("restingHeartRate"),
        heart_rate_zones=summary.get("heartRateZones") or [],
        goals=data.get("goals") or {},
    )


def sleep_from_response(day: str, data: dict[str, Any]) -> Sleep | None:
    periods = data.get("sleep") or []
    if not periods:
        return None
    main = next((p for p in periods if p.get("isMainSleep")), periods[0])
    return Sleep(
        date=day,
        duration_min=(main.get("duration") or 0) // 60000,
        minutes_asleep=main.get("minutesAsleep") or 0,
        minutes_awake=main.get("minutesAwake") or 0,
        efficiency=main.get("efficiency") or 0,
        start_time=main.get("startTime"),
        end_time=main.get("endTime"),
        time_in_bed=main.get("timeInBed") or 0,
        stages=(main.get("levels") or {}).get("summary") or {},
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class FitbitClient:
    """
    Read-only Fitbit Web API client.

    The authorization-code grant happens elsewhere; this client only uses
    and refreshes credentials already in its TokenStore.
    """

    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        token_store: InMemoryTokenStore | JsonFileTokenStore,
        client: httpx.Client | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._store = token_store
        self._client = client or httpx.Client(timeout=15)
        self._clock = clock

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def access_token(self) -> str:
        """A usable access token, refreshing if needed. Raises AuthorizationRequiredError."""
        credentials = self._store.load()
        if credentials is None:
            raise AuthorizationRequiredError("No Fitbit credentials; authorization required")
        if credentials.is_fresh(self._clock()):
            return credentials.access_token
        if not credentials.refresh_token:
            raise AuthorizationRequiredError("Fitbit token expired and no refresh token is available")
        return self._refresh(credentials).access_token

    def _refresh(self, credentials: FitbitCredentials) -> FitbitCredentials:
        basic = base64.b64encode(f"{self._client_id}:{self._client_secret}".encode()).decode()
        try:
            response = self._client.post(
                TOKEN_URL,
                data={
                    "grant_type": "refresh_token",
                    "client_id": self._client_id or "",
                    "refresh_token": credentials.refresh_token or "",
                },
                headers={"Authorization": f"Basic {basic}"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise AuthorizationRequiredError(f"Fitbit token refresh rejected: {exc}") from exc
        except httpx.HTTPError as exc:
            raise DeviceDataError(f"Fitbit token refresh failed: {exc}") from exc

        body = response.json()
        if not body.get("access_token"):
            raise AuthorizationRequiredError("No access token in Fitbit refresh response")
        refreshed = FitbitCredentials(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token") or credentials.refresh_token,
            expires_at=self._clock() + float(body.get("expires_in") or 0),
            scope=body.get("scope") or credentials.scope,
            token_type=body.get("token_type") or credentials.token_type,
            user_id=body.get("user_id") or credentials.user_id,
        )
        self._store.save(refreshed)
        return refreshed

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def _get(self, path: str) -> dict[str, Any] | None:
        token = self.access_token()
        try:
            response = self._client.get(
                f"{FITBIT_API}{path}",
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            raise DeviceDataError(f"Fitbit request failed: {exc}") from exc

        if response.status_code == 401:
            raise TokenExpiredError("Fitbit access token rejected")
        if response.status_code == 404:
            return None
        if response.is_error:
            raise DeviceDataError(f"Fitbit API error {response.status_code}: {response.text[:200]}")
        try:
            return response.json()
        except json.JSONDecodeError as exc:
            raise DeviceDataError("Fitbit API returned non-JSON content") from exc

    def get_daily_activity(self, day: str = "today") -> Activity | None:
        day = resolve_date(day)
        data = self._get(f"/1/user/-/activities/date/{day}.json")
        return activity_from_response(day, data) if data else None

    def get_sleep(self, day: str = "today") -> Sleep | None:
        day = resolve_date(day)
        data = self._get(f"/1.2/user/-/sleep/date/{day}.json")
        return sleep_from_response(day, data) if data else None
