"""HTTP client for the score ledger API.

Handles challenge-response authentication automatically, caches bearer
tokens and the user's decryption authorization, encrypts scores locally
before submission and maps API errors back to typed LedgerErrors.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

import bittensor as bt
import httpx

from roadtrack.ledger.analytics import summarize_scores
from roadtrack.ledger.confidential import encrypt_input, public_key_from_n
from roadtrack.ledger.errors import LedgerError, error_from_code
from roadtrack.ledger.models import (
    AverageDataView,
    DecryptionAuthorization,
    LedgerInfo,
    RecordListView,
    RecordView,
    ScoreSummary,
    SubmitRequest,
    TrendView,
    UserStatsView,
)
from roadtrack.ledger.signer import sign_authorization, sign_payload


class LedgerClient:
    """Async client acting on behalf of one keypair."""

    def __init__(
        self,
        base_url: str,
        keypair: Any,
        timeout: float = 30.0,
        max_retries: int = 3,
        authorization_days: int = 365,
        clock: Callable[[], int] | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.keypair = keypair
        self.principal: str = keypair.ss58_address
        self.authorization_days = authorization_days
        self._clock = clock or (lambda: int(time.time()))
        self._token: str | None = None
        self._token_expires: float = 0.0
        self._info: LedgerInfo | None = None
        self._authorization: DecryptionAuthorization | None = None
        self._client = httpx.AsyncClient(timeout=timeout)
        self._max_retries = max_retries

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> LedgerClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # -- Auth --

    async def _ensure_auth(self) -> str:
        if self._token and time.time() < self._token_expires - 60:
            return self._token

        resp = await self._client.post(
            f"{self.base_url}/auth/challenge",
            json={"principal": self.principal},
        )
        if resp.status_code != 200:
            raise ConnectionError(f"Auth challenge failed: {resp.status_code} {resp.text}")
        nonce = resp.json()["nonce"]

        resp = await self._client.post(
            f"{self.base_url}/auth/respond",
            json={
                "principal": self.principal,
                "nonce": nonce,
                "signature": sign_payload(nonce, self.keypair),
            },
        )
        if resp.status_code != 200:
            raise ConnectionError(f"Auth respond failed: {resp.status_code} {resp.text}")

        self._token = resp.json()["token"]
        self._token_expires = time.time() + 3500
        return self._token

    async def _request(
        self,
        method: str,
        path: str,
        json: Any = None,
        auth: bool = False,
    ) -> httpx.Response:
        """Send a request with retry on transport errors and re-auth on 401."""
        for attempt in range(self._max_retries):
            try:
                headers = {}
                if auth:
                    headers["Authorization"] = f"Bearer {await self._ensure_auth()}"
                resp = await self._client.request(
                    method, f"{self.base_url}{path}", json=json, headers=headers,
                )
                if auth and resp.status_code == 401:
                    self._token = None
                    continue
                return resp
            except httpx.TransportError as e:
                if attempt == self._max_retries - 1:
                    raise
                wait = 2 ** attempt
                bt.logging.warning({"ledger_http_client": {"retry": attempt, "wait": wait, "error": str(e)}})
                await asyncio.sleep(wait)
        raise ConnectionError("Max retries exceeded")

    @staticmethod
    def _check(resp: httpx.Response) -> Any:
        """Return the JSON body, raising a typed LedgerError on API errors."""
        if resp.status_code < 400:
            return resp.json()
        try:
            body = resp.json()
        except ValueError:
            resp.raise_for_status()
            raise
        code = body.get("error", "")
        detail = body.get("detail", "")
        err = error_from_code(code, detail)
        if type(err) is LedgerError:
            err = LedgerError(f"{code}: {detail}" if detail else code)
        raise err

    # -- Ledger metadata --

    async def info(self, refresh: bool = False) -> LedgerInfo:
        if self._info is None or refresh:
            resp = await self._request("GET", "/ledger/info")
            self._info = LedgerInfo(**self._check(resp))
        return self._info

    # -- Submission --

    async def submit_score(self, score: int, mileage_level: int) -> UserStatsView:
        """Encrypt score locally and submit it for this client's principal."""
        info = await self.info()
        encrypted, proof = encrypt_input(
            public_key_from_n(info.public_key_n), self.keypair, info.address, score,
        )
        body = SubmitRequest(encrypted_score=encrypted, proof=proof, mileage_level=mileage_level)
        resp = await self._request("POST", "/ledger/submit", json=body.model_dump(mode="json"), auth=True)
        return UserStatsView(**self._check(resp))

    # -- Queries --

    def _user_path(self, user: str | None, suffix: str) -> str:
        return f"/ledger/users/{user or self.principal}/{suffix}"

    async def get_user_stats(self, user: str | None = None) -> UserStatsView:
        resp = await self._request("GET", self._user_path(user, "stats"))
        return UserStatsView(**self._check(resp))

    async def get_record_count(self, user: str | None = None) -> int:
        return (await self.get_user_stats(user)).record_count

    async def get_records(self, user: str | None = None) -> list[RecordView]:
        resp = await self._request("GET", self._user_path(user, "records"))
        return RecordListView(**self._check(resp)).records

    async def get_record(self, index: int, user: str | None = None) -> RecordView:
        resp = await self._request("GET", self._user_path(user, f"records/{index}"))
        return RecordView(**self._check(resp))

    async def get_latest_record(self, user: str | None = None) -> RecordView:
        resp = await self._request("GET", self._user_path(user, "records/latest"))
        return RecordView(**self._check(resp))

    async def get_average_data(self, user: str | None = None) -> AverageDataView:
        resp = await self._request("GET", self._user_path(user, "average"))
        return AverageDataView(**self._check(resp))

    async def get_trend(self, user: str | None = None) -> TrendView:
        resp = await self._request("GET", self._user_path(user, "trend"))
        return TrendView(**self._check(resp))

    # -- Decryption --

    async def authorization(self) -> DecryptionAuthorization:
        """Current decryption authorization, signing a new one when needed."""
        info = await self.info()
        now = self._clock()
        auth = self._authorization
        if auth is not None and auth.covers(now) and info.address in auth.ledger_addresses:
            return auth

        auth = DecryptionAuthorization(
            user=self.principal,
            ledger_addresses=[info.address],
            start_timestamp=now,
            duration_days=self.authorization_days,
        )
        auth.signature = sign_authorization(auth, self.keypair)
        self._authorization = auth
        return auth

    async def reveal(self, handle: str) -> int:
        auth = await self.authorization()
        resp = await self._request(
            "POST",
            "/coprocessor/reveal",
            json={"handle": handle, "authorization": auth.model_dump(mode="json")},
            auth=True,
        )
        return int(self._check(resp)["value"])

    async def fetch_analytics(self) -> ScoreSummary:
        """Reveal this principal's scores and summarize them."""
        records = await self.get_records()
        scores = [await self.reveal(r.score_handle) for r in records]
        return summarize_scores(scores)

    # -- Admin --

    async def set_test_mode(self, enabled: bool) -> bool:
        resp = await self._request("POST", "/ledger/admin/test-mode", json={"enabled": enabled}, auth=True)
        self._info = None
        return bool(self._check(resp)["test_mode"])

    async def reset_submit_time(self, user: str) -> None:
        resp = await self._request("POST", "/ledger/admin/reset-submit-time", json={"user": user}, auth=True)
        self._check(resp)


__all__ = ["LedgerClient"]
