"""Authenticated HTTP API over the score ledger and its decryption oracle.

Routes:
  POST /auth/challenge                         - request auth challenge
  POST /auth/respond                           - signed challenge -> bearer token
  GET  /ledger/info                            - address, admin, test mode, public key
  POST /ledger/submit                          - submit an encrypted score (auth)
  GET  /ledger/users/{user}/stats              - record count, streak, last submit
  GET  /ledger/users/{user}/records            - all records (handles only)
  GET  /ledger/users/{user}/records/latest     - latest record
  GET  /ledger/users/{user}/records/{index}    - one record
  GET  /ledger/users/{user}/average            - encrypted total + count
  GET  /ledger/users/{user}/trend              - encrypted trend
  POST /ledger/admin/test-mode                 - toggle test mode (auth, admin)
  POST /ledger/admin/reset-submit-time         - clear a cadence gate (auth, admin)
  POST /coprocessor/reveal                     - decrypt a granted handle (auth)

Reads are public: they only expose plaintext counters and opaque handles.
"""

from __future__ import annotations

import asyncio
from typing import Any

import bittensor as bt
from aiohttp import web
from pydantic import BaseModel, ValidationError

from roadtrack.ledger.auth import AccessPolicy
from roadtrack.ledger.errors import LedgerError
from roadtrack.ledger.ledger import ScoreLedger
from roadtrack.ledger.models import (
    AverageDataView,
    ErrorResponse,
    LedgerInfo,
    RecordListView,
    RecordView,
    ResetSubmitTimeRequest,
    RevealRequest,
    RevealResponse,
    SetTestModeRequest,
    SubmitRequest,
    TrendView,
    UserStatsView,
)
from roadtrack.ledger.signer import short_principal


_STATUS_BY_CODE: dict[str, int] = {
    "cadence_violation": 409,
    "invalid_proof": 400,
    "unauthorized": 403,
    "not_in_test_mode": 409,
    "index_out_of_range": 404,
    "no_records": 404,
    "no_trend": 404,
    "access_denied": 403,
    "unknown_handle": 404,
}


def _json(model: BaseModel, status: int = 200) -> web.Response:
    return web.json_response(model.model_dump(mode="json"), status=status)


def _error(code: str, detail: str = "", status: int = 400) -> web.Response:
    return _json(ErrorResponse(error=code, detail=detail), status=status)


def _ledger_error(err: LedgerError) -> web.Response:
    return _error(err.code, err.message, _STATUS_BY_CODE.get(err.code, 400))


class LedgerHTTPServer:
    """Lightweight async HTTP server fronting a ScoreLedger."""

    def __init__(
        self,
        ledger: ScoreLedger,
        access_policy: AccessPolicy,
        host: str = "0.0.0.0",
        port: int = 8300,
    ):
        self.ledger = ledger
        self.access_policy = access_policy
        self.host = host
        self.port = port
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/auth/challenge", self._handle_challenge)
        app.router.add_post("/auth/respond", self._handle_respond)
        app.router.add_get("/ledger/info", self._handle_info)
        app.router.add_post("/ledger/submit", self._handle_submit)
        app.router.add_get("/ledger/users/{user}/stats", self._handle_stats)
        app.router.add_get("/ledger/users/{user}/records", self._handle_records)
        app.router.add_get("/ledger/users/{user}/records/latest", self._handle_latest_record)
        app.router.add_get(r"/ledger/users/{user}/records/{index:\d+}", self._handle_record)
        app.router.add_get("/ledger/users/{user}/average", self._handle_average)
        app.router.add_get("/ledger/users/{user}/trend", self._handle_trend)
        app.router.add_post("/ledger/admin/test-mode", self._handle_test_mode)
        app.router.add_post("/ledger/admin/reset-submit-time", self._handle_reset_submit_time)
        app.router.add_post("/coprocessor/reveal", self._handle_reveal)
        return app

    async def start(self) -> None:
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        # Resolve the bound port when started with port=0
        addresses = self._runner.addresses
        if addresses:
            self.port = addresses[0][1]
        bt.logging.info({"ledger_http": {"status": "started", "port": self.port}})

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            bt.logging.info({"ledger_http": "stopped"})

    # -- Helpers --

    async def _read(self, request: web.Request, model: type[BaseModel], endpoint: str) -> Any:
        """Parse a JSON body into model. Returns the model or an error response."""
        try:
            body = await request.json()
            return model.model_validate(body)
        except (ValueError, ValidationError) as e:
            bt.logging.warning({"ledger_request": {"endpoint": endpoint, "status": 400, "error": "invalid_body"}})
            return _error("invalid_body", str(e), 400)

    def _authenticate(self, request: web.Request, endpoint: str) -> str | web.Response:
        """Resolve the bearer token to a principal, enforcing the rate limit."""
        auth = request.headers.get("Authorization", "")
        principal = None
        if auth.startswith("Bearer "):
            principal = self.access_policy.validate_token(auth[7:])
        if principal is None:
            bt.logging.debug({"ledger_request": {"endpoint": endpoint, "status": 401}})
            return _error("unauthenticated", "missing or invalid bearer token", 401)
        if not self.access_policy.check_rate_limit(principal):
            bt.logging.warning({"ledger_request": {"endpoint": endpoint, "principal": short_principal(principal), "status": 429}})
            return _error("rate_limited", "", 429)
        return principal

    # -- Auth routes --

    async def _handle_challenge(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
            principal = body.get("principal", "")
        except Exception:
            return _error("invalid_body", "", 400)

        reason = self.access_policy.eligibility_error(principal)
        if reason is not None:
            bt.logging.info({"ledger_request": {"endpoint": "auth/challenge", "principal": short_principal(principal), "status": 403, "reason": reason}})
            return _error("ineligible", reason, 403)

        nonce = self.access_policy.issue_challenge(principal)
        return web.json_response({"nonce": nonce})

    async def _handle_respond(self, request: web.Request) -> web.Response:
        try:
            body = await request.json()
            principal = body.get("principal", "")
            nonce = body.get("nonce", "")
            signature = body.get("signature", "")
        except Exception:
            return _error("invalid_body", "", 400)

        token = self.access_policy.verify_response(principal, nonce, signature)
        if token is None:
            bt.logging.warning({"ledger_request": {"endpoint": "auth/respond", "principal": short_principal(principal), "status": 403}})
            return _error("auth_failed", "", 403)
        return web.json_response({"token": token})

    # -- Ledger routes --

    async def _handle_info(self, request: web.Request) -> web.Response:
        return _json(LedgerInfo(
            address=self.ledger.config.address,
            admin=self.ledger.admin,
            test_mode=self.ledger.is_test_mode(),
            public_key_n=str(self.ledger.coprocessor.public_key.n),
        ))

    async def _handle_submit(self, request: web.Request) -> web.Response:
        principal = self._authenticate(request, "submit")
        if isinstance(principal, web.Response):
            return principal
        body = await self._read(request, SubmitRequest, "submit")
        if isinstance(body, web.Response):
            return body

        try:
            stats = await asyncio.to_thread(
                self.ledger.submit,
                principal,
                body.encrypted_score,
                body.proof,
                body.mileage_level,
            )
        except LedgerError as e:
            bt.logging.info({"ledger_request": {"endpoint": "submit", "principal": short_principal(principal), "status": _STATUS_BY_CODE.get(e.code, 400), "error": e.code}})
            return _ledger_error(e)

        return _json(UserStatsView(
            user=principal,
            record_count=stats.record_count,
            consecutive_days=stats.consecutive_days,
            last_submit_time=stats.last_submit_time,
        ))

    async def _handle_stats(self, request: web.Request) -> web.Response:
        user = request.match_info["user"]
        stats = self.ledger.get_user_stats(user)
        return _json(UserStatsView(
            user=user,
            record_count=stats.record_count,
            consecutive_days=stats.consecutive_days,
            last_submit_time=stats.last_submit_time,
        ))

    async def _handle_records(self, request: web.Request) -> web.Response:
        user = request.match_info["user"]
        records = []
        for index in range(self.ledger.get_record_count(user)):
            timestamp, mileage_level, handle = self.ledger.get_record(user, index)
            records.append(RecordView(
                index=index, timestamp=timestamp, mileage_level=mileage_level, score_handle=handle,
            ))
        return _json(RecordListView(user=user, records=records))

    async def _handle_latest_record(self, request: web.Request) -> web.Response:
        user = request.match_info["user"]
        try:
            record = self.ledger.get_latest_record(user)
        except LedgerError as e:
            return _ledger_error(e)
        return _json(RecordView(
            index=self.ledger.get_record_count(user) - 1,
            timestamp=record.timestamp,
            mileage_level=record.mileage_level,
            score_handle=record.score.handle,
        ))

    async def _handle_record(self, request: web.Request) -> web.Response:
        user = request.match_info["user"]
        index = int(request.match_info["index"])
        try:
            timestamp, mileage_level, handle = self.ledger.get_record(user, index)
        except LedgerError as e:
            return _ledger_error(e)
        return _json(RecordView(
            index=index, timestamp=timestamp, mileage_level=mileage_level, score_handle=handle,
        ))

    async def _handle_average(self, request: web.Request) -> web.Response:
        user = request.match_info["user"]
        total_handle, count = self.ledger.get_average_data(user)
        return _json(AverageDataView(user=user, total_handle=total_handle, count=count))

    async def _handle_trend(self, request: web.Request) -> web.Response:
        user = request.match_info["user"]
        try:
            handle = self.ledger.get_trend(user)
        except LedgerError as e:
            return _ledger_error(e)
        return _json(TrendView(user=user, trend_handle=handle))

    # -- Admin routes --

    async def _handle_test_mode(self, request: web.Request) -> web.Response:
        principal = self._authenticate(request, "admin/test-mode")
        if isinstance(principal, web.Response):
            return principal
        body = await self._read(request, SetTestModeRequest, "admin/test-mode")
        if isinstance(body, web.Response):
            return body

        try:
            await asyncio.to_thread(self.ledger.set_test_mode, principal, body.enabled)
        except LedgerError as e:
            return _ledger_error(e)
        bt.logging.info({"ledger_request": {"endpoint": "admin/test-mode", "principal": short_principal(principal), "status": 200, "enabled": body.enabled}})
        return web.json_response({"test_mode": self.ledger.is_test_mode()})

    async def _handle_reset_submit_time(self, request: web.Request) -> web.Response:
        principal = self._authenticate(request, "admin/reset-submit-time")
        if isinstance(principal, web.Response):
            return principal
        body = await self._read(request, ResetSubmitTimeRequest, "admin/reset-submit-time")
        if isinstance(body, web.Response):
            return body

        try:
            await asyncio.to_thread(self.ledger.reset_submit_time, principal, body.user)
        except LedgerError as e:
            return _ledger_error(e)
        bt.logging.info({"ledger_request": {"endpoint": "admin/reset-submit-time", "principal": short_principal(principal), "status": 200, "user": short_principal(body.user)}})
        return web.json_response({"status": "ok", "user": body.user})

    # -- Decryption oracle --

    async def _handle_reveal(self, request: web.Request) -> web.Response:
        principal = self._authenticate(request, "coprocessor/reveal")
        if isinstance(principal, web.Response):
            return principal
        body = await self._read(request, RevealRequest, "coprocessor/reveal")
        if isinstance(body, web.Response):
            return body

        try:
            value = await asyncio.to_thread(
                self.ledger.coprocessor.reveal, body.handle, principal, body.authorization,
            )
        except LedgerError as e:
            return _ledger_error(e)
        return _json(RevealResponse(handle=body.handle, value=value))


__all__ = ["LedgerHTTPServer"]
