"""Bearer-token sessions for the ledger API.

A principal signs a one-time nonce with the key behind its SS58 address
and gets a short-lived bearer token. The token only says who is calling;
whether the call is allowed (admin switch, reveal) is decided by the
ledger and the coprocessor.
"""

from __future__ import annotations

import secrets
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable

import bittensor as bt

from .signer import short_principal, verify_payload


CHALLENGE_TTL_SECONDS = 120
RATE_WINDOW_SECONDS = 3600


@dataclass(frozen=True)
class _Binding:
    """A nonce or token bound to one principal until expires_at."""

    principal: str
    expires_at: float


def _live(entries: dict[str, _Binding], now: float) -> dict[str, _Binding]:
    return {k: v for k, v in entries.items() if v.expires_at > now}


class AccessPolicy:
    """Fail-closed: any verification failure = reject."""

    def __init__(
        self,
        token_ttl: int = 3600,
        rate_limit_per_hour: int = 600,
        clock: Callable[[], float] | None = None,
    ):
        self.token_ttl = token_ttl
        self.rate_limit_per_hour = rate_limit_per_hour
        self._clock = clock or time.time
        self._challenges: dict[str, _Binding] = {}
        self._sessions: dict[str, _Binding] = {}
        # principal -> request times inside the current window, oldest first
        self._requests: dict[str, deque[float]] = {}

    def eligibility_error(self, principal: str) -> str | None:
        """Reason principal may not authenticate, or None.

        Any well-formed SS58 address may; there is no registration step.
        """
        if not principal:
            return "empty_principal"
        try:
            bt.Keypair(ss58_address=principal)
        except Exception:
            bt.logging.warning({"ledger_auth": {"event": "ineligible", "principal": short_principal(principal), "reason": "invalid_ss58"}})
            return "invalid_ss58"
        return None

    def issue_challenge(self, principal: str) -> str:
        now = self._clock()
        self._challenges = _live(self._challenges, now)
        nonce = secrets.token_hex(32)
        self._challenges[nonce] = _Binding(principal, now + CHALLENGE_TTL_SECONDS)
        return nonce

    def verify_response(self, principal: str, nonce: str, signature: str) -> str | None:
        """Exchange a signed nonce for a bearer token. Nonces are single use."""
        now = self._clock()
        challenge = self._challenges.pop(nonce, None)
        if challenge is None or challenge.expires_at <= now:
            reason = "unknown_or_expired_nonce"
        elif challenge.principal != principal:
            reason = "principal_mismatch"
        elif not verify_payload(nonce, signature, principal):
            reason = "bad_signature"
        else:
            reason = None

        if reason is not None:
            bt.logging.warning({"ledger_auth": {"event": "verify_failed", "principal": short_principal(principal), "reason": reason}})
            return None

        self._sessions = _live(self._sessions, now)
        token = secrets.token_hex(32)
        self._sessions[token] = _Binding(principal, now + self.token_ttl)
        bt.logging.info({"ledger_auth": {"event": "token_issued", "principal": short_principal(principal)}})
        return token

    def validate_token(self, token: str) -> str | None:
        """Principal behind a live token, or None."""
        session = self._sessions.get(token)
        if session is None:
            return None
        if session.expires_at <= self._clock():
            del self._sessions[token]
            return None
        return session.principal

    def check_rate_limit(self, principal: str) -> bool:
        """Count one request; False once the hourly budget is spent."""
        now = self._clock()
        window = self._requests.setdefault(principal, deque())
        while window and now - window[0] >= RATE_WINDOW_SECONDS:
            window.popleft()
        if len(window) >= self.rate_limit_per_hour:
            bt.logging.warning({"ledger_auth": {"event": "rate_limited", "principal": short_principal(principal)}})
            return False
        window.append(now)
        return True


__all__ = ["AccessPolicy"]
