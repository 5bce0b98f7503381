"""
REST / HTTP API for a StakePool service.

Built on ``aiohttp``.

Endpoints
---------
GET  /health                  Liveness + reserve consistency
GET  /pool                    Pool parameters and totals
GET  /balance/{address}       Staked principal
GET  /reward/{address}        Reward accrued up to now
GET  /account/{address}       Full account record
POST /tx/stake                {"account": ..., "amount": ...}
POST /tx/withdraw             {"account": ..., "amount": ...}
POST /tx/claim                {"account": ...}

Addresses are 0x-prefixed hex, answered and keyed in EIP-55 checksum
form; lowercase input is accepted, a wrong mixed-case checksum is not.
Amounts are integers in base units; decimal strings are accepted so
18-decimal values survive JavaScript clients.

Security
--------
- API-key authentication on POST endpoints via ``X-API-Key`` header,
  timing-safe comparison via ``hmac.compare_digest``.
- Per-IP token-bucket rate limiter (configurable RPM).
- CORS middleware with explicit origins only.
- Request body size cap (``max_body_bytes``).

Usage:
    api = APIServer(service, host="127.0.0.1", port=8080, api_config=cfg.api)
    await api.start()
    ...
    await api.stop()
"""

from __future__ import annotations

import hmac
import json
import logging
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Any

from aiohttp import web

from stakepool_core.address import is_checksum_address, is_hex_address, to_checksum_address
from stakepool_core.errors import (
    InsufficientBalance,
    InvalidAmount,
    NoReward,
    RateUnavailable,
    ReentrantCall,
    StakePoolError,
    TransferFailed,
)

if TYPE_CHECKING:
    from stakepool_core.config import APIConfig
    from stakepool_core.service import StakePoolService

logger = logging.getLogger("stakepool_api")

_ERROR_STATUS: dict[type, int] = {
    InvalidAmount: 400,
    InsufficientBalance: 400,
    NoReward: 409,
    ReentrantCall: 409,
    TransferFailed: 502,
    RateUnavailable: 502,
}


# ═══════════════════════════════════════════════════════════════════
#  Input helpers
# ═══════════════════════════════════════════════════════════════════

def _parse_amount(value: Any, name: str = "amount") -> int:
    """Accept an int or a string of decimal digits; reject floats and bools."""
    if isinstance(value, bool):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value.strip())
    raise web.HTTPBadRequest(text=f"{name} must be an integer number of base units")


def _parse_address(value: Any) -> str:
    """Normalise an address to checksum form; 400 on anything else."""
    if not isinstance(value, str) or not is_hex_address(value.strip()):
        raise web.HTTPBadRequest(text="Invalid address")
    value = value.strip()
    if not is_checksum_address(value):
        raise web.HTTPBadRequest(text="Address checksum mismatch")
    return to_checksum_address(value)


def _require_account(body: dict) -> str:
    account = body.get("account", "")
    if not isinstance(account, str) or not account.strip():
        raise web.HTTPBadRequest(text="account required")
    return _parse_address(account)


async def _read_json(request: web.Request) -> dict:
    try:
        body = await request.json()
    except ValueError as exc:
        raise web.HTTPBadRequest(text="Invalid JSON body") from exc
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(text="JSON body must be an object")
    return body


def _error_response(exc: StakePoolError) -> web.Response:
    status = 400
    for kind, code in _ERROR_STATUS.items():
        if isinstance(exc, kind):
            status = code
            break
    return web.json_response(exc.to_dict(), status=status)


# ═══════════════════════════════════════════════════════════════════
#  Rate Limiter (per-IP token bucket)
# ═══════════════════════════════════════════════════════════════════

class _TokenBucket:
    """Per-IP token bucket; ``rpm <= 0`` means unlimited."""

    __slots__ = ("_buckets", "_rpm")

    def __init__(self, rpm: int):
        self._rpm = rpm
        # ip -> [tokens, last_refill]
        self._buckets: dict[str, list[float]] = defaultdict(
            lambda: [float(rpm), time.monotonic()]
        )

    def allow(self, ip: str) -> bool:
        if self._rpm <= 0:
            return True
        bucket = self._buckets[ip]
        now = time.monotonic()
        bucket[0] = min(float(self._rpm), bucket[0] + (now - bucket[1]) * (self._rpm / 60.0))
        bucket[1] = now
        if bucket[0] >= 1.0:
            bucket[0] -= 1.0
            return True
        return False


# ═══════════════════════════════════════════════════════════════════
#  Middleware factories
# ═══════════════════════════════════════════════════════════════════

def _make_rate_limit_middleware(bucket: _TokenBucket):

    @web.middleware
    async def rate_limit_middleware(request: web.Request, handler):
        if not bucket.allow(request.remote or "unknown"):
            raise web.HTTPTooManyRequests(
                text="Rate limit exceeded. Try again later.",
                headers={"Retry-After": "5"},
            )
        return await handler(request)

    return rate_limit_middleware


def _make_api_key_middleware(api_key: str):
    """Require ``X-API-Key`` on mutating methods (header only, never query)."""

    @web.middleware
    async def api_key_middleware(request: web.Request, handler):
        if request.method in ("POST", "PUT", "DELETE"):
            key = request.headers.get("X-API-Key", "")
            if not hmac.compare_digest(key, api_key):
                raise web.HTTPUnauthorized(text="Invalid or missing API key")
        return await handler(request)

    return api_key_middleware


def _make_cors_middleware(origins: list[str]):
    """CORS for explicitly listed origins; ``*`` is ignored."""
    allowed = set(origins) - {"*"}

    @web.middleware
    async def cors_middleware(request: web.Request, handler):
        origin = request.headers.get("Origin", "")
        if request.method == "OPTIONS":
            resp = web.Response(status=204)
        else:
            resp = await handler(request)
        if origin in allowed:
            resp.headers["Access-Control-Allow-Origin"] = origin
            resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            resp.headers["Access-Control-Allow-Headers"] = "Content-Type, X-API-Key"
            resp.headers["Access-Control-Max-Age"] = "3600"
        return resp

    return cors_middleware


class APIServer:
    """Thin aiohttp wrapper around a ``StakePoolService``."""

    def __init__(
        self,
        service: StakePoolService,
        host: str = "127.0.0.1",
        port: int = 8080,
        *,
        api_config: APIConfig | None = None,
    ):
        self.service = service
        self.host = host
        self.port = port
        self._api_config = api_config
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    # ── lifecycle ────────────────────────────────────────────────

    def build_app(self) -> web.Application:
        middlewares: list = []
        max_body = 65_536
        cfg = self._api_config
        if cfg is not None:
            max_body = cfg.max_body_bytes
            if cfg.rate_limit_rpm > 0:
                middlewares.append(_make_rate_limit_middleware(_TokenBucket(cfg.rate_limit_rpm)))
            if cfg.cors_origins:
                middlewares.append(_make_cors_middleware(cfg.cors_origins))
            if cfg.api_key:
                middlewares.append(_make_api_key_middleware(cfg.api_key))
        app = web.Application(middlewares=middlewares, client_max_size=max_body)
        self._register_routes(app)
        self._app = app
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("API listening on http://%s:%d", self.host, self.port)

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()

    # ── routes ───────────────────────────────────────────────────

    def _register_routes(self, app: web.Application) -> None:
        app.router.add_get("/health", self._health)
        app.router.add_get("/pool", self._pool)
        app.router.add_get("/balance/{address}", self._balance)
        app.router.add_get("/reward/{address}", self._reward)
        app.router.add_get("/account/{address}", self._account)
        app.router.add_post("/tx/stake", self._submit_stake)
        app.router.add_post("/tx/withdraw", self._submit_withdraw)
        app.router.add_post("/tx/claim", self._submit_claim)

    # ── read handlers ────────────────────────────────────────────

    async def _health(self, _request: web.Request) -> web.Response:
        ledger = self.service.ledger
        balances = sum(acc.balance for acc in ledger.accounts.values())
        consistent = balances == ledger.total_reserve
        return web.json_response({
            "ok": consistent,
            "total_reserve": ledger.total_reserve,
            "accounts": len(ledger.accounts),
            "checks": {"reserve": "ok" if consistent else "mismatch"},
        }, status=200 if consistent else 503)

    async def _pool(self, _request: web.Request) -> web.Response:
        return web.json_response(self.service.status(), dumps=_json_dumps)

    async def _balance(self, request: web.Request) -> web.Response:
        address = _parse_address(request.match_info["address"])
        return web.json_response({
            "address": address,
            "balance": self.service.ledger.balance_of(address),
        })

    async def _reward(self, request: web.Request) -> web.Response:
        address = _parse_address(request.match_info["address"])
        return web.json_response({
            "address": address,
            "reward": self.service.ledger.reward_of(address),
        })

    async def _account(self, request: web.Request) -> web.Response:
        address = _parse_address(request.match_info["address"])
        ledger = self.service.ledger
        info = ledger.account_of(address).to_dict()
        info["address"] = address
        info["reward"] = ledger.reward_of(address)
        return web.json_response(info)

    # ── transaction handlers ─────────────────────────────────────

    async def _submit_stake(self, request: web.Request) -> web.Response:
        body = await _read_json(request)
        account = _require_account(body)
        amount = _parse_amount(body.get("amount"))
        try:
            acc = self.service.ledger.stake(account, amount)
        except StakePoolError as exc:
            return _error_response(exc)
        self.service.persist()
        return web.json_response({
            "status": "staked",
            "account": account,
            "amount": amount,
            "balance": acc.balance,
        })

    async def _submit_withdraw(self, request: web.Request) -> web.Response:
        body = await _read_json(request)
        account = _require_account(body)
        amount = _parse_amount(body.get("amount"))
        try:
            acc = self.service.ledger.withdraw(account, amount)
        except StakePoolError as exc:
            return _error_response(exc)
        self.service.persist()
        return web.json_response({
            "status": "withdrawn",
            "account": account,
            "amount": amount,
            "balance": acc.balance,
        })

    async def _submit_claim(self, request: web.Request) -> web.Response:
        body = await _read_json(request)
        account = _require_account(body)
        try:
            payout = self.service.ledger.claim(account)
        except StakePoolError as exc:
            return _error_response(exc)
        self.service.persist()
        return web.json_response({
            "status": "claimed",
            "account": account,
            "payout": payout,
        })


def _json_dumps(obj: Any) -> str:
    return json.dumps(obj, default=str)
