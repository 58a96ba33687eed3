"""
REST / HTTP API server for YieldLock ledger nodes.

Built on ``aiohttp``.

Endpoints
---------
GET  /health                  Liveness + reserve summary
GET  /reserve                 Reserve balance, rate and flow totals
GET  /positions/{address}     All positions of an address (settled included)
GET  /quote                   Reward preview (?principal=&duration=)
GET  /events                  Most recent ledger events (?limit=)
GET  /balance/{address}       Staking / reward token balances
POST /approve                 Approve ledger custody on an asset
POST /stake/open              Open a stake
POST /stake/close             Close a stake
POST /reserve/add             Fund the reward reserve
POST /reserve/remove          Withdraw from the reserve (privileged)

Caller identity
---------------
POST bodies name the ``caller``.  With ``require_signatures`` enabled
(the default) they must also carry ``nonce``, ``public_key`` and
``signature``; the signature covers the body without those two key
fields plus ``"action"`` set to the route's action name (``stake.open``,
``stake.close``, ``reserve.add``, ``reserve.remove``, ``approve``).

Security
--------
- API-key authentication on POST endpoints via ``X-API-Key`` header only.
- Per-IP token-bucket rate limiter (configurable RPM).
- CORS middleware (origins configurable via ``cors_origins``).
- Request body size cap (``max_body_bytes``).

Usage:
    api = APIServer(node, host="127.0.0.1", port=8080)
    await api.start()    # call inside existing event loop
    ...
    await api.stop()
"""

from __future__ import annotations

import hmac
import json
import logging
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from aiohttp import web

from yieldlock_core.errors import LedgerError, PermissionDenied
from yieldlock_core.precision import UINT256_MAX

if TYPE_CHECKING:
    from yieldlock_core.config import APIConfig

logger = logging.getLogger("yieldlock_api")

# Decimal digits in UINT256_MAX; longer strings cannot be valid amounts.
MAX_UINT_DIGITS = len(str(UINT256_MAX))

# Ledger error code -> HTTP status
ERROR_STATUS: dict[str, int] = {
    "InvalidAmount": 400,
    "InvalidDuration": 400,
    "ArithmeticOverflow": 400,
    "PermissionDenied": 403,
    "IndexOutOfRange": 404,
    "InsufficientReserve": 409,
    "AlreadySettled": 409,
    "TransferFailed": 409,
    "InvariantViolation": 409,
}


# ═══════════════════════════════════════════════════════════════════
#  Input helpers
# ═══════════════════════════════════════════════════════════════════

def _safe_int(value: Any, name: str = "value") -> int:
    """Convert *value* to int.  Accepts ints and decimal digit strings only."""
    if isinstance(value, bool):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        digits = text[1:] if text.startswith("-") else text
        if 0 < len(digits) <= MAX_UINT_DIGITS and digits.isdigit():
            try:
                return int(text)
            except ValueError as exc:
                raise web.HTTPBadRequest(text=f"{name} must be an integer") from exc
    raise web.HTTPBadRequest(text=f"{name} must be an integer")


def _json_dumps(obj: Any) -> str:
    return json.dumps(obj, default=str)


def _error_response(exc: LedgerError) -> web.Response:
    return web.json_response(
        {"error": exc.code, "message": str(exc)},
        status=ERROR_STATUS.get(exc.code, 400),
    )


# ═══════════════════════════════════════════════════════════════════
#  Rate Limiter (per-IP token bucket)
# ═══════════════════════════════════════════════════════════════════

class _TokenBucket:
    """Per-IP token-bucket rate limiter."""

    __slots__ = ("_buckets", "_rpm")

    def __init__(self, rpm: int):
        self._rpm = rpm  # 0 = unlimited
        # ip -> (tokens, last_refill_timestamp)
        self._buckets: dict[str, list[float]] = defaultdict(lambda: [float(rpm), time.monotonic()])

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
    """Require ``X-API-Key`` on POST requests (timing-safe compare)."""

    @web.middleware
    async def api_key_middleware(request: web.Request, handler):
        if request.method == "POST":
            key = request.headers.get("X-API-Key", "")
            if not hmac.compare_digest(key, api_key):
                raise web.HTTPUnauthorized(text="Invalid or missing API key")
        return await handler(request)

    return api_key_middleware


def _make_cors_middleware(origins: list[str]):
    """Add CORS headers for an explicit origin allow-list (no ``*``)."""
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
    """Thin aiohttp wrapper around a ``LedgerNode``."""

    def __init__(
        self,
        node: Any,
        host: str = "127.0.0.1",
        port: int = 8080,
        *,
        api_config: APIConfig | None = None,
    ):
        self.node = node
        self.host = host
        self.port = port
        self._api_config = api_config
        self.require_signatures = api_config.require_signatures if api_config else True
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
        logger.info(f"API listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    # ── routes ───────────────────────────────────────────────────

    def _register_routes(self, app: web.Application) -> None:
        app.router.add_get("/health", self._health)
        app.router.add_get("/reserve", self._reserve)
        app.router.add_get("/positions/{address}", self._positions)
        app.router.add_get("/quote", self._quote)
        app.router.add_get("/events", self._events)
        app.router.add_get("/balance/{address}", self._balance)
        app.router.add_post("/approve", self._approve)
        app.router.add_post("/stake/open", self._open_stake)
        app.router.add_post("/stake/close", self._close_stake)
        app.router.add_post("/reserve/add", self._add_reserve)
        app.router.add_post("/reserve/remove", self._remove_reserve)

    # ── request plumbing ─────────────────────────────────────────

    async def _read_call(self, request: web.Request, action: str) -> tuple[str, dict]:
        """Parse a POST body and resolve the authenticated caller."""
        try:
            body = await request.json()
        except Exception as exc:
            raise web.HTTPBadRequest(text="Invalid JSON body") from exc
        if not isinstance(body, dict):
            raise web.HTTPBadRequest(text="JSON object body required")

        if not self.require_signatures:
            return self.node.authorizer.resolve(body.get("caller", "")), body

        public_key = body.pop("public_key", "")
        signature = body.pop("signature", "")
        if not public_key or not signature:
            raise PermissionDenied("Signed request required")
        payload = dict(body)
        payload["action"] = action
        caller = self.node.authorizer.verify_signed_call(payload, public_key, signature)
        return caller, body

    async def _call(
        self,
        request: web.Request,
        action: str,
        handler: Callable[[str, dict], Awaitable[dict]],
    ) -> web.Response:
        try:
            caller, body = await self._read_call(request, action)
            result = await handler(caller, body)
        except LedgerError as exc:
            logger.info(f"{action} rejected: {exc.code}")
            return _error_response(exc)
        return web.json_response(result, dumps=_json_dumps)

    # ── read handlers ────────────────────────────────────────────

    async def _health(self, _request: web.Request) -> web.Response:
        summary = self.node.ledger.get_summary()
        return web.json_response({
            "ok": True,
            "identity": self.node.identity.address,
            "reserve_balance": summary["balance"],
            "active_positions": summary["active_positions"],
        }, dumps=_json_dumps)

    async def _reserve(self, _request: web.Request) -> web.Response:
        return web.json_response(self.node.ledger.get_summary(), dumps=_json_dumps)

    async def _positions(self, request: web.Request) -> web.Response:
        address = request.match_info["address"]
        return web.json_response(
            self.node.ledger.get_staking_summary(address), dumps=_json_dumps,
        )

    async def _quote(self, request: web.Request) -> web.Response:
        principal = _safe_int(request.query.get("principal"), "principal")
        duration = _safe_int(request.query.get("duration"), "duration")
        try:
            reward = self.node.ledger.quote_reward(principal, duration)
        except LedgerError as exc:
            return _error_response(exc)
        reserve = self.node.ledger.get_reserve().balance
        return web.json_response({
            "principal": principal,
            "duration": duration,
            "reward": reward,
            "reserve_balance": reserve,
            "fundable": reward <= reserve,
        }, dumps=_json_dumps)

    async def _events(self, request: web.Request) -> web.Response:
        limit = _safe_int(request.query.get("limit", "50"), "limit")
        limit = max(0, min(limit, 1000))
        records = self.node.ledger.events.recent(limit)
        return web.json_response(
            {"events": [r.to_dict() for r in records], "count": len(records)},
            dumps=_json_dumps,
        )

    async def _balance(self, request: web.Request) -> web.Response:
        address = request.match_info["address"]
        return web.json_response(
            {"address": address, **self.node.balances(address)}, dumps=_json_dumps,
        )

    # ── write handlers ───────────────────────────────────────────

    async def _approve(self, request: web.Request) -> web.Response:
        """POST /approve  Body: {"caller", "asset": "staking"|"reward", "amount"}"""

        async def handler(caller: str, body: dict) -> dict:
            role = body.get("asset", "")
            if role not in ("staking", "reward"):
                raise web.HTTPBadRequest(text="asset must be 'staking' or 'reward'")
            amount = _safe_int(body.get("amount"), "amount")
            if not self.node.approve(caller, role, amount):
                raise web.HTTPBadRequest(text="amount must be a non-negative integer")
            return {"status": "ok", "caller": caller, "asset": role, "allowance": amount}

        return await self._call(request, "approve", handler)

    async def _open_stake(self, request: web.Request) -> web.Response:
        """POST /stake/open  Body: {"caller", "principal", "duration"}"""

        async def handler(caller: str, body: dict) -> dict:
            principal = _safe_int(body.get("principal"), "principal")
            duration = _safe_int(body.get("duration"), "duration")
            index = self.node.ledger.open_stake(caller, principal, duration)
            position = self.node.ledger.get_position(caller, index)
            return {
                "status": "ok",
                "caller": caller,
                "position_index": index,
                "reward": position.upfront_reward,
                "unlock_time": position.unlock_time,
            }

        return await self._call(request, "stake.open", handler)

    async def _close_stake(self, request: web.Request) -> web.Response:
        """POST /stake/close  Body: {"caller", "position_index"}"""

        async def handler(caller: str, body: dict) -> dict:
            index = _safe_int(body.get("position_index"), "position_index")
            payout, penalty = self.node.ledger.close_stake(caller, index)
            return {
                "status": "ok",
                "caller": caller,
                "position_index": index,
                "payout": payout,
                "penalty": penalty,
            }

        return await self._call(request, "stake.close", handler)

    async def _add_reserve(self, request: web.Request) -> web.Response:
        """POST /reserve/add  Body: {"caller", "amount"}"""

        async def handler(caller: str, body: dict) -> dict:
            amount = _safe_int(body.get("amount"), "amount")
            self.node.ledger.add_reserve(caller, amount)
            return {"status": "ok", "reserve_balance": self.node.ledger.get_reserve().balance}

        return await self._call(request, "reserve.add", handler)

    async def _remove_reserve(self, request: web.Request) -> web.Response:
        """POST /reserve/remove  Body: {"caller", "amount"}  (privileged)"""

        async def handler(caller: str, body: dict) -> dict:
            amount = _safe_int(body.get("amount"), "amount")
            self.node.ledger.remove_reserve(caller, amount)
            return {"status": "ok", "reserve_balance": self.node.ledger.get_reserve().balance}

        return await self._call(request, "reserve.remove", handler)
