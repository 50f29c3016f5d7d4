"""
FastAPI Application - AlphaEdge Exchange Integration API

Connects trader accounts on external brokers/exchanges, pulls their trade
history, and serves the resulting ratings and leaderboard.

Supported Platforms:
    - Binance (HMAC-signed REST, API key pair)
    - Bybit (HMAC-signed REST v5 + legacy, API key pair)
    - cTrader (OAuth2 authorization code + refresh)
    - Any id listed in STUB_EXCHANGES (canned demo trades)

Features:
    - Credential validation and signed proxy calls
    - OAuth token exchange, refresh and sign-out per session (X-Session-ID)
    - Trade sync: fetch -> normalize -> store -> profile rebuild
    - Reliability-weighted ratings and a periodically refreshed leaderboard
    - Per-trader rating history

Usage:
    uvicorn app.main:app --reload --host 0.0.0.0 --port 8000

Docs:
    - Swagger: http://localhost:8000/docs
    - ReDoc: http://localhost:8000/redoc
"""

import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.config import settings, validate_configuration
from core.credentials import CredentialResolver
from core.errors import AlphaEdgeError, UpstreamError
from core.exchange_manager import get_manager
from core.logging import logger
from core.schemas import (
    Credential,
    CredentialValidationRequest,
    TokenExchangeRequest,
    TraderSyncRequest,
)
from services.aggregation import build_profile, rating_point
from services.leaderboard import get_leaderboard_refresher, listing, podium, statistics
from services.normalizer import TradeNormalizer
from services.scoring import score
from services.token_manager import TokenLifecycleManager, token_response
from storage.token_store import get_token_store
from storage.trade_store import get_trade_store


# Query keys consumed by /proxy itself; everything else is forwarded upstream
PROXY_CONTROL_PARAMS = ("platform", "endpoint", "apiKey", "apiSecret", "account_type")


# ============================================
# Lifespan Management
# ============================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown."""
    # Startup
    logger.info("=== Application Starting ===")
    try:
        validate_configuration()
        await manager.initialize_all()
        try:
            await refresher.start()
        except Exception as e:
            logger.error(f"Failed to start leaderboard refresher: {e}")
        logger.info("=== Application Ready ===")
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        raise

    yield

    # Shutdown
    logger.info("=== Application Shutting Down ===")
    try:
        await refresher.stop()
    except Exception as e:
        logger.error(f"Error stopping leaderboard refresher: {e}")
    await manager.shutdown_all()
    logger.info("=== Application Stopped ===")


app = FastAPI(
    title="AlphaEdge Exchange Integration API",
    description=(
        "Connect broker and exchange accounts, sync trade history and rank traders.\n\n"
        "Authentication:\n"
        "- API key platforms (Binance, Bybit): pass `apiKey`/`apiSecret` or rely on server-side keys\n"
        "- OAuth platforms (cTrader): call `POST /oauth/token-exchange` once, then send the\n"
        "  returned `session_id` as the `X-Session-ID` header\n\n"
        "Errors are JSON objects with a stable `error` kind, a `message`, and the upstream\n"
        "`status`/`body` under `details` when a provider call failed."
    ),
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)

manager = get_manager()
resolver = CredentialResolver()
normalizer = TradeNormalizer()
token_store = get_token_store()
trade_store = get_trade_store()
refresher = get_leaderboard_refresher()


# ============================================
# Error Handlers
# ============================================

@app.exception_handler(AlphaEdgeError)
async def alphaedge_error_handler(request: Request, exc: AlphaEdgeError):
    status = exc.response_status if isinstance(exc, UpstreamError) else exc.http_status
    logger.error(f"{request.method} {request.url.path} failed ({status}): {exc}")
    return JSONResponse(status_code=status, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": "http_error", "message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "error": "invalid_request",
            "message": "Request validation failed",
            "details": [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()],
        },
    )


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "invalid_request", "message": message})


def _session_manager(session_id: Optional[str]) -> TokenLifecycleManager:
    if not session_id:
        raise HTTPException(status_code=400, detail="X-Session-ID header is required")
    return TokenLifecycleManager(session_id, store=token_store, resolver=resolver)


def _auth_for(exchange_id: str, mode: str, api_key: Optional[str], api_secret: Optional[str],
              session_id: Optional[str]) -> Any:
    """
    Auth object matching the gateway's scheme: a Credential for signed
    platforms, the session's token manager for OAuth, nothing for stubs.
    """
    gateway = manager.get_gateway(exchange_id)
    if gateway.auth_scheme == "none":
        return None
    if gateway.auth_scheme == "oauth":
        return _session_manager(session_id)
    return resolver.resolve(exchange_id, mode, api_key, api_secret)


# ============================================
# System Endpoints
# ============================================

@app.get("/", tags=["System"])
async def root():
    """API information and available platforms."""
    return {
        "name": "AlphaEdge Exchange Integration API",
        "version": "1.0.0",
        "status": "operational",
        "docs": "/docs",
        "exchanges": manager.list_exchanges()
    }


@app.get("/health", tags=["System"])
async def health_check():
    """Health check - tests connectivity to all platforms."""
    health = await manager.health_check_all()
    return {
        "status": "healthy" if all(health.values()) else "degraded",
        "exchanges": health,
        "leaderboard_refreshed_at": refresher.refreshed_at,
    }


@app.get("/exchanges", tags=["System"])
async def list_exchanges():
    """List registered platforms, their auth scheme and capabilities."""
    return {"exchanges": manager.describe()}


# ============================================
# Credentials & Proxy
# ============================================

@app.post("/validate/{exchange_id}", tags=["Credentials"])
async def validate_credentials(exchange_id: str, body: CredentialValidationRequest):
    """
    Check an API key pair against the platform.

    Example:
        POST /validate/bybit  {"apiKey": "...", "apiSecret": "..."}

    Returns: {"valid": bool}
    """
    if not body.apiKey or not body.apiSecret:
        return _bad_request("Both apiKey and apiSecret are required")

    gateway = manager.get_gateway(exchange_id)
    credential = Credential(
        exchange_id=exchange_id,
        key_id=body.apiKey,
        secret=body.apiSecret,
        source="request",
    )
    valid = await gateway.validate_credentials(credential)
    logger.info(f"Credential validation for {exchange_id}: {'valid' if valid else 'rejected'}")
    return {"valid": valid}


@app.get("/proxy", tags=["Credentials"])
async def proxy(request: Request, x_session_id: Optional[str] = Header(None, alias="X-Session-ID")):
    """
    Authenticated passthrough to a platform endpoint.

    Query:
        platform: Exchange id
        endpoint: Upstream path (e.g. /v5/position/closed-pnl)
        apiKey / apiSecret: Optional request credentials
        account_type: "live" (default) or "demo"
        anything else: forwarded as upstream query parameters

    Example:
        GET /proxy?platform=bybit&endpoint=/v5/position/closed-pnl&category=linear

    Returns: The upstream JSON body; upstream failures keep their status.
    """
    query = dict(request.query_params)
    platform = query.get("platform")
    endpoint = query.get("endpoint")
    if not platform or not endpoint:
        return _bad_request("Both platform and endpoint are required")

    mode = query.get("account_type") or "live"
    if mode not in ("live", "demo"):
        return _bad_request(f"Invalid account_type '{mode}'. Must be 'live' or 'demo'")

    params = {k: v for k, v in query.items() if k not in PROXY_CONTROL_PARAMS}
    auth = _auth_for(platform, mode, query.get("apiKey"), query.get("apiSecret"), x_session_id)
    return await manager.call(platform, endpoint, params, auth)


# ============================================
# OAuth Sessions
# ============================================

@app.post("/oauth/token-exchange", tags=["OAuth"])
async def token_exchange(body: TokenExchangeRequest,
                         x_session_id: Optional[str] = Header(None, alias="X-Session-ID")):
    """
    Exchange an authorization code for an access/refresh token pair.

    A new session id is issued when the X-Session-ID header is absent; send
    it back on every later call for this account.
    """
    if not body.code or not body.redirect_uri:
        return _bad_request("Both code and redirect_uri are required")

    session_id = x_session_id or uuid.uuid4().hex
    lifecycle = TokenLifecycleManager(session_id, store=token_store, resolver=resolver)
    token = await lifecycle.exchange_code(body.code, body.redirect_uri, mode=body.account_type)
    return token_response(token, session_id)


@app.post("/oauth/refresh", tags=["OAuth"])
async def token_refresh(x_session_id: Optional[str] = Header(None, alias="X-Session-ID")):
    """Refresh the session token now."""
    lifecycle = _session_manager(x_session_id)
    token = await lifecycle.refresh()
    return token_response(token, x_session_id)


@app.delete("/oauth/session", tags=["OAuth"])
async def sign_out(x_session_id: Optional[str] = Header(None, alias="X-Session-ID")):
    """Drop the session token (sign-out)."""
    lifecycle = _session_manager(x_session_id)
    return {"session_id": x_session_id, "revoked": lifecycle.revoke()}


# ============================================
# Traders
# ============================================

@app.post("/traders/{profile_id}/sync", tags=["Traders"])
async def sync_trader(profile_id: str, body: TraderSyncRequest,
                      x_session_id: Optional[str] = Header(None, alias="X-Session-ID")):
    """
    Pull a trader's history from one platform and rebuild their profile.

    Steps: fetch raw trades -> normalize -> upsert by id -> rebuild profile
    from every stored trade (all platforms) -> re-rank the leaderboard.
    """
    exchange_id = body.exchange.lower()
    auth = _auth_for(exchange_id, body.account_type, body.apiKey, body.apiSecret, x_session_id)

    params: Dict[str, Any] = {}
    if body.source and exchange_id == "bybit":
        params["source"] = body.source

    payload = await manager.fetch_trades(exchange_id, auth, **params)
    result = normalizer.normalize(exchange_id, payload, trader_profile_id=profile_id)

    trade_store.upsert_trades(profile_id, result.records)
    profile = build_profile(
        profile_id,
        trade_store.trades(profile_id),
        previous=trade_store.get_profile(profile_id),
        nickname=body.nickname or None,
        is_live_account=body.account_type == "live",
    )
    trade_store.save_profile(profile)
    trade_store.record_rating(profile_id, rating_point(profile, score(profile, trade_store.trades(profile_id))))
    await refresher.refresh()

    logger.info(
        f"Synced {profile_id} from {exchange_id}: {len(result.records)} new/updated trade(s), "
        f"{profile.total_trades} total, rating {profile.elo_score}"
    )
    return {
        "profile": profile.model_dump(mode="json"),
        "normalization": {
            "exchange": result.exchange,
            "records": len(result.records),
            "skipped": result.skipped,
            "filtered": result.filtered,
            "warnings": result.warnings,
        },
    }


@app.get("/traders/{profile_id}/elo", tags=["Traders"])
async def trader_elo(profile_id: str):
    """Reliability-weighted rating of a stored profile."""
    profile = trade_store.get_profile(profile_id)
    if profile is None:
        raise HTTPException(status_code=404, detail=f"Trader profile '{profile_id}' not found")
    return score(profile, trade_store.trades(profile_id)).model_dump()


@app.get("/traders/{profile_id}/elo/history", tags=["Traders"])
async def trader_elo_history(profile_id: str):
    """Rating recorded at each sync, oldest first."""
    if trade_store.get_profile(profile_id) is None:
        raise HTTPException(status_code=404, detail=f"Trader profile '{profile_id}' not found")
    history = trade_store.rating_history(profile_id)
    return {
        "trader_profile_id": profile_id,
        "count": len(history),
        "history": [point.model_dump(mode="json") for point in history],
    }


# ============================================
# Leaderboard
# ============================================

@app.get("/leaderboard", tags=["Leaderboard"])
async def leaderboard(limit: Optional[int] = Query(None, ge=1, le=500, description="Rows to return (default 50)")):
    """Ranked traders from the last committed refresh."""
    entries = listing(refresher.entries, limit or settings.leaderboard_limit)
    return {
        "refreshed_at": refresher.refreshed_at,
        "count": len(entries),
        "entries": [entry.model_dump() for entry in entries],
    }


@app.get("/leaderboard/podium", tags=["Leaderboard"])
async def leaderboard_podium():
    """Top three traders."""
    return {"podium": [entry.model_dump() for entry in podium(refresher.entries)]}


@app.get("/leaderboard/stats", tags=["Leaderboard"])
async def leaderboard_stats():
    """Trader count, average rating, category distribution and top performers."""
    return statistics(refresher.entries)
