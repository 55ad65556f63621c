"""Entry point for the FastAPI-powered SteamBubbles backend."""

from __future__ import annotations

import logging
import secrets
import time
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .config import settings
from .database import Database
from .merge_forest import MergeError
from .persistence import SqlKeyValueStore
from .services.library import LibraryService
from .services.openid import SteamOpenID
from .services.steam import SteamAPIError, SteamClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


class MergeRequest(BaseModel):
    """Body of a merge edit: fold ``from`` into ``to``."""

    model_config = ConfigDict(populate_by_name=True)

    from_id: int | str | None = Field(
        default=None, validation_alias=AliasChoices("from", "fromAppid", "from_id")
    )
    to_id: int | str | None = Field(
        default=None, validation_alias=AliasChoices("to", "toAppid", "to_id")
    )


class LoadRequest(BaseModel):
    steam_id: str | None = Field(
        default=None, validation_alias=AliasChoices("steamId", "steamid", "steam_id")
    )


class ViewUpdate(BaseModel):
    """Presentation knobs; the feed recomputes after any of them change."""

    limit: int | None = Field(
        default=None, ge=1, le=10_000, validation_alias=AliasChoices("limit", "topN")
    )
    show_all: bool | None = Field(
        default=None, validation_alias=AliasChoices("showAll", "show_all")
    )
    search_term: str | None = Field(
        default=None,
        max_length=200,
        validation_alias=AliasChoices("searchTerm", "search_term", "q"),
    )


class AppDetailsRequest(BaseModel):
    appids: list[int | str] = Field(default_factory=list)


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    logger.info("BACKEND_URL      = %s", settings.backend_url)
    logger.info("FRONTEND_URL     = %s", settings.frontend_url)
    logger.info("CLIENT_ORIGIN    = %s", settings.client_origin)
    logger.info("STEAM_REALM      = %s", settings.steam_realm)
    logger.info("STEAM_RETURN_URL = %s", settings.steam_return_url)

    exit_stack = AsyncExitStack()
    api_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.steam_api_url),
            timeout=httpx.Timeout(20.0, connect=10.0),
        )
    )
    store_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.steam_store_url),
            timeout=httpx.Timeout(15.0, connect=5.0),
        )
    )
    openid_client = await exit_stack.enter_async_context(
        httpx.AsyncClient(timeout=httpx.Timeout(15.0, connect=5.0))
    )
    database = Database(settings.database_url)
    await database.create_all()

    steam = SteamClient(settings, api_client, store_client)
    library_service = LibraryService(
        settings, steam, SqlKeyValueStore(database.session_factory)
    )

    fastapi_app.state.steam_client = steam
    fastapi_app.state.openid = SteamOpenID(str(settings.steam_openid_url), openid_client)
    fastapi_app.state.library_service = library_service
    fastapi_app.state.database = database

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Steam playtime bubbles with user-curated merges",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.client_origin or settings.frontend_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["*"],
    )

    fastapi_app.state.sessions: dict[str, dict[str, Any]] = {}

    register_routes(fastapi_app)
    return fastapi_app


def get_library_service(fastapi_app: FastAPI) -> LibraryService:
    service = getattr(fastapi_app.state, "library_service", None)
    if not isinstance(service, LibraryService):
        raise RuntimeError("Library service not initialised")
    return service


def get_steam_client(fastapi_app: FastAPI) -> SteamClient:
    client = getattr(fastapi_app.state, "steam_client", None)
    if not isinstance(client, SteamClient):
        raise RuntimeError("Steam client not initialised")
    return client


def get_openid(fastapi_app: FastAPI) -> SteamOpenID:
    openid = getattr(fastapi_app.state, "openid", None)
    if not isinstance(openid, SteamOpenID):
        raise RuntimeError("Steam OpenID not initialised")
    return openid


def register_routes(fastapi_app: FastAPI) -> None:
    if not hasattr(fastapi_app.state, "sessions"):
        fastapi_app.state.sessions = {}

    @fastapi_app.get("/", response_class=PlainTextResponse)
    async def index() -> str:
        return "SteamBubbles backend is running. Try /api/me or /api/feed"

    @fastapi_app.get("/health")
    async def health() -> dict[str, bool]:
        return {"ok": True}

    # -- auth ----------------------------------------------------------

    @fastapi_app.get("/auth/steam")
    async def steam_login() -> RedirectResponse:
        openid = get_openid(fastapi_app)
        url = openid.build_login_url(
            return_to=str(settings.steam_return_url), realm=str(settings.steam_realm)
        )
        return RedirectResponse(url, status_code=302)

    @fastapi_app.get("/auth/steam/return", name="steam_login_return")
    async def steam_login_return(request: Request) -> RedirectResponse:
        openid = get_openid(fastapi_app)
        steam_id = await openid.verify(
            dict(request.query_params), return_to=str(settings.steam_return_url)
        )
        redirect = RedirectResponse(settings.frontend_url, status_code=302)
        if steam_id is None:
            return redirect

        user: dict[str, Any] = {"steamid": steam_id, "displayName": steam_id, "avatar": None}
        try:
            summary = await get_steam_client(fastapi_app).fetch_player_summary(steam_id)
        except SteamAPIError as exc:
            logger.warning("Could not load Steam profile for %s: %s", steam_id, exc)
            summary = None
        if summary:
            user["displayName"] = summary.get("personaname") or steam_id
            user["avatar"] = summary.get("avatarfull") or summary.get("avatar")

        old_session = request.cookies.get(settings.session_cookie_name)
        if old_session:
            fastapi_app.state.sessions.pop(old_session, None)
        session_id = _new_session(fastapi_app, user=user)
        _set_session_cookie(redirect, session_id)
        logger.info("Steam user %s signed in", steam_id)
        return redirect

    @fastapi_app.get("/auth/logout")
    async def steam_logout(request: Request) -> RedirectResponse:
        session_id = request.cookies.get(settings.session_cookie_name)
        if session_id:
            fastapi_app.state.sessions.pop(session_id, None)
        redirect = RedirectResponse(settings.frontend_url, status_code=302)
        redirect.delete_cookie(settings.session_cookie_name)
        return redirect

    @fastapi_app.get("/api/me")
    async def me(request: Request, response: Response) -> dict[str, Any]:
        session = _resolve_session(fastapi_app, request, response)
        user = session.get("user")
        if not user:
            return {"loggedIn": False}
        return {"loggedIn": True, "user": user}

    # -- Steam relay ---------------------------------------------------

    @fastapi_app.get("/api/owned-games")
    async def owned_games(
        request: Request, response: Response, steamid: str | None = None
    ) -> Any:
        session = _resolve_session(fastapi_app, request, response)
        user = session.get("user") or {}
        steam_id = (steamid or "").strip() or user.get("steamid")
        if not steam_id:
            return JSONResponse({"error": "Not logged in"}, status_code=401)
        try:
            return await get_steam_client(fastapi_app).fetch_owned_games(steam_id)
        except SteamAPIError as exc:
            logger.error("Failed to fetch owned games for %s: %s", steam_id, exc)
            return JSONResponse(
                {"error": "Failed to fetch owned games"},
                status_code=exc.status_code if exc.status_code == 500 else 502,
            )

    @fastapi_app.post("/api/appdetails-batch")
    async def appdetails_batch(payload: AppDetailsRequest) -> Any:
        if not payload.appids:
            return JSONResponse(
                {"error": "appids must be a non-empty array"}, status_code=400
            )
        return await get_steam_client(fastapi_app).fetch_app_details(payload.appids)

    # -- feed ----------------------------------------------------------

    @fastapi_app.get("/api/feed")
    async def feed(request: Request, response: Response) -> dict[str, Any]:
        profile_id = _profile_id(fastapi_app, request, response)
        service = get_library_service(fastapi_app)
        snapshot = await service.snapshot(profile_id)
        snapshot["manualSteamId"] = await service.manual_steam_id(profile_id)
        return snapshot

    @fastapi_app.post("/api/library/load")
    async def load_library(
        request: Request, response: Response, payload: LoadRequest | None = None
    ) -> dict[str, Any]:
        session = _resolve_session(fastapi_app, request, response)
        profile_id = _profile_for_session(session)
        service = get_library_service(fastapi_app)
        manual_id = (payload.steam_id if payload else None) or ""
        if manual_id.strip():
            try:
                return await service.load_library_by_input(profile_id, manual_id)
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
        user = session.get("user") or {}
        if not user.get("steamid"):
            raise HTTPException(status_code=401, detail="Not logged in")
        return await service.load_library(profile_id, user["steamid"])

    @fastapi_app.post("/api/merges")
    async def add_merge(
        request: Request, response: Response, payload: MergeRequest
    ) -> dict[str, Any]:
        profile_id = _profile_id(fastapi_app, request, response)
        service = get_library_service(fastapi_app)
        try:
            return await service.add_merge(profile_id, payload.from_id, payload.to_id)
        except MergeError as exc:
            logger.info("Rejected merge %s -> %s: %s", payload.from_id, payload.to_id, exc.code)
            raise HTTPException(status_code=400, detail=exc.to_payload()) from exc

    @fastapi_app.delete("/api/merges/{from_id}")
    async def remove_merge(
        request: Request, response: Response, from_id: int
    ) -> dict[str, Any]:
        profile_id = _profile_id(fastapi_app, request, response)
        return await get_library_service(fastapi_app).remove_merge(profile_id, from_id)

    @fastapi_app.delete("/api/merges")
    async def clear_merges(request: Request, response: Response) -> dict[str, Any]:
        profile_id = _profile_id(fastapi_app, request, response)
        return await get_library_service(fastapi_app).clear_merges(profile_id)

    @fastapi_app.post("/api/hidden/{title_id}/toggle")
    async def toggle_hidden(
        request: Request, response: Response, title_id: int
    ) -> dict[str, Any]:
        profile_id = _profile_id(fastapi_app, request, response)
        return await get_library_service(fastapi_app).toggle_hidden(profile_id, title_id)

    @fastapi_app.delete("/api/hidden")
    async def clear_hidden(request: Request, response: Response) -> dict[str, Any]:
        profile_id = _profile_id(fastapi_app, request, response)
        return await get_library_service(fastapi_app).clear_hidden(profile_id)

    @fastapi_app.patch("/api/feed/view")
    async def update_view(
        request: Request, response: Response, payload: ViewUpdate
    ) -> dict[str, Any]:
        profile_id = _profile_id(fastapi_app, request, response)
        return await get_library_service(fastapi_app).update_view(
            profile_id,
            limit=payload.limit,
            show_all=payload.show_all,
            search_term=payload.search_term,
        )


def _prune_expired_sessions(fastapi_app: FastAPI) -> None:
    store = getattr(fastapi_app.state, "sessions", {})
    now = time.time()
    expired = [key for key, info in store.items() if info.get("expires_at", 0) <= now]
    service = getattr(fastapi_app.state, "library_service", None)
    for key in expired:
        session = store.pop(key, None) or {}
        if isinstance(service, LibraryService) and not session.get("user"):
            service.discard_profile(f"anon-{key}")


def _new_session(
    fastapi_app: FastAPI,
    *,
    user: dict[str, Any] | None = None,
    session_id: str | None = None,
) -> str:
    session_id = session_id or secrets.token_urlsafe(32)
    fastapi_app.state.sessions[session_id] = {
        "user": user,
        "expires_at": time.time() + settings.session_ttl_seconds,
    }
    return session_id


def _set_session_cookie(response: Response, session_id: str) -> None:
    secure = settings.cookie_secure
    response.set_cookie(
        settings.session_cookie_name,
        session_id,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        secure=secure,
        samesite="none" if secure else "lax",
    )


def _resolve_session(
    fastapi_app: FastAPI, request: Request, response: Response
) -> dict[str, Any]:
    """Return the caller's session, starting an anonymous one if needed.

    An unknown cookie value is adopted as an anonymous session so that a
    browser keeps its curated state across server restarts; sign-in always
    issues a fresh id.
    """

    _prune_expired_sessions(fastapi_app)
    store = fastapi_app.state.sessions
    session_id = request.cookies.get(settings.session_cookie_name)
    if session_id and session_id in store:
        session = store[session_id]
    else:
        if not _looks_like_session_id(session_id):
            session_id = None
        session_id = _new_session(fastapi_app, session_id=session_id)
        session = store[session_id]
        _set_session_cookie(response, session_id)
    session["id"] = session_id
    return session


def _looks_like_session_id(value: str | None) -> bool:
    if not value or not 32 <= len(value) <= 58:
        return False
    return all(char.isalnum() or char in "-_" for char in value)


def _profile_for_session(session: dict[str, Any]) -> str:
    user = session.get("user") or {}
    steam_id = user.get("steamid")
    if steam_id:
        return str(steam_id)
    return f"anon-{session['id']}"


def _profile_id(fastapi_app: FastAPI, request: Request, response: Response) -> str:
    return _profile_for_session(_resolve_session(fastapi_app, request, response))


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
