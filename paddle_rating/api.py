"""
REST API for the paddle rating core.
Thin wrappers around the match ledger, the session coordinator and the rating engine.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from datetime import timedelta
from typing import Any, AsyncGenerator

from fastapi import Depends, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from paddle_rating.config import Settings
from paddle_rating.exceptions import PaddleRatingError
from paddle_rating.logging_config import setup_logging
from paddle_rating.models import DoublesSession, Match, MatchGame, MatchMode, MatchParticipant, Page
from paddle_rating.rating import RatingEngine
from paddle_rating.services import EventKind, MatchLedger, SessionCoordinator, StoreEvent, count_wins
from paddle_rating.swap_targeting import Rect, find_nearest_opposite

logger = logging.getLogger(__name__)

_STATUS_BY_CODE = {
    "VALIDATION_ERROR": 400,
    "NOT_FOUND": 404,
    "INVALID_STATE": 409,
    "CONFLICT": 409,
}


# ---------- Request models ----------


class ParticipantIn(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = ""
    avatar_url: str | None = None
    rating_before: int | None = Field(None, description="Skill score before the match")

    def to_participant(self) -> MatchParticipant:
        return MatchParticipant(id=self.id, name=self.name or self.id, avatar_url=self.avatar_url, rating_before=self.rating_before)


class GameIn(BaseModel):
    team_a_score: int = Field(..., ge=0)
    team_b_score: int = Field(..., ge=0)


class CreateMatchRequest(BaseModel):
    court_id: str = ""
    court_name: str = ""
    mode: MatchMode
    team_a: list[ParticipantIn] = Field(..., description="Submitter's side")
    team_b: list[ParticipantIn] = Field(..., description="Opponents; each must confirm")
    games: list[GameIn]
    submitter_id: str = Field(..., min_length=1)


class ConfirmMatchRequest(BaseModel):
    approver_id: str = Field(..., min_length=1)


class DisputeMatchRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)
    disputer_id: str | None = None


class StartSessionRequest(BaseModel):
    court_id: str = ""
    court_name: str = ""
    players: list[ParticipantIn] = Field(..., description="Exactly 4 players; first two start as team A")


class ArrangementRequest(BaseModel):
    team_a: list[str]
    team_b: list[str]


class RecordGameRequest(BaseModel):
    team_a_score: int
    team_b_score: int


class RectIn(BaseModel):
    x: float
    y: float
    width: float = Field(..., ge=0)
    height: float = Field(..., ge=0)


class SwapTargetRequest(BaseModel):
    player_id: str = Field(..., description="The dragged player")
    x: float
    y: float
    registry: dict[str, RectIn] = Field(..., description="Current avatar bounds by player id")


# ---------- Dependencies ----------


def get_ledger(request: Request) -> MatchLedger:
    return request.app.state.ledger


def get_coordinator(request: Request) -> SessionCoordinator:
    return request.app.state.coordinator


def get_rating_engine(request: Request) -> RatingEngine:
    return request.app.state.rating_engine


def _page_to_dict(page: Page[Match]) -> dict[str, Any]:
    return {
        "items": [m.to_dict() for m in page.items],
        "total": page.total,
        "page": page.page,
        "limit": page.limit,
        "has_more": page.has_more,
    }


def _require_session(coordinator: SessionCoordinator, session_id: str) -> DoublesSession:
    session = coordinator.current_session
    if session is None or session.id != session_id:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


async def _drain_until_disconnect(websocket: WebSocket) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass


async def _sweep_forever(ledger: MatchLedger, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        ledger.sweep_expired()


# ---------- App factory ----------


def create_app(
    settings: Settings | None = None,
    ledger: MatchLedger | None = None,
    coordinator: SessionCoordinator | None = None,
    rating_engine: RatingEngine | None = None,
) -> FastAPI:
    """
    Build the API around explicitly owned stores. The service always runs the
    stores strict so ignored operations surface as 404/409 instead of no-ops.
    """
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        setup_logging(settings.log_level)
        sweeper = asyncio.create_task(_sweep_forever(app.state.ledger, settings.sweep_interval_seconds))
        logger.info("Expiry sweep every %ss", settings.sweep_interval_seconds)
        yield
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper

    app = FastAPI(
        title="Paddle Rating API",
        description="Match ratification, doubles rotation sessions and skill ratings",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.ledger = ledger or MatchLedger(strict=True, ttl=timedelta(hours=settings.match_ttl_hours))
    app.state.coordinator = coordinator or SessionCoordinator(strict=True)
    app.state.rating_engine = rating_engine or RatingEngine.from_settings(settings)

    @app.exception_handler(PaddleRatingError)
    async def _domain_error(request: Request, exc: PaddleRatingError) -> JSONResponse:
        return JSONResponse(
            status_code=_STATUS_BY_CODE.get(exc.code, 400),
            content={"code": exc.code, "detail": exc.detail},
        )

    _register_rating_routes(app)
    _register_match_routes(app)
    _register_session_routes(app)
    return app


# ---------- Rating ----------


def _register_rating_routes(app: FastAPI) -> None:
    @app.get("/rating/display")
    def get_display_rating(
        skill: int = Query(...),
        engine: RatingEngine = Depends(get_rating_engine),
    ) -> dict[str, Any]:
        """Public rating and tier for a skill score."""
        return {"skill": skill, "display_rating": engine.display_rating(skill), "tier": engine.rating_tier(skill)}

    @app.get("/rating/win-probability")
    def get_win_probability(
        skill_a: int = Query(...),
        skill_b: int = Query(...),
        engine: RatingEngine = Depends(get_rating_engine),
    ) -> dict[str, Any]:
        return {"skill_a": skill_a, "skill_b": skill_b, "probability": engine.win_probability(skill_a, skill_b)}

    @app.get("/rating/delta")
    def get_rating_delta(
        skill: int = Query(...),
        opponent_skill: int = Query(...),
        won: bool = Query(...),
        engine: RatingEngine = Depends(get_rating_engine),
    ) -> dict[str, Any]:
        """Provisional change for one result; nothing is stored."""
        return {
            "delta": engine.rating_delta(skill, opponent_skill, won),
            "new_skill": engine.new_skill(skill, opponent_skill, won),
            "display_delta": engine.display_delta(skill, opponent_skill, won),
        }


# ---------- Matches ----------


def _register_match_routes(app: FastAPI) -> None:
    @app.post("/matches")
    def create_match(
        req: CreateMatchRequest,
        ledger: MatchLedger = Depends(get_ledger),
        engine: RatingEngine = Depends(get_rating_engine),
    ) -> dict[str, Any]:
        """
        Submit a result. Opponents must confirm within the TTL.
        When every participant carries rating_before, the submitter side's
        rating delta is computed from team averages and stored on the match.
        """
        team_a = [p.to_participant() for p in req.team_a]
        team_b = [p.to_participant() for p in req.team_b]
        games = [MatchGame(g.team_a_score, g.team_b_score) for g in req.games]
        delta = None
        everyone = team_a + team_b
        if everyone and all(p.rating_before is not None for p in everyone):
            a_wins, b_wins = count_wins(games)
            delta = engine.match_delta(
                [p.rating_before for p in team_a],
                [p.rating_before for p in team_b],
                a_wins > b_wins,
            )
        match = ledger.create_match(
            req.court_id, req.court_name, req.mode, team_a, team_b, games, req.submitter_id,
            rating_delta=delta,
        )
        return match.to_dict()

    @app.get("/matches")
    def list_matches(
        status: str | None = Query(None, description="pending | confirmed | disputed | expired"),
        ledger: MatchLedger = Depends(get_ledger),
    ) -> dict[str, Any]:
        ledger.sweep_expired()
        matches = ledger.list_by_status(status) if status else ledger.list_matches()
        return {"matches": [m.to_dict() for m in matches]}

    @app.post("/matches/sweep")
    def sweep_matches(ledger: MatchLedger = Depends(get_ledger)) -> dict[str, Any]:
        return {"expired": ledger.sweep_expired()}

    @app.get("/matches/{match_id}")
    def get_match(match_id: str, ledger: MatchLedger = Depends(get_ledger)) -> dict[str, Any]:
        ledger.sweep_expired()
        match = ledger.get_match(match_id)
        if match is None:
            raise HTTPException(status_code=404, detail="Match not found")
        return match.to_dict()

    @app.post("/matches/{match_id}/confirm")
    def confirm_match(
        match_id: str,
        req: ConfirmMatchRequest,
        ledger: MatchLedger = Depends(get_ledger),
    ) -> dict[str, Any]:
        ledger.sweep_expired()
        return ledger.confirm_match(match_id, req.approver_id).to_dict()

    @app.post("/matches/{match_id}/dispute")
    def dispute_match(
        match_id: str,
        req: DisputeMatchRequest,
        ledger: MatchLedger = Depends(get_ledger),
    ) -> dict[str, Any]:
        ledger.sweep_expired()
        return ledger.dispute_match(match_id, req.reason, disputer_id=req.disputer_id).to_dict()

    @app.get("/users/{user_id}/matches")
    def get_match_history(
        user_id: str,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=20, ge=1, le=100),
        ledger: MatchLedger = Depends(get_ledger),
    ) -> dict[str, Any]:
        ledger.sweep_expired()
        return _page_to_dict(ledger.history(user_id, page=page, limit=limit))

    @app.get("/users/{user_id}/pending-confirmations")
    def get_pending_confirmations(user_id: str, ledger: MatchLedger = Depends(get_ledger)) -> dict[str, Any]:
        """Matches waiting on this user's approval, plus the badge count."""
        ledger.sweep_expired()
        matches = ledger.pending_confirmations(user_id)
        return {"count": len(matches), "matches": [m.to_dict() for m in matches]}


# ---------- Doubles sessions ----------


def _register_session_routes(app: FastAPI) -> None:
    @app.post("/sessions")
    def start_session(
        req: StartSessionRequest,
        coordinator: SessionCoordinator = Depends(get_coordinator),
    ) -> dict[str, Any]:
        session = coordinator.start_session(
            [p.to_participant() for p in req.players],
            court_id=req.court_id,
            court_name=req.court_name,
        )
        return session.to_dict()

    @app.get("/sessions/current")
    def get_current_session(coordinator: SessionCoordinator = Depends(get_coordinator)) -> dict[str, Any]:
        session = coordinator.current_session
        if session is None:
            raise HTTPException(status_code=404, detail="No active session")
        rec_a, rec_b = coordinator.current_combo_records()
        out = session.to_dict()
        out["current_combos"] = {
            "team_a": rec_a.to_dict() if rec_a else None,
            "team_b": rec_b.to_dict() if rec_b else None,
        }
        return out

    @app.put("/sessions/{session_id}/arrangement")
    def update_arrangement(
        session_id: str,
        req: ArrangementRequest,
        coordinator: SessionCoordinator = Depends(get_coordinator),
    ) -> dict[str, Any]:
        return coordinator.update_arrangement(req.team_a, req.team_b, session_id=session_id).to_dict()

    @app.post("/sessions/{session_id}/lock")
    def lock_teams(session_id: str, coordinator: SessionCoordinator = Depends(get_coordinator)) -> dict[str, Any]:
        return coordinator.lock_teams(session_id=session_id).to_dict()

    @app.post("/sessions/{session_id}/unlock")
    def unlock_teams(session_id: str, coordinator: SessionCoordinator = Depends(get_coordinator)) -> dict[str, Any]:
        return coordinator.unlock_teams(session_id=session_id).to_dict()

    @app.post("/sessions/{session_id}/games")
    def record_game(
        session_id: str,
        req: RecordGameRequest,
        coordinator: SessionCoordinator = Depends(get_coordinator),
    ) -> dict[str, Any]:
        game = coordinator.record_game(req.team_a_score, req.team_b_score, session_id=session_id)
        session = coordinator.current_session
        return {"game": game.to_dict(), "session": session.to_dict() if session else None}

    @app.post("/sessions/{session_id}/swap-target")
    def get_swap_target(
        session_id: str,
        req: SwapTargetRequest,
        request: Request,
        coordinator: SessionCoordinator = Depends(get_coordinator),
    ) -> dict[str, Any]:
        """Nearest opposite-team avatar to the pointer, for a player being dragged."""
        session = _require_session(coordinator, session_id)
        if req.player_id in session.team_a:
            own = session.team_a
        elif req.player_id in session.team_b:
            own = session.team_b
        else:
            raise HTTPException(status_code=400, detail=f"Player not in session: {req.player_id}")
        registry = {pid: Rect(r.x, r.y, r.width, r.height) for pid, r in req.registry.items()}
        radius = request.app.state.settings.swap_radius
        return {"target_id": find_nearest_opposite((req.x, req.y), registry, own, radius)}

    @app.post("/sessions/{session_id}/end")
    def end_session(session_id: str, coordinator: SessionCoordinator = Depends(get_coordinator)) -> dict[str, Any]:
        """Complete the session and return it for archival."""
        return coordinator.end_session(session_id=session_id).to_dict()

    @app.websocket("/ws/sessions/{session_id}")
    async def websocket_session(websocket: WebSocket, session_id: str) -> None:
        """
        Push-subscription for the four players' devices. Sends the session on
        connect, then { type: "session_update", event, phase, session } after
        every change. session is null once the session has ended.
        """
        coordinator: SessionCoordinator = websocket.app.state.coordinator
        await websocket.accept()
        session = coordinator.current_session
        if session is None or session.id != session_id:
            await websocket.send_json({"type": "error", "code": "NOT_FOUND", "detail": "Session not found"})
            await websocket.close(code=4404)
            return

        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[StoreEvent] = asyncio.Queue()

        def on_event(event: StoreEvent) -> None:
            if event.entity_id == session_id:
                loop.call_soon_threadsafe(queue.put_nowait, event)

        unsubscribe = coordinator.subscribe(on_event)

        async def pump() -> None:
            while True:
                event = await queue.get()
                current = coordinator.current_session
                await websocket.send_json({
                    "type": "session_update",
                    "event": event.kind.value,
                    "phase": event.status,
                    "session": current.to_dict() if current and current.id == session_id else None,
                })
                if event.kind in (EventKind.SESSION_ENDED, EventKind.SESSION_CLEARED):
                    return

        await websocket.send_json({"type": "session_update", "event": "snapshot", "phase": session.phase.value, "session": session.to_dict()})
        sender = asyncio.create_task(pump())
        receiver = asyncio.create_task(_drain_until_disconnect(websocket))
        try:
            done, _ = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
            if sender in done and sender.exception() is None:
                # session is over; release the devices
                await websocket.close(code=1000)
        finally:
            unsubscribe()
            for task in (sender, receiver):
                if task.done():
                    continue
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task


app = create_app()

# ---------- Run with: uvicorn paddle_rating.api:app --reload ----------
