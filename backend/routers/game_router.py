"""
Room HTTP endpoints.

The caller identity arrives already authenticated in the X-User-Id header.

Routes:
  POST   /api/rooms                               — Create room (+ seat host if host_name given)
  POST   /api/rooms/join                          — Join a lobby by code
  GET    /api/rooms/by-code/{room_code}           — Public room state by join code
  GET    /api/rooms/{room_id}                     — Public room state (roles hidden)
  PUT    /api/rooms/{room_id}/settings            — Host sets undercover / Mr. White counts
  POST   /api/rooms/{room_id}/players/{pid}/ready — Toggle own ready state
  DELETE /api/rooms/{room_id}/players/me          — Leave the lobby
  POST   /api/rooms/{room_id}/start               — Host deals a new game
  POST   /api/rooms/{room_id}/voting              — Host opens voting
  POST   /api/rooms/{room_id}/votes               — Cast a vote
  GET    /api/rooms/{room_id}/votes               — Who has voted this round
  POST   /api/rooms/{room_id}/tally               — Host resolves the round (optional Mr. White guess)
  GET    /api/rooms/{room_id}/history             — Per-round results so far
  POST   /api/rooms/{room_id}/reset               — Back to lobby for another game
  GET    /api/rooms/{room_id}/secret              — Own role and word
  PUT    /api/rooms/{room_id}/secret/answer       — Mr. White stores a guess
  GET    /api/rooms/{room_id}/results             — Post-game reveal
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header

from agents.result_revealer import ResultRevealer
from agents.room_manager import RoomLifecycleManager, get_room_manager
from errors import AuthorizationError
from models.game import (
    CastVoteRequest, CreateRoomRequest, CreateRoomResponse,
    JoinRoomRequest, JoinRoomResponse, MrWhiteAnswerRequest,
    RoomSettings, TallyRequest, TallyResult,
)
from models.session import SessionContext

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rooms"])


def get_session(x_user_id: Optional[str] = Header(None, alias="X-User-Id")) -> SessionContext:
    if not x_user_id or not x_user_id.strip():
        raise AuthorizationError("Missing caller identity", "unauthenticated")
    return SessionContext(user_id=x_user_id.strip())


@router.post("/rooms", response_model=CreateRoomResponse, status_code=201)
async def create_room(
    body: CreateRoomRequest,
    session: SessionContext = Depends(get_session),
    manager: RoomLifecycleManager = Depends(get_room_manager),
):
    room, player = await manager.create_room(session.user_id, body.host_name)
    return CreateRoomResponse(
        room_id=room.id,
        room_code=room.room_code,
        player_id=player.id if player else None,
    )


@router.post("/rooms/join", response_model=JoinRoomResponse)
async def join_room(
    body: JoinRoomRequest,
    session: SessionContext = Depends(get_session),
    manager: RoomLifecycleManager = Depends(get_room_manager),
):
    room, player = await manager.join_room(body.room_code, session.user_id, body.name)
    session = session.enter_room(room.id, room.room_code, player.id)
    return JoinRoomResponse(
        room=room.to_public(),
        player=player.to_public(),
        session=session,
    )


@router.get("/rooms/by-code/{room_code}")
async def get_room_by_code(
    room_code: str,
    manager: RoomLifecycleManager = Depends(get_room_manager),
):
    return await manager.get_room_by_code(room_code)


@router.get("/rooms/{room_id}")
async def get_room(
    room_id: str,
    manager: RoomLifecycleManager = Depends(get_room_manager),
):
    return await manager.get_room_state(room_id)


@router.put("/rooms/{room_id}/settings")
async def update_settings(
    room_id: str,
    body: RoomSettings,
    session: SessionContext = Depends(get_session),
    manager: RoomLifecycleManager = Depends(get_room_manager),
):
    room = await manager.update_settings(room_id, session.user_id, body)
    return room.to_public()


@router.post("/rooms/{room_id}/players/{player_id}/ready")
async def toggle_ready(
    room_id: str,
    player_id: str,
    session: SessionContext = Depends(get_session),
    manager: RoomLifecycleManager = Depends(get_room_manager),
):
    player = await manager.toggle_ready(room_id, player_id, session.user_id)
    return player.to_public()


@router.delete("/rooms/{room_id}/players/me")
async def leave_room(
    room_id: str,
    session: SessionContext = Depends(get_session),
    manager: RoomLifecycleManager = Depends(get_room_manager),
):
    await manager.leave_room(room_id, session.user_id)
    return {"status": "left", "session": session.leave_room()}


@router.post("/rooms/{room_id}/start")
async def start_game(
    room_id: str,
    session: SessionContext = Depends(get_session),
    manager: RoomLifecycleManager = Depends(get_room_manager),
):
    room = await manager.start_game(room_id, session.user_id)
    return {"status": "started", "room": room.to_public()}


@router.post("/rooms/{room_id}/voting")
async def start_voting(
    room_id: str,
    session: SessionContext = Depends(get_session),
    manager: RoomLifecycleManager = Depends(get_room_manager),
):
    room = await manager.start_voting(room_id, session.user_id)
    return {"status": "voting", "room": room.to_public()}


@router.post("/rooms/{room_id}/votes", status_code=201)
async def cast_vote(
    room_id: str,
    body: CastVoteRequest,
    session: SessionContext = Depends(get_session),
    manager: RoomLifecycleManager = Depends(get_room_manager),
):
    await manager.cast_vote(room_id, body.round, body.voter_id, body.target_id, session.user_id)
    return {"status": "voted", "round": body.round}


@router.get("/rooms/{room_id}/votes")
async def vote_progress(
    room_id: str,
    session: SessionContext = Depends(get_session),
    manager: RoomLifecycleManager = Depends(get_room_manager),
):
    return await manager.get_vote_progress(room_id, session.user_id)


@router.post("/rooms/{room_id}/tally", response_model=TallyResult)
async def tally(
    room_id: str,
    body: Optional[TallyRequest] = None,
    session: SessionContext = Depends(get_session),
    manager: RoomLifecycleManager = Depends(get_room_manager),
):
    guess = body.guess if body else None
    return await manager.tally(room_id, session.user_id, guess)


@router.get("/rooms/{room_id}/history")
async def vote_history(
    room_id: str,
    session: SessionContext = Depends(get_session),
    manager: RoomLifecycleManager = Depends(get_room_manager),
):
    return {"room_id": room_id, "rounds": await manager.get_vote_history(room_id, session.user_id)}


@router.post("/rooms/{room_id}/reset")
async def reset_to_lobby(
    room_id: str,
    session: SessionContext = Depends(get_session),
    manager: RoomLifecycleManager = Depends(get_room_manager),
):
    room = await manager.reset_to_lobby(room_id, session.user_id)
    return {"status": "lobby", "room": room.to_public()}


@router.get("/rooms/{room_id}/secret")
async def get_secret(
    room_id: str,
    session: SessionContext = Depends(get_session),
    manager: RoomLifecycleManager = Depends(get_room_manager),
):
    return await manager.get_secret(room_id, session.user_id)


@router.put("/rooms/{room_id}/secret/answer")
async def submit_mr_white_answer(
    room_id: str,
    body: MrWhiteAnswerRequest,
    session: SessionContext = Depends(get_session),
    manager: RoomLifecycleManager = Depends(get_room_manager),
):
    await manager.submit_mr_white_answer(room_id, session.user_id, body.answer)
    return {"status": "saved"}


@router.get("/rooms/{room_id}/results")
async def get_results(
    room_id: str,
    session: SessionContext = Depends(get_session),
    manager: RoomLifecycleManager = Depends(get_room_manager),
):
    """
    Post-game reveal: every player's role, word and Mr. White answer.
    Only for room members, and only after the game has finished.
    """
    revealer = ResultRevealer(manager.store)
    return await revealer.reveal(room_id, session.user_id)
