import asyncio
import json

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse

from broadside.schemas import (
    ActionRequest,
    ActionResponse,
    MapListResponse,
    StateSnapshot,
    VoteRequest,
    VoteResponse,
)
from broadside.services.maps import get_all_maps
from broadside.services.session import GameSession


router = APIRouter()

KEEPALIVE_SEC = 15.0


def _get_session(request: Request) -> GameSession:
    session = getattr(request.app.state, "session", None)
    if session is None:
        raise HTTPException(status_code=503, detail="game session not available")
    return session


@router.get("/state", response_model=StateSnapshot)
async def get_state(request: Request) -> StateSnapshot:
    return _get_session(request).snapshot()


@router.get("/maps", response_model=MapListResponse)
async def list_maps(request: Request) -> MapListResponse:
    return _get_session(request).list_maps()


@router.post("/vote", response_model=VoteResponse)
async def post_vote(req: VoteRequest, request: Request) -> VoteResponse:
    res = _get_session(request).submit_vote(req.name, req.action)
    if res.ok:
        return res
    status = 409 if res.reason == "locked" else 400
    raise HTTPException(status_code=status, detail=res.message)


@router.post("/action", response_model=ActionResponse)
async def post_action(req: ActionRequest, request: Request) -> ActionResponse:
    res = _get_session(request).queue_action(req.model_dump())
    if not res.accepted:
        raise HTTPException(status_code=400, detail="Invalid action")
    return res


@router.post("/start", response_model=StateSnapshot)
async def post_start(request: Request) -> StateSnapshot:
    return _get_session(request).start()


@router.post("/reset", response_model=StateSnapshot)
async def post_reset(request: Request) -> StateSnapshot:
    return _get_session(request).reset()


@router.post("/map/{map_id}", response_model=StateSnapshot)
async def post_map(map_id: str, request: Request) -> StateSnapshot:
    if all(m.id != map_id for m in get_all_maps()):
        raise HTTPException(status_code=404, detail="map not found")
    return _get_session(request).load_map(map_id)


@router.get("/stream")
async def stream(request: Request):
    """server-sent events: 接続直後に現在の状態、以後はティックごとのスナップショット"""
    session = _get_session(request)
    q = session.subscribe()

    async def events():
        try:
            first = json.dumps(session.snapshot_payload(), ensure_ascii=False)
            yield f"data: {first}\n\n"
            while True:
                if await request.is_disconnected():
                    break
                try:
                    data = await asyncio.wait_for(q.get(), timeout=KEEPALIVE_SEC)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield f"data: {data}\n\n"
        finally:
            session.unsubscribe(q)

    return StreamingResponse(events(), media_type="text/event-stream")
