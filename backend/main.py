from fastapi import Body, FastAPI, WebSocket, WebSocketDisconnect, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import field_validator
from typing import Optional
from contextlib import asynccontextmanager, suppress
import asyncio
import uvicorn
import logging
import socket as socketlib

import config
config.setup_logging()

from commands import COMMAND_TYPES, execute_command, parse_command
from errors import RoomCodeExhausted, RoomError
from models import Document
from notifier import ChangeNotifier
from rounds import create_round_source
from session import RoomHandle, SessionLifecycle, normalize_code
from store import StoreError, create_store

logger = logging.getLogger(__name__)

store = create_store()
notifier = ChangeNotifier()
sessions = SessionLifecycle(store, notifier)
round_source = create_round_source()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting party room backend (store=%s, categories=%s)",
                config.STORE_BACKEND, ",".join(config.ENABLED_CATEGORIES))
    yield
    logger.info("Shutting down party room backend")


app = FastAPI(title="Party Quiz Room Backend", lifespan=lifespan)


def get_local_ip():
    try:
        s = socketlib.socket(socketlib.AF_INET, socketlib.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except Exception:
        return "127.0.0.1"


class CreateRoomRequest(Document):
    name: str = ""
    player_id: Optional[str] = None

    @field_validator('player_id')
    @classmethod
    def validate_player_id(cls, v: Optional[str]) -> Optional[str]:
        v = (v or "").strip()
        return v or None


class JoinRequest(Document):
    player_id: str
    name: str = ""

    @field_validator('player_id')
    @classmethod
    def validate_player_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('playerId must not be blank')
        return v


class LeaveRequest(Document):
    player_id: str

    @field_validator('player_id')
    @classmethod
    def validate_player_id(cls, v: str) -> str:
        return v.strip()


def _raise_for_missing_room(error: Optional[str], code: str):
    if error in ("room_not_found", "no_code"):
        raise HTTPException(status_code=404, detail=f"Room {code} not found")


@app.post("/rooms")
async def create_room(request: CreateRoomRequest):
    try:
        room = await sessions.create(request.name, request.player_id)
    except RoomCodeExhausted:
        raise HTTPException(status_code=503, detail="No free room code. Please try again.")
    except StoreError as e:
        logger.error("Room creation failed: %s", e)
        raise HTTPException(status_code=503, detail="Room store unavailable")
    return {"roomCode": room.code, "playerId": room.host_id, "state": room.to_document()}


@app.get("/rooms/{code}")
async def get_room(code: str):
    try:
        room = await sessions.fetch(code)
    except StoreError as e:
        logger.error("Fetch of room %s failed: %s", code, e)
        raise HTTPException(status_code=503, detail="Room store unavailable")
    if room is None:
        raise HTTPException(status_code=404, detail="Room not found")
    return room.to_document()


@app.post("/rooms/{code}/join")
async def join_room(code: str, request: JoinRequest):
    result = await sessions.join(code, request.player_id, request.name)
    _raise_for_missing_room(result.error, code)
    if not result.ok:
        return result.as_response()
    return {"ok": True, "state": result.state.to_document()}


@app.post("/rooms/{code}/leave")
async def leave_room(code: str, request: LeaveRequest):
    result = await sessions.leave(code, request.player_id)
    _raise_for_missing_room(result.error, code)
    return result.as_response()


async def _dispatch(code: str, payload, channel) -> dict:
    """Parse and run one command against room ``code``. Always resolves to {ok, error?}."""
    if not isinstance(payload, dict):
        return {"ok": False, "error": "bad_command"}
    try:
        command = parse_command({**payload, "roomCode": code})
    except RoomError as e:
        return {"ok": False, "error": e.code}
    result = await execute_command(command, store, round_source, channel)
    return result.as_response()


@app.post("/rooms/{code}/commands")
async def run_command(code: str, payload: dict = Body(...)):
    code = normalize_code(code)
    return await _dispatch(code, payload, notifier.channel(code))


@app.get("/rounds")
async def list_rounds():
    return await round_source.list_grouped()


@app.get("/rounds/{round_id}")
async def get_round(round_id: str):
    round_def = await round_source.get(round_id)
    if round_def is None:
        raise HTTPException(status_code=404, detail="Round not found")
    return round_def.model_dump()


async def _forward_pings(websocket: WebSocket, handle: RoomHandle):
    while not handle.closed:
        message = await handle.subscription.receive()
        try:
            await websocket.send_json(message)
        except (WebSocketDisconnect, RuntimeError):
            logger.debug("Stopped forwarding pings for room %s", handle.code)
            return


@app.websocket("/ws/{code}")
async def websocket_endpoint(websocket: WebSocket, code: str):
    """Change pings for one room; clients may also send commands over the same socket."""
    code = normalize_code(code)
    await websocket.accept()
    if await sessions.fetch(code) is None:
        await websocket.send_json({"type": "ERROR", "message": "Room not found"})
        await websocket.close()
        return

    handle = sessions.subscribe(code)
    forwarder = asyncio.create_task(_forward_pings(websocket, handle))
    try:
        while True:
            try:
                payload = await websocket.receive_json()
            except ValueError:
                await websocket.send_json({"type": "RESULT", "ok": False, "error": "bad_command"})
                continue
            response = await _dispatch(code, payload, handle.subscription)
            request_id = payload.get("requestId") if isinstance(payload, dict) else None
            await websocket.send_json({"type": "RESULT", "requestId": request_id, **response})
    except WebSocketDisconnect:
        logger.debug("WebSocket for room %s disconnected", code)
    finally:
        forwarder.cancel()
        with suppress(asyncio.CancelledError):
            await forwarder
        handle.close()


@app.get("/")
async def root():
    return {"message": "Party quiz room API is running", "commands": list(COMMAND_TYPES)}


@app.get("/health")
async def health():
    return {"status": "healthy"}


# Configure CORS
if config.ALLOWED_ORIGINS.strip():
    origins = [o.strip() for o in config.ALLOWED_ORIGINS.split(",")]
else:
    local_ip = get_local_ip()
    origins = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        f"http://{local_ip}:5173",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
)


if __name__ == "__main__":
    uvicorn.run("main:app", host=config.HOST, port=config.PORT, reload=True)
