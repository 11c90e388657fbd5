"""In-process WebSocket relay with per-game and per-user rooms.

Publishing is fire-and-forget and safe from worker threads: every socket is
tied to the event loop it was accepted on and sends are scheduled there.
"""

import asyncio
import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Optional

from fastapi import WebSocket, WebSocketDisconnect


logger = logging.getLogger(__name__)


def game_room(game_id) -> str:
    return f"game-{game_id}"


def user_room(user_id) -> str:
    return f"user-{user_id}"


@dataclass
class Connection:
    websocket: WebSocket
    user_id: str
    game_id: Optional[str] = None


class NotificationHub:
    def __init__(self):
        self._rooms: dict[str, set] = defaultdict(set)
        self._loops: dict = {}
        self._lock = threading.Lock()

    def register(self, websocket: WebSocket) -> None:
        with self._lock:
            self._loops[websocket] = asyncio.get_running_loop()

    def unregister(self, websocket: WebSocket) -> None:
        with self._lock:
            self._loops.pop(websocket, None)
            for room in list(self._rooms):
                self._rooms[room].discard(websocket)
                if not self._rooms[room]:
                    del self._rooms[room]

    def join(self, websocket: WebSocket, room: str) -> None:
        with self._lock:
            self._rooms[room].add(websocket)

    def leave(self, websocket: WebSocket, room: str) -> None:
        with self._lock:
            members = self._rooms.get(room)
            if members is None:
                return
            members.discard(websocket)
            if not members:
                del self._rooms[room]

    def room_size(self, room: str) -> int:
        with self._lock:
            return len(self._rooms.get(room, ()))

    def publish(self, room: str, event: str, payload: Optional[dict] = None, exclude: Optional[WebSocket] = None) -> None:
        message = {"event": event, "timestamp": int(time.time() * 1000), **(payload or {})}
        with self._lock:
            targets = [
                (websocket, self._loops.get(websocket))
                for websocket in self._rooms.get(room, ())
                if websocket is not exclude
            ]
        for websocket, loop in targets:
            if loop is None or loop.is_closed():
                continue
            try:
                asyncio.run_coroutine_threadsafe(self._send(websocket, message), loop)
            except RuntimeError as exc:
                logger.warning("Could not schedule %s for %s: %s", event, room, exc)

    async def _send(self, websocket: WebSocket, message: dict) -> None:
        try:
            await websocket.send_json(message)
        except Exception as exc:
            logger.warning("Dropping socket after failed send of %s: %s", message.get("event"), exc)
            self.unregister(websocket)

    async def serve(self, websocket: WebSocket, user_id: str) -> None:
        """Run one client connection until it disconnects."""
        await websocket.accept()
        self.register(websocket)
        self.join(websocket, user_room(user_id))
        connection = Connection(websocket=websocket, user_id=user_id)
        logger.info("User %s connected to relay", user_id)

        try:
            while True:
                try:
                    data = await websocket.receive_json()
                except (KeyError, ValueError):
                    await websocket.send_json({"event": "error", "detail": "Messages must be JSON objects"})
                    continue
                if not isinstance(data, dict):
                    await websocket.send_json({"event": "error", "detail": "Messages must be JSON objects"})
                    continue
                await self.handle_message(connection, data)
        except WebSocketDisconnect:
            pass
        finally:
            self.unregister(websocket)
            if connection.game_id:
                self.publish(game_room(connection.game_id), "opponent-disconnected", {"userId": user_id})
            logger.info("User %s disconnected from relay", user_id)

    async def handle_message(self, connection: Connection, data: dict) -> None:
        kind = data.get("type")
        websocket = connection.websocket
        game_id = data.get("gameId") or connection.game_id

        if kind == "ping":
            await websocket.send_json({"event": "pong"})
        elif kind in ("join-game", "reconnect"):
            if not game_id:
                return
            if connection.game_id and connection.game_id != str(game_id):
                self.leave(websocket, game_room(connection.game_id))
            connection.game_id = str(game_id)
            self.join(websocket, game_room(game_id))
            if kind == "reconnect":
                self.publish(game_room(game_id), "opponent-reconnected", {"userId": connection.user_id}, exclude=websocket)
        elif kind == "leave-game":
            if connection.game_id:
                self.leave(websocket, game_room(connection.game_id))
            connection.game_id = None
        elif kind == "chat-message":
            if not connection.game_id:
                return
            self.publish(
                game_room(connection.game_id),
                "chat-message",
                {"userId": connection.user_id, "userName": data.get("userName"), "message": data.get("message")},
            )
        elif kind == "typing":
            if not connection.game_id:
                return
            self.publish(
                game_room(connection.game_id),
                "opponent-typing",
                {"userId": connection.user_id, "isTyping": bool(data.get("isTyping"))},
                exclude=websocket,
            )
        else:
            await websocket.send_json({"event": "error", "detail": f"Unknown message type: {kind}"})


hub = NotificationHub()
