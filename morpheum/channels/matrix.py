"""Matrix channel over the client-server HTTP API (httpx)."""

import asyncio
import time
import uuid
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import quote

import httpx
from loguru import logger

from morpheum.config.schema import MatrixConfig
from morpheum.errors import MatrixError

API = "/_matrix/client/v3"

# Delimiters that may follow the bot's name when it is addressed directly
_MENTION_DELIMITERS = (" ", ":", ",", "\t", "\n")

MessageHandler = Callable[[str, str, Callable[[str, Optional[str]], Awaitable[None]], str], Awaitable[Any]]


def _q(value: str) -> str:
    return quote(value, safe="")


class MatrixClient:
    """Minimal async Matrix client: sync, messages, room state, rooms."""

    def __init__(
        self,
        homeserver_url: str,
        access_token: str = "",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.homeserver_url = homeserver_url.rstrip("/")
        self.access_token = access_token
        self.user_id: str | None = None
        self._http = httpx.AsyncClient(
            base_url=self.homeserver_url, timeout=timeout, transport=transport
        )

    async def close(self) -> None:
        await self._http.aclose()

    async def _request(
        self, method: str, path: str, *, auth: bool = True, **kwargs: Any
    ) -> dict[str, Any]:
        headers = kwargs.pop("headers", {})
        if auth and self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        try:
            resp = await self._http.request(method, API + path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise MatrixError(f"Matrix request {method} {path} failed: {e}") from e

        try:
            data = resp.json() if resp.content else {}
        except ValueError:
            data = {}
        if resp.status_code >= 400:
            raise MatrixError(
                f"Matrix {method} {path} returned {resp.status_code}: {data.get('error', resp.text[:200])}",
                status_code=resp.status_code,
                errcode=data.get("errcode", ""),
            )
        return data

    async def login(self, username: str, password: str) -> str:
        """Password login; stores and returns the access token."""
        data = await self._request(
            "POST",
            "/login",
            auth=False,
            json={
                "type": "m.login.password",
                "identifier": {"type": "m.id.user", "user": username},
                "password": password,
                "initial_device_display_name": "morpheum-bot",
            },
        )
        self.access_token = data["access_token"]
        self.user_id = data.get("user_id")
        return self.access_token

    async def whoami(self) -> str:
        if self.user_id is None:
            data = await self._request("GET", "/account/whoami")
            self.user_id = data["user_id"]
        return self.user_id

    async def sync(self, since: str | None = None, timeout_ms: int = 30000) -> dict[str, Any]:
        params: dict[str, Any] = {"timeout": timeout_ms}
        if since:
            params["since"] = since
        return await self._request(
            "GET", "/sync", params=params, timeout=timeout_ms / 1000 + 30
        )

    async def send_message(self, room_id: str, text: str, html: str | None = None) -> str:
        content: dict[str, Any] = {"msgtype": "m.text", "body": text}
        if html:
            content["format"] = "org.matrix.custom.html"
            content["formatted_body"] = html
        txn = uuid.uuid4().hex
        data = await self._request(
            "PUT", f"/rooms/{_q(room_id)}/send/m.room.message/{txn}", json=content
        )
        return data.get("event_id", "")

    async def get_state(self, room_id: str, event_type: str, state_key: str = "") -> dict[str, Any] | None:
        """Content of a state event, or None if the room has none."""
        try:
            return await self._request(
                "GET", f"/rooms/{_q(room_id)}/state/{_q(event_type)}/{_q(state_key)}"
            )
        except MatrixError as e:
            if e.status_code == 404:
                return None
            raise

    async def put_state(
        self, room_id: str, event_type: str, content: dict[str, Any], state_key: str = ""
    ) -> None:
        await self._request(
            "PUT", f"/rooms/{_q(room_id)}/state/{_q(event_type)}/{_q(state_key)}", json=content
        )

    async def create_room(self, options: dict[str, Any]) -> str:
        data = await self._request("POST", "/createRoom", json=options)
        return data["room_id"]

    async def invite(self, room_id: str, user_id: str) -> None:
        await self._request("POST", f"/rooms/{_q(room_id)}/invite", json={"user_id": user_id})

    async def join(self, room_id: str) -> None:
        await self._request("POST", f"/join/{_q(room_id)}", json={})

    async def joined_members(self, room_id: str) -> dict[str, dict[str, Any]]:
        data = await self._request("GET", f"/rooms/{_q(room_id)}/joined_members")
        return data.get("joined", {})


class MatrixRoomStateStore:
    """Room-state store backed by Matrix state events."""

    def __init__(self, client: MatrixClient):
        self.client = client

    async def get(self, room_id: str, key: str) -> dict | None:
        return await self.client.get_state(room_id, key)

    async def set(self, room_id: str, key: str, config: dict) -> None:
        await self.client.put_state(room_id, key, config)


def extract_mention(body: str, names: list[str]) -> str | None:
    """
    Return the text addressed to the bot, or None if it was not addressed.

    ``names`` are the bot's display name, localpart and user id. A bare
    mention maps to ``!help``.
    """
    lower = body.lower()
    for name in (n.lower() for n in names if n):
        if lower == name:
            return "!help"
        if not any(lower.startswith(name + d) for d in _MENTION_DELIMITERS):
            continue
        task = body[len(name):].strip()
        if task.startswith((":", ",")):
            task = task[1:].strip()
        if task:
            return task
    return None


class MatrixChannel:
    """
    Long-polls the homeserver and hands addressed messages to a handler.

    Messages starting with ``!`` or addressed to the bot by name are
    dispatched; everything else in the room is ignored. Invites are joined
    automatically. Replies to one room are sent in order.
    """

    name = "matrix"

    def __init__(self, config: MatrixConfig, client: MatrixClient, handler: MessageHandler):
        self.config = config
        self.client = client
        self.handler = handler
        self._running = False
        self._since: str | None = None
        self._room_locks: dict[str, asyncio.Lock] = {}
        self._tasks: set[asyncio.Task] = set()

    def sender_for(self, room_id: str) -> Callable[[str, Optional[str]], Awaitable[None]]:
        lock = self._room_locks.setdefault(room_id, asyncio.Lock())

        async def send(text: str, html: str | None = None) -> None:
            async with lock:
                await self.client.send_message(room_id, text, html)

        return send

    async def start(self) -> None:
        if not self.client.access_token:
            if not (self.config.username and self.config.password):
                raise MatrixError(
                    "Either ACCESS_TOKEN or both MATRIX_USERNAME and MATRIX_PASSWORD are required"
                )
            await self.client.login(self.config.username, self.config.password)
        user_id = await self.client.whoami()
        logger.info(f"Matrix connected as {user_id}")

        # Skip history: only react to messages that arrive after startup.
        initial = await self.client.sync(timeout_ms=0)
        self._since = initial.get("next_batch")
        await self._join_invites(initial)

        self._running = True
        backoff = 1.0
        while self._running:
            try:
                batch = await self.client.sync(self._since, self.config.sync_timeout_ms)
            except MatrixError as e:
                logger.warning(f"Matrix sync failed: {e}; retrying in {backoff:.0f}s")
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, 60.0)
                continue
            backoff = 1.0
            self._since = batch.get("next_batch", self._since)
            await self._join_invites(batch)
            self._dispatch(batch, user_id)

    async def stop(self) -> None:
        self._running = False
        for task in list(self._tasks):
            task.cancel()
        await self.client.close()

    async def _join_invites(self, batch: dict[str, Any]) -> None:
        for room_id in (batch.get("rooms") or {}).get("invite", {}):
            try:
                await self.client.join(room_id)
                logger.info(f"Joined {room_id} on invite")
            except MatrixError as e:
                logger.warning(f"Could not join {room_id}: {e}")

    def _dispatch(self, batch: dict[str, Any], user_id: str) -> None:
        joined = (batch.get("rooms") or {}).get("join", {})
        for room_id, room in joined.items():
            for event in (room.get("timeline") or {}).get("events", []):
                if event.get("type") != "m.room.message" or event.get("sender") == user_id:
                    continue
                body = (event.get("content") or {}).get("body")
                if not body:
                    continue
                task = asyncio.create_task(self._on_message(room_id, event["sender"], body, user_id))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

    async def _on_message(self, room_id: str, sender: str, body: str, user_id: str) -> None:
        send = self.sender_for(room_id)
        try:
            message = await self._addressed_text(room_id, body, user_id)
            if message is None:
                return
            started = time.monotonic()
            await self.handler(message, sender, send, room_id)
            logger.debug(f"Handled message in {room_id} in {time.monotonic() - started:.1f}s")
        except Exception as e:
            logger.exception(f"Error in room message handler: {e}")

    async def _addressed_text(self, room_id: str, body: str, user_id: str) -> str | None:
        try:
            members = await self.client.joined_members(room_id)
        except MatrixError as e:
            logger.warning(f"Could not list members of {room_id}: {e}")
            members = {}
        display_name = (members.get(user_id) or {}).get("display_name") or ""
        localpart = user_id.split(":", 1)[0].lstrip("@")

        mentioned = extract_mention(body, [display_name, localpart, user_id])
        if mentioned is not None:
            return mentioned
        return body if body.startswith("!") else None
