"""
Chat Session

Client-side bookkeeping for a direct conversation:

- polls GET /api/messages/{key}?since=... on a fixed interval
- sends optimistically: a temp-... message shows up at once as pending and
  is swapped for the server's message when the POST returns
- merges polled messages by id, or by sender+content against pending
  messages when a poll beats the POST response
- keeps a JSON cache per conversation and falls back to it when the API
  cannot be reached
"""
import asyncio
import json
import os
import time
import uuid
from datetime import datetime
from typing import Dict, List, Optional

import httpx
from pydantic import BaseModel

from finops_api.client.api import ApiClient, ApiError
from finops_api.utils.logging import get_logger

logger = get_logger(__name__)

POLL_INTERVAL_SECONDS = 3.0
TEMP_ID_PREFIX = "temp-"


def conversation_key(user_a: str, user_b: str) -> str:
    return "_".join(sorted([user_a, user_b]))


class ChatMessage(BaseModel):
    id: str
    conversation_id: Optional[str] = None
    sender_id: str
    content: str
    image_url: Optional[str] = None
    created_at: datetime
    reactions: List[Dict] = []
    read_by: List[str] = []
    pending: bool = False


class ChatSession:
    """One user's view of a conversation with another user."""

    def __init__(
        self,
        api: ApiClient,
        user_id: str,
        other_user_id: str,
        cache_dir: Optional[str] = None,
        poll_interval: float = POLL_INTERVAL_SECONDS
    ):
        self.api = api
        self.user_id = user_id
        self.other_user_id = other_user_id
        self.key = conversation_key(user_id, other_user_id)
        self.cache_dir = cache_dir
        self.poll_interval = poll_interval
        self.offline = False
        self._messages: Dict[str, ChatMessage] = {}
        self._polling_task: Optional[asyncio.Task] = None

    @property
    def messages(self) -> List[ChatMessage]:
        """All known messages, oldest first."""
        return sorted(self._messages.values(), key=lambda m: (m.created_at, m.id))

    @property
    def cache_path(self) -> Optional[str]:
        if not self.cache_dir:
            return None
        return os.path.join(self.cache_dir, f"messages_{self.key}.json")

    def _last_confirmed_at(self) -> Optional[datetime]:
        confirmed = [m.created_at for m in self._messages.values() if not m.pending]
        return max(confirmed) if confirmed else None

    def _merge(self, incoming: List[ChatMessage]) -> List[ChatMessage]:
        """Merge server messages; return the ones not seen before."""
        added = []
        for message in incoming:
            if message.id in self._messages:
                self._messages[message.id] = message
                continue

            pending_match = next(
                (
                    m for m in self._messages.values()
                    if m.pending and m.sender_id == message.sender_id and m.content == message.content
                ),
                None
            )
            if pending_match:
                del self._messages[pending_match.id]
            else:
                added.append(message)
            self._messages[message.id] = message
        return added

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def _save_cache(self) -> None:
        path = self.cache_path
        if not path:
            return
        confirmed = [m.model_dump(mode="json") for m in self.messages if not m.pending]
        try:
            os.makedirs(self.cache_dir, exist_ok=True)
            with open(path, "w") as f:
                json.dump(confirmed, f)
        except OSError as e:
            logger.warning(f"Could not write chat cache {path}: {e}")

    def _load_cache(self) -> List[ChatMessage]:
        path = self.cache_path
        if not path or not os.path.isfile(path):
            return []
        try:
            with open(path) as f:
                return [ChatMessage(**item) for item in json.load(f)]
        except (OSError, ValueError) as e:
            logger.warning(f"Discarding unreadable chat cache {path}: {e}")
            return []

    # ------------------------------------------------------------------
    # API
    # ------------------------------------------------------------------

    async def load(self) -> List[ChatMessage]:
        """Fetch the latest messages, or fall back to the cache when offline."""
        try:
            data = await self.api.get(f"/api/messages/{self.key}")
        except (httpx.TransportError, ApiError) as e:
            if isinstance(e, ApiError) and e.status_code < 500:
                raise
            logger.warning(f"Chat API unavailable, using cached messages for {self.key}: {e}")
            self.offline = True
            self._merge(self._load_cache())
            return self.messages

        self.offline = False
        pending = {k: m for k, m in self._messages.items() if m.pending}
        self._messages = dict(pending)
        self._merge([ChatMessage(**item) for item in data["messages"]])
        self._save_cache()
        return self.messages

    async def poll_once(self) -> List[ChatMessage]:
        """Fetch messages newer than the last confirmed one. Returns the new ones."""
        params = {}
        since = self._last_confirmed_at()
        if since:
            params["since"] = since.isoformat()

        data = await self.api.get(f"/api/messages/{self.key}", params=params)
        self.offline = False
        added = self._merge([ChatMessage(**item) for item in data["messages"]])
        if added or data["messages"]:
            self._save_cache()
        return added

    async def send(self, content: str, image_url: Optional[str] = None) -> ChatMessage:
        """
        Send a message optimistically.

        The pending temp message is removed again if the POST fails, and the
        error is re-raised.
        """
        temp = ChatMessage(
            id=f"{TEMP_ID_PREFIX}{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}",
            sender_id=self.user_id,
            content=content.strip(),
            image_url=image_url,
            created_at=datetime.utcnow(),
            pending=True
        )
        self._messages[temp.id] = temp

        try:
            data = await self.api.post(
                f"/api/messages/{self.key}",
                json={"content": content, "image_url": image_url}
            )
        except (httpx.TransportError, ApiError):
            self._messages.pop(temp.id, None)
            raise

        sent = ChatMessage(**data)
        # A poll may already have swapped the temp message for this one
        self._messages.pop(temp.id, None)
        self._messages[sent.id] = sent
        self._save_cache()
        return sent

    # ------------------------------------------------------------------
    # Polling loop
    # ------------------------------------------------------------------

    async def _poll_forever(self) -> None:
        while True:
            try:
                await self.poll_once()
            except (httpx.TransportError, ApiError) as e:
                self.offline = True
                logger.warning(f"Chat poll failed for {self.key}: {e}")
            await asyncio.sleep(self.poll_interval)

    def start_polling(self) -> asyncio.Task:
        if self._polling_task is None or self._polling_task.done():
            self._polling_task = asyncio.create_task(self._poll_forever())
        return self._polling_task

    async def stop_polling(self) -> None:
        if self._polling_task is None:
            return
        self._polling_task.cancel()
        try:
            await self._polling_task
        except asyncio.CancelledError:
            pass
        self._polling_task = None
