"""HTTP clients for the tweetchat endpoints.

Both clients wrap an ``httpx.Client`` that already carries the session's
bearer token; the server derives the user id from it, so no call here takes
a user id.

    http = connect("http://127.0.0.1:8000", token="dev-token")
    store = ChatStoreClient(http)
    ids = store.list_ids()
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional

import httpx

from .errors import ClientError, RecordFormatError
from .llm import PromptSpec
from .records import ChatRecord

logger = logging.getLogger(__name__)

UA = "tweetchat-client/0.1"


def connect(base_url: str, token: str, **kwargs: Any) -> httpx.Client:
    """Build an ``httpx.Client`` bound to ``base_url`` and a bearer token."""
    headers = {"Authorization": f"Bearer {token}", "User-Agent": UA}
    return httpx.Client(base_url=base_url, headers=headers, **kwargs)


def _error_text(r: httpx.Response) -> str:
    try:
        body = r.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"HTTP {r.status_code}"


class ChatStoreClient:
    """Save, fetch and enumerate the session user's chats via ``/api/chat``."""

    def __init__(self, http: httpx.Client, path: str = "/api/chat") -> None:
        self._http = http
        self.path = path

    def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            r = self._http.post(self.path, json=payload)
        except httpx.HTTPError as e:
            raise ClientError(f"Chat request failed: {e}") from e
        if r.is_error:
            raise ClientError(_error_text(r), status_code=r.status_code)
        return r.json()

    def save(self, chat_id: str, record: ChatRecord) -> None:
        self._post({"action": "save", "chatId": chat_id, "chatData": record.to_wire()})

    def load(self, chat_id: str) -> Optional[ChatRecord]:
        data = self._post({"action": "get", "chatId": chat_id}).get("data")
        if data is None:
            return None
        try:
            return ChatRecord.model_validate(data)
        except ValueError as e:
            raise RecordFormatError(f"Malformed chat record from server: {e}") from e

    def list_ids(self) -> List[str]:
        return list(self._post({"action": "list"}).get("chatIds") or [])


class GenerationClient:
    """Stream generated tweet text from ``/api/generate``."""

    def __init__(self, http: httpx.Client, path: str = "/api/generate") -> None:
        self._http = http
        self.path = path

    @staticmethod
    def payload(spec: PromptSpec) -> Dict[str, Any]:
        return {
            "prompt": spec.prompt,
            "tone": spec.tone.value if spec.tone else None,
            "goal": spec.goal.value if spec.goal else None,
            "audience": spec.audience.value if spec.audience else None,
            "conversationHistory": [m.model_dump() for m in spec.conversation_history],
        }

    def stream(self, spec: PromptSpec) -> Iterator[str]:
        """Yield decoded text fragments as they arrive.

        Raises ClientError on a non-2xx status or when the body is cut off;
        fragments yielded before the cut are not retracted.
        """
        try:
            with self._http.stream("POST", self.path, json=self.payload(spec)) as r:
                if r.is_error:
                    r.read()
                    raise ClientError(_error_text(r), status_code=r.status_code)
                for text in r.iter_text():
                    if text:
                        yield text
        except httpx.HTTPError as e:
            logger.warning("Generation stream interrupted: %s", e)
            raise ClientError(f"Generation stream interrupted: {e}") from e
