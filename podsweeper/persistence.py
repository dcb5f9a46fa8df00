from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
import logging
import os
import threading

try:
    from google.cloud import firestore  # type: ignore
    from google.api_core import exceptions as gexc  # type: ignore
except Exception:  # pragma: no cover
    firestore = None  # type: ignore
    gexc = None  # type: ignore

from .errors import ConflictError, SerializationError
from .game_engine import GameState, from_json, to_json

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = "podsweeper"
DEFAULT_DOCUMENT = "podsweeper-state"
STATE_KEY = "state"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryStore:
    """In-memory store for tests and local dev.

    Holds the serialized document, so nothing handed in or out is ever shared
    with the store's own copy. Each save bumps an integer version.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._data: Optional[str] = None
        self._version = 0

    def load(self) -> Optional[GameState]:
        with self._lock:
            if self._data is None:
                return None
            state = from_json(self._data)
            state.version = self._version
            return state

    def save(self, state: GameState) -> None:
        data = to_json(state)
        with self._lock:
            if state.version is not None and state.version != self._version:
                raise ConflictError(
                    f"game state changed since load (loaded version {state.version}, current {self._version})"
                )
            self._data = data
            self._version += 1
            state.version = self._version
        logger.debug(f"[podsweeper] store saved version={self._version}")

    def delete(self) -> None:
        with self._lock:
            self._data = None
            self._version += 1

    def exists(self) -> bool:
        with self._lock:
            return self._data is not None

    def reset(self) -> None:
        with self._lock:
            self._data = None
            self._version = 0


class FirestoreStore:
    """Firestore-backed store: one document holding the game state as JSON.

    The JSON lives in a single string field because Firestore cannot store
    nested arrays. The snapshot ``update_time`` is the concurrency token.
    Uses FIRESTORE_EMULATOR_HOST if present; otherwise connects to production.
    """

    def __init__(
        self,
        client: Optional[Any] = None,
        collection: str = DEFAULT_COLLECTION,
        document: str = DEFAULT_DOCUMENT,
    ) -> None:
        if gexc is None:
            raise RuntimeError("google-api-core not available")
        if client is not None:
            self.client = client
        else:
            if firestore is None:
                raise RuntimeError("google-cloud-firestore not available")
            self.client = firestore.Client(project=os.environ.get("GOOGLE_CLOUD_PROJECT"))
        self.collection = collection
        self.document = document

    def _ref(self):
        return self.client.collection(self.collection).document(self.document)

    def load(self) -> Optional[GameState]:
        snap = self._ref().get()
        if not snap.exists:
            return None
        data = snap.to_dict() or {}
        if STATE_KEY not in data:
            raise SerializationError(f"document exists but missing '{STATE_KEY}' key")
        state = from_json(data[STATE_KEY])
        state.version = snap.update_time
        return state

    def save(self, state: GameState) -> None:
        doc = {STATE_KEY: to_json(state), "updated_at": _now()}
        ref = self._ref()
        if state.version is None:
            result = ref.set(doc)
        else:
            option = self.client.write_option(last_update_time=state.version)
            try:
                result = ref.update(doc, option=option)
            except (gexc.FailedPrecondition, gexc.NotFound) as e:
                raise ConflictError(f"conflict updating game state (concurrent modification): {e}") from e
        state.version = result.update_time
        logger.debug(f"[podsweeper] store saved document={self.collection}/{self.document}")

    def delete(self) -> None:
        # Firestore deletes are no-ops when the document is missing
        self._ref().delete()

    def exists(self) -> bool:
        return self._ref().get().exists
