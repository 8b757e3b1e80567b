"""Persistence adapter: diagram stores and the debounced single-flight writer."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional, Protocol

from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import DiagramNotFoundError, PersistenceError
from .models import Conversation, Diagram, DiagramRecord, utc_now

logger = logging.getLogger(__name__)


def serialize_diagram(diagram: Diagram) -> str:
    """Diagram -> camelCase JSON."""
    return diagram.model_dump_json(by_alias=True)


def deserialize_diagram(data: str) -> Diagram:
    return Diagram.model_validate_json(data)


def diagram_to_record(diagram: Diagram, user_id: str, previous: Optional[DiagramRecord] = None) -> DiagramRecord:
    """Wrap a diagram in its storage record, keeping ``createdAt`` from ``previous``."""
    now = utc_now()
    return DiagramRecord(
        id=diagram.id,
        title=diagram.title,
        user_id=user_id,
        content=diagram.model_dump(mode="json", by_alias=True),
        thumbnail=previous.thumbnail if previous else None,
        type=diagram.diagram_type,
        created_at=previous.created_at if previous else now,
        updated_at=now,
    )


def record_to_diagram(record: DiagramRecord) -> Diagram:
    content = dict(record.content)
    content.setdefault("id", record.id)
    content.setdefault("title", record.title)
    content.setdefault("diagramType", record.type.value)
    return Diagram.model_validate(content)


class DiagramStore(Protocol):
    """Durable store scoped to one user."""

    async def save(self, diagram: Diagram) -> None: ...

    async def load(self, diagram_id: str) -> Diagram: ...

    async def save_conversation(self, conversation: Conversation) -> None: ...

    async def load_conversation(self, diagram_id: str) -> Optional[Conversation]: ...


class InMemoryDiagramStore:
    """Dict-backed store, used in tests and for throwaway sessions."""

    def __init__(self, user_id: str = "local"):
        self.user_id = user_id
        self.records: dict[str, DiagramRecord] = {}
        self.conversations: dict[str, Conversation] = {}
        self.save_count = 0

    async def save(self, diagram: Diagram) -> None:
        previous = self.records.get(diagram.id)
        if previous is not None and previous.user_id != self.user_id:
            raise PersistenceError(f"Diagram '{diagram.id}' belongs to another user")
        self.records[diagram.id] = diagram_to_record(diagram, self.user_id, previous)
        self.save_count += 1

    async def load(self, diagram_id: str) -> Diagram:
        record = self.records.get(diagram_id)
        if record is None or record.user_id != self.user_id:
            raise DiagramNotFoundError(diagram_id)
        return record_to_diagram(record)

    async def save_conversation(self, conversation: Conversation) -> None:
        if conversation.diagram_id is None:
            raise PersistenceError("Conversation has no diagram yet")
        self.conversations[conversation.diagram_id] = conversation.model_copy(deep=True)

    async def load_conversation(self, diagram_id: str) -> Optional[Conversation]:
        await self.load(diagram_id)
        conversation = self.conversations.get(diagram_id)
        return conversation.model_copy(deep=True) if conversation else None


class JsonFileDiagramStore:
    """One JSON record per diagram under ``root/<user_id>/``."""

    def __init__(self, root: str | Path, user_id: str = "local"):
        self.root = Path(root)
        self.user_id = user_id

    @property
    def user_dir(self) -> Path:
        return self.root / self.user_id

    def _record_path(self, diagram_id: str) -> Path:
        return self.user_dir / f"{diagram_id}.json"

    def _conversation_path(self, diagram_id: str) -> Path:
        return self.user_dir / f"{diagram_id}.messages.json"

    def _read_record(self, diagram_id: str) -> Optional[DiagramRecord]:
        path = self._record_path(diagram_id)
        if not path.exists():
            return None
        try:
            return DiagramRecord.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            raise PersistenceError(f"Could not read diagram '{diagram_id}': {exc}") from exc

    def _write_atomic(self, path: Path, data: str):
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(data, encoding="utf-8")
            tmp_path.replace(path)
        except OSError as exc:
            raise PersistenceError(f"Could not write {path.name}: {exc}") from exc

    def _read_conversation(self, diagram_id: str) -> Optional[Conversation]:
        path = self._conversation_path(diagram_id)
        if not path.exists():
            return None
        try:
            return Conversation.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            raise PersistenceError(f"Could not read messages of '{diagram_id}': {exc}") from exc

    # File I/O runs in worker threads, never on the event loop.
    async def save(self, diagram: Diagram) -> None:
        previous = await asyncio.to_thread(self._read_record, diagram.id)
        record = diagram_to_record(diagram, self.user_id, previous)
        await asyncio.to_thread(
            self._write_atomic,
            self._record_path(diagram.id),
            record.model_dump_json(by_alias=True, indent=2),
        )

    async def load(self, diagram_id: str) -> Diagram:
        record = await asyncio.to_thread(self._read_record, diagram_id)
        if record is None or record.user_id != self.user_id:
            raise DiagramNotFoundError(diagram_id)
        return record_to_diagram(record)

    async def save_conversation(self, conversation: Conversation) -> None:
        if conversation.diagram_id is None:
            raise PersistenceError("Conversation has no diagram yet")
        await asyncio.to_thread(
            self._write_atomic,
            self._conversation_path(conversation.diagram_id),
            conversation.model_dump_json(by_alias=True, indent=2),
        )

    async def load_conversation(self, diagram_id: str) -> Optional[Conversation]:
        await self.load(diagram_id)
        return await asyncio.to_thread(self._read_conversation, diagram_id)

    def list_diagrams(self) -> list[str]:
        if not self.user_dir.exists():
            return []
        return sorted(
            p.stem for p in self.user_dir.glob("*.json")
            if not p.name.endswith(".messages.json")
        )


class DebouncedWriter:
    """Coalesces rapid saves into one write carrying the latest state.

    Holds at most one debounced state, one queued state and one in-flight
    write. A state that arrives while a write is running is queued behind
    it, never dropped, so once writes quiesce the store holds the most
    recent edit. Must be used from within a running event loop.
    """

    def __init__(
        self,
        store: DiagramStore,
        delay: float = 1.0,
        max_attempts: int = 3,
        backoff: float = 0.5,
        backoff_max: float = 10.0,
    ):
        self.store = store
        self.delay = delay
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.backoff_max = backoff_max
        self.unsaved_changes = False
        self.last_error: Optional[PersistenceError] = None
        self.writes = 0
        self._pending: Optional[Diagram] = None
        self._queued: Optional[Diagram] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._in_flight: Optional[asyncio.Task] = None

    @property
    def busy(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    def schedule(self, diagram: Diagram):
        """Record the latest state and (re)start the debounce window."""
        self._pending = diagram
        self.unsaved_changes = True
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().call_later(self.delay, self._release)

    def _release(self):
        self._timer = None
        if self._pending is None:
            return
        self._queued, self._pending = self._pending, None
        if not self.busy:
            self._in_flight = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self):
        while self._queued is not None:
            diagram, self._queued = self._queued, None
            await self._write(diagram)
        if self._pending is None and self.last_error is None:
            self.unsaved_changes = False

    async def _write(self, diagram: Diagram):
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=self.backoff, max=self.backoff_max),
                retry=retry_if_exception_type((PersistenceError, OSError)),
                before_sleep=lambda state: logger.warning(
                    "Saving diagram %s failed, retry %d/%d",
                    diagram.id, state.attempt_number, self.max_attempts,
                ),
            ):
                with attempt:
                    await self.store.save(diagram)
        except RetryError as exc:
            self._give_up(diagram, exc.last_attempt.exception())
            return
        except Exception as exc:
            logger.exception("Store raised while saving diagram %s", diagram.id)
            self._give_up(diagram, exc)
            return
        self.writes += 1
        self.last_error = None
        logger.debug("Saved diagram %s (%d nodes, %d edges)", diagram.id, len(diagram.nodes), len(diagram.edges))

    def _give_up(self, diagram: Diagram, error: BaseException):
        self.last_error = error if isinstance(error, PersistenceError) else PersistenceError(str(error))
        self.unsaved_changes = True
        logger.error("Giving up saving diagram %s: %s", diagram.id, self.last_error)

    async def flush(self) -> bool:
        """Write the latest state now. Returns True when nothing is left unsaved."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._pending is not None:
            self._queued, self._pending = self._pending, None
        if self._queued is not None and not self.busy:
            self._in_flight = asyncio.get_running_loop().create_task(self._drain())
        while self.busy:
            await asyncio.shield(self._in_flight)
        return not self.unsaved_changes

    async def close(self) -> bool:
        """Flush the latest state, then stop accepting timer callbacks."""
        saved = await self.flush()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        return saved


def dump_json(diagram: Diagram) -> str:
    """Pretty JSON for display."""
    return json.dumps(diagram.model_dump(mode="json", by_alias=True), indent=2, ensure_ascii=False)
