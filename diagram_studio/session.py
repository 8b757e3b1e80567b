"""One editing session: workflow, editor and autosave for a single diagram."""

import logging
from typing import Optional

from .config import EditorSettings
from .editor import DiagramEditor
from .errors import PersistenceError
from .ids import IdGenerator, random_id
from .models import Conversation, Diagram
from .persistence import DebouncedWriter, DiagramStore
from .workflow import DiagramAssistant, GenerationWorkflow, WorkflowState

logger = logging.getLogger(__name__)


class DiagramSession:
    """Wires generation, interactive editing and persistence together.

    The editor exists once the workflow has produced (or the store has
    loaded) a diagram; from then on every committed edit is handed to the
    debounced writer.
    """

    def __init__(
        self,
        workflow: GenerationWorkflow,
        store: DiagramStore,
        settings: Optional[EditorSettings] = None,
        writer: Optional[DebouncedWriter] = None,
        id_generator: Optional[IdGenerator] = None,
    ):
        self.settings = settings or EditorSettings()
        self.workflow = workflow
        self.store = store
        self.writer = writer or DebouncedWriter(
            store,
            delay=self.settings.save_debounce,
            max_attempts=self.settings.save_attempts,
            backoff=self.settings.save_backoff,
        )
        self._ids = id_generator or random_id
        self.editor: Optional[DiagramEditor] = None
        if workflow.diagram is not None:
            self._create_editor(workflow.diagram)
        workflow.on_diagram(self._on_generated)

    @classmethod
    def start(
        cls,
        assistant: DiagramAssistant,
        store: DiagramStore,
        settings: Optional[EditorSettings] = None,
        id_generator: Optional[IdGenerator] = None,
    ) -> "DiagramSession":
        """Begin a fresh conversation."""
        settings = settings or EditorSettings()
        workflow = GenerationWorkflow(
            assistant, id_generator=id_generator, timeout=settings.generation_timeout
        )
        return cls(workflow, store, settings=settings, id_generator=id_generator)

    @classmethod
    async def open_existing(
        cls,
        diagram_id: str,
        assistant: DiagramAssistant,
        store: DiagramStore,
        settings: Optional[EditorSettings] = None,
        id_generator: Optional[IdGenerator] = None,
    ) -> "DiagramSession":
        """Resume a stored diagram straight into editing.

        Raises DiagramNotFoundError when the diagram is missing or owned
        by another user.
        """
        settings = settings or EditorSettings()
        ids = id_generator or random_id
        diagram = await store.load(diagram_id)
        conversation = await store.load_conversation(diagram_id)
        if conversation is None:
            conversation = Conversation(id=ids("conversation"), diagram_id=diagram_id)
        workflow = GenerationWorkflow(
            assistant,
            conversation=conversation,
            diagram=diagram,
            id_generator=ids,
            timeout=settings.generation_timeout,
        )
        return cls(workflow, store, settings=settings, id_generator=ids)

    @property
    def state(self) -> WorkflowState:
        return self.workflow.state

    @property
    def diagram(self) -> Optional[Diagram]:
        return self.editor.diagram if self.editor is not None else self.workflow.diagram

    @property
    def unsaved_changes(self) -> bool:
        return self.writer.unsaved_changes

    def _create_editor(self, diagram: Diagram):
        self.editor = DiagramEditor(
            diagram=diagram,
            id_generator=self._ids,
            snap_grid=self.settings.snap_grid or None,
        )
        self.editor.subscribe(self.writer.schedule)

    def _on_generated(self, diagram: Diagram):
        if self.editor is None:
            self._create_editor(diagram)
            self.writer.schedule(diagram)
        else:
            self.editor.load(diagram)

    async def _save_conversation(self):
        if self.workflow.conversation.diagram_id is None or self.editor is None:
            return
        try:
            await self.store.save_conversation(self.workflow.conversation)
        except PersistenceError as exc:
            logger.error("Could not save conversation %s: %s", self.workflow.conversation.id, exc)

    async def save(self) -> bool:
        """Write the latest diagram and conversation now."""
        saved = await self.writer.flush()
        await self._save_conversation()
        return saved

    async def close(self) -> bool:
        """Navigate away: flush pending edits, drop timers, abandon generation."""
        self.workflow.abandon()
        saved = await self.writer.close()
        await self._save_conversation()
        if not saved:
            logger.warning("Closing diagram %s with unsaved changes", self.workflow.conversation.diagram_id)
        return saved
