"""Conversation-to-diagram generation workflow.

States move ``DRAFTING -> CONFIRMING -> GENERATING -> EDITING``; ``FAILED``
is entered from ``GENERATING`` when the collaborator errors, times out or
returns a payload that does not validate. ``approve()`` leaves
``CONFIRMING`` for ``GENERATING`` before the request is sent, so a request
failing right after approval also lands in ``FAILED`` by way of
``GENERATING``. A failed reply while drafting keeps the workflow in
``DRAFTING`` with both messages marked failed. The conversation history is
append-only: the only in-place change is the status of the pending user
message once its reply arrives.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Optional, Protocol, Union

from .errors import GenerationError, WorkflowStateError
from .graph import validate
from .ids import IdGenerator, random_id
from .models import (
    Conversation,
    ConversationMessage,
    Diagram,
    DiagramPayload,
    MessageRole,
    MessageStatus,
    Viewport,
)

logger = logging.getLogger(__name__)


class WorkflowState(str, Enum):
    DRAFTING = "drafting"
    CONFIRMING = "confirming"
    GENERATING = "generating"
    EDITING = "editing"
    FAILED = "failed"


class DiagramAssistant(Protocol):
    """Contract of the external AI collaborator."""

    async def reply(self, messages: list[ConversationMessage]) -> str: ...

    async def generate(self, messages: list[ConversationMessage]) -> Union[DiagramPayload, dict, str]: ...


def parse_payload(response: Any) -> DiagramPayload:
    """Accept a payload model, a dict or a JSON string. Raises ValueError."""
    if isinstance(response, DiagramPayload):
        return response
    if isinstance(response, (str, bytes)):
        return DiagramPayload.model_validate_json(response)
    if isinstance(response, dict):
        return DiagramPayload.model_validate(response)
    raise ValueError(f"Unsupported payload type {type(response).__name__}")


def _summarize(exc: Exception, limit: int = 3) -> str:
    errors = getattr(exc, "errors", None)
    if callable(errors):
        details = [
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
            for err in errors()[:limit]
        ]
        return "; ".join(details)
    return str(exc)


class GenerationWorkflow:
    """Drives one conversation from free text to an editable diagram."""

    def __init__(
        self,
        assistant: DiagramAssistant,
        conversation: Optional[Conversation] = None,
        diagram: Optional[Diagram] = None,
        id_generator: Optional[IdGenerator] = None,
        timeout: float = 120.0,
    ):
        self.assistant = assistant
        self._ids = id_generator or random_id
        self.conversation = conversation or Conversation(id=self._ids("conversation"))
        self.diagram = diagram
        self.timeout = timeout
        self.state = WorkflowState.EDITING if diagram is not None else WorkflowState.DRAFTING
        self.last_error: Optional[str] = None
        self._approved_context: Optional[list[ConversationMessage]] = None
        self._request_token = 0
        self._listeners: list[Callable[[Diagram], None]] = []
        if diagram is not None:
            self.conversation.diagram_id = diagram.id

    @property
    def messages(self) -> list[ConversationMessage]:
        return self.conversation.messages

    def on_diagram(self, listener: Callable[[Diagram], None]):
        """Call ``listener`` with every diagram the workflow accepts."""
        self._listeners.append(listener)

    def _append(self, role: MessageRole, content: str, status: MessageStatus) -> ConversationMessage:
        message = ConversationMessage(
            id=self._ids("message"), role=role, content=content, status=status
        )
        self.conversation.messages.append(message)
        return message

    def _require(self, *states: WorkflowState):
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise WorkflowStateError(f"Not allowed while {self.state.value} (needs {allowed})")

    # ------------------------------------------------------------------
    # Drafting and confirmation
    # ------------------------------------------------------------------

    async def submit(self, text: str) -> ConversationMessage:
        """Send a requirement message and wait for the assistant's reply."""
        self._require(WorkflowState.DRAFTING)
        text = text.strip()
        if not text:
            raise ValueError("Message must not be empty")

        user_message = self._append(MessageRole.USER, text, MessageStatus.PENDING)
        try:
            reply = await asyncio.wait_for(
                self.assistant.reply(list(self.conversation.messages)), self.timeout
            )
        except (GenerationError, asyncio.TimeoutError) as exc:
            reason = str(exc) or "the assistant did not answer in time"
            logger.warning("Reply to message %s failed: %s", user_message.id, reason)
            return self._reject_reply(user_message, reason)
        except Exception as exc:
            logger.exception("Reply to message %s raised", user_message.id)
            return self._reject_reply(user_message, f"{type(exc).__name__}: {exc}")

        user_message.status = MessageStatus.COMPLETED
        reply_message = self._append(MessageRole.ASSISTANT, reply, MessageStatus.COMPLETED)
        self.state = WorkflowState.CONFIRMING
        return reply_message

    def _reject_reply(self, user_message: ConversationMessage, reason: str) -> ConversationMessage:
        user_message.status = MessageStatus.FAILED
        return self._append(
            MessageRole.ASSISTANT,
            f"Sorry, I could not process that message: {reason}",
            MessageStatus.FAILED,
        )

    async def request_revision(self, text: str) -> ConversationMessage:
        """Reject the proposal and start another drafting round."""
        self._require(WorkflowState.CONFIRMING)
        if not text.strip():
            raise ValueError("Message must not be empty")
        self.state = WorkflowState.DRAFTING
        return await self.submit(text)

    async def approve(self) -> WorkflowState:
        """Accept the proposal and request a diagram."""
        if self.state == WorkflowState.GENERATING:
            logger.info("Generation already in flight; approval ignored")
            return self.state
        self._require(WorkflowState.CONFIRMING)
        self._approved_context = [
            m.model_copy() for m in self.conversation.messages if m.status != MessageStatus.FAILED
        ]
        return await self._generate()

    async def retry(self) -> WorkflowState:
        """Re-run generation with the last approved context."""
        if self.state == WorkflowState.GENERATING:
            logger.info("Generation already in flight; retry ignored")
            return self.state
        self._require(WorkflowState.FAILED)
        if self._approved_context is None:
            raise WorkflowStateError("Nothing has been approved yet")
        return await self._generate()

    def abandon(self):
        """Forget the in-flight request; its result will be ignored."""
        self._request_token += 1
        if self.state == WorkflowState.GENERATING:
            self.state = WorkflowState.FAILED
            self.last_error = "generation abandoned"
            logger.info("Abandoned in-flight generation for conversation %s", self.conversation.id)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def _generate(self) -> WorkflowState:
        self.state = WorkflowState.GENERATING
        self.last_error = None
        self._request_token += 1
        token = self._request_token
        if self.conversation.diagram_id is None:
            self.conversation.diagram_id = self.diagram.id if self.diagram else self._ids("diagram")
        logger.info("Requesting diagram %s (request %d)", self.conversation.diagram_id, token)

        try:
            response = await asyncio.wait_for(
                self.assistant.generate(list(self._approved_context)), self.timeout
            )
        except asyncio.TimeoutError:
            return self._fail(token, f"the assistant did not answer within {self.timeout:g}s")
        except GenerationError as exc:
            return self._fail(token, str(exc))
        except Exception as exc:
            logger.exception("Diagram request %d raised", token)
            return self._fail(token, f"{type(exc).__name__}: {exc}")
        return self._accept(token, response)

    def _is_current(self, token: int) -> bool:
        return token == self._request_token and self.state == WorkflowState.GENERATING

    def _accept(self, token: int, response: Any) -> WorkflowState:
        if not self._is_current(token):
            logger.info("Discarding stale generation result (request %d)", token)
            return self.state

        try:
            payload = parse_payload(response)
        except ValueError as exc:
            return self._fail(token, f"the response is not a valid diagram ({_summarize(exc)})")

        diagram = Diagram(
            id=self.conversation.diagram_id,
            title=payload.title or (self.diagram.title if self.diagram else "Untitled Diagram"),
            nodes=payload.nodes,
            edges=payload.edges,
            viewport=payload.viewport or Viewport(),
        )
        result = validate(diagram)
        if not result.is_valid:
            details = "; ".join(v.message for v in result.errors[:3])
            return self._fail(token, f"the generated diagram is inconsistent ({details})")

        self.diagram = diagram
        self.state = WorkflowState.EDITING
        self._append(
            MessageRole.ASSISTANT,
            f"Generated '{diagram.title}' with {len(diagram.nodes)} nodes and {len(diagram.edges)} edges.",
            MessageStatus.COMPLETED,
        )
        logger.info("Accepted diagram %s (%d nodes, %d edges)", diagram.id, len(diagram.nodes), len(diagram.edges))
        for listener in list(self._listeners):
            listener(diagram)
        return self.state

    def _fail(self, token: int, reason: str) -> WorkflowState:
        if not self._is_current(token):
            logger.info("Ignoring failure of stale request %d: %s", token, reason)
            return self.state
        self.state = WorkflowState.FAILED
        self.last_error = reason
        logger.warning("Generation failed: %s", reason)
        self._append(
            MessageRole.ASSISTANT,
            f"Diagram generation failed: {reason}. You can retry.",
            MessageStatus.FAILED,
        )
        return self.state
