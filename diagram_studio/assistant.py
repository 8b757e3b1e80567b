"""AI collaborator backed by pydantic-ai agents.

Implements the two calls the generation workflow needs: a prose reply
that restates the user's requirements and proposes a structure, and a
structured diagram payload once the user approves.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_ai import Agent, RunContext

from .config import get_model_name
from .errors import GenerationError
from .models import (
    ClarifyingQuestion,
    ConversationMessage,
    DiagramPayload,
    MessageRole,
    MessageStatus,
)
from .prompts import ANALYZER_PROMPT, DIAGRAM_GENERATOR_PROMPT

logger = logging.getLogger(__name__)


class RequirementAnalysis(BaseModel):
    """Understanding of the user's requirements plus a proposed structure."""
    understanding: str
    actors: list[str] = Field(default_factory=list)
    use_cases: list[str] = Field(default_factory=list)
    systems: list[str] = Field(default_factory=list)
    relationships: list[str] = Field(default_factory=list)
    questions: list[ClarifyingQuestion] = Field(default_factory=list)
    ready_to_generate: bool = False

    def to_prose(self) -> str:
        lines = [self.understanding.strip(), "", "Proposed structure:"]
        if self.systems:
            lines.append(f"- System: {', '.join(self.systems)}")
        if self.actors:
            lines.append(f"- Actors: {', '.join(self.actors)}")
        if self.use_cases:
            lines.append(f"- Use cases: {', '.join(self.use_cases)}")
        for relationship in self.relationships:
            lines.append(f"- {relationship}")
        if self.questions:
            lines.extend(["", "Questions:"])
            lines.extend(f"- {q.question}" for q in self.questions)
        lines.append("")
        if self.ready_to_generate:
            lines.append("Approve to generate the diagram, or describe what to change.")
        else:
            lines.append("Tell me more, or approve to generate with these assumptions.")
        return "\n".join(lines)


class DiagramGeneration(BaseModel):
    """Generated diagram payload."""
    payload: DiagramPayload
    explanation: str
    warnings: list[str] = Field(default_factory=list)


@dataclass
class AgentContext:
    """Agent context."""
    conversation_history: list[ConversationMessage] = field(default_factory=list)


_analyzer: Optional[Agent] = None
_generator: Optional[Agent] = None


def _get_history(ctx: RunContext[AgentContext]) -> str:
    if not ctx.deps.conversation_history:
        return "No previous conversation."
    return "\n".join(
        f"{m.role.value}: {m.content}" for m in ctx.deps.conversation_history[-10:]
    )


def get_analyzer() -> Agent:
    global _analyzer
    if _analyzer is None:
        _analyzer = Agent(get_model_name(), output_type=RequirementAnalysis,
                          system_prompt=ANALYZER_PROMPT, deps_type=AgentContext,
                          defer_model_check=True)
        @_analyzer.tool
        async def get_conversation_history(ctx: RunContext[AgentContext]) -> str:
            return _get_history(ctx)
    return _analyzer


def get_generator() -> Agent:
    global _generator
    if _generator is None:
        _generator = Agent(get_model_name(), output_type=DiagramGeneration,
                           system_prompt=DIAGRAM_GENERATOR_PROMPT, deps_type=AgentContext,
                           defer_model_check=True)
        @_generator.tool
        async def get_conversation_history(ctx: RunContext[AgentContext]) -> str:
            return _get_history(ctx)
    return _generator


def _usable_history(messages: list[ConversationMessage]) -> list[ConversationMessage]:
    return [m for m in messages if m.status != MessageStatus.FAILED]


class PydanticAIAssistant:
    """Requirement analysis and diagram generation through LLM agents."""

    def __init__(self):
        self.context = AgentContext()
        self.last_analysis: Optional[RequirementAnalysis] = None
        self.last_generation: Optional[DiagramGeneration] = None

    async def reply(self, messages: list[ConversationMessage]) -> str:
        """Restate the latest requirements and propose a diagram structure."""
        self.context.conversation_history = _usable_history(messages)
        latest = next(
            (m.content for m in reversed(messages) if m.role == MessageRole.USER), ""
        )
        try:
            result = await get_analyzer().run(
                f"Analyze these requirements:\n\n{latest}",
                deps=self.context,
            )
        except Exception as exc:
            raise GenerationError(f"Requirement analysis failed: {exc}") from exc
        self.last_analysis = result.output
        return result.output.to_prose()

    async def generate(self, messages: list[ConversationMessage]) -> DiagramPayload:
        """Produce a diagram payload from the approved conversation."""
        history = _usable_history(messages)
        self.context.conversation_history = history
        transcript = "\n".join(f"{m.role.value}: {m.content}" for m in history)
        try:
            result = await get_generator().run(
                f"Generate the use case diagram the user approved.\n\nCONVERSATION:\n{transcript}",
                deps=self.context,
            )
        except Exception as exc:
            raise GenerationError(f"Diagram generation failed: {exc}") from exc
        self.last_generation = result.output
        for warning in result.output.warnings:
            logger.info("Generator warning: %s", warning)
        return result.output.payload
