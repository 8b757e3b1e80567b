"""Pydantic models for diagrams, conversations and stored records."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model exchanging camelCase JSON while keeping snake_case attributes."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NodeKind(str, Enum):
    """Supported node kinds."""
    ACTOR = "actor"
    USE_CASE = "usecase"
    SYSTEM = "system"


class EdgeKind(str, Enum):
    """Supported edge kinds."""
    ASSOCIATION = "association"
    DEPENDENCY = "dependency"


class DependencyKind(str, Enum):
    """UML relationship carried by a dependency edge."""
    INCLUDE = "include"
    EXTEND = "extend"


class DiagramType(str, Enum):
    """Diagram families known to the store. Only USE_CASE is editable."""
    USE_CASE = "USE_CASE"
    SEQUENCE = "SEQUENCE"
    CLASS = "CLASS"
    ACTIVITY = "ACTIVITY"
    ERD = "ERD"


class HandleSide(str, Enum):
    TOP = "top"
    BOTTOM = "bottom"
    LEFT = "left"
    RIGHT = "right"


class HandleDirection(str, Enum):
    SOURCE = "source"
    TARGET = "target"


class Handle(CamelModel):
    """A sided connection point on a node."""
    model_config = ConfigDict(frozen=True)

    side: HandleSide
    direction: HandleDirection

    @property
    def id(self) -> str:
        return f"{self.side.value}-{self.direction.value}"


class Position(CamelModel):
    x: float = 0.0
    y: float = 0.0


class Viewport(CamelModel):
    x: float = 0.0
    y: float = 0.0
    zoom: float = Field(default=1.0, gt=0.0)


class DiagramNode(CamelModel):
    """A placed diagram element."""
    id: str = Field(..., min_length=1, description="Unique node identifier")
    kind: NodeKind = Field(..., description="Actor, use case or system boundary")
    label: str = Field(..., description="Display label")
    position: Position = Field(default_factory=Position)

    @field_validator("label")
    @classmethod
    def _strip_label(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("label must not be empty")
        return value


class DiagramEdge(CamelModel):
    """A directed connection between two node handles."""
    id: str = Field(..., min_length=1, description="Unique edge identifier")
    kind: EdgeKind = EdgeKind.ASSOCIATION
    source_node_id: str
    target_node_id: str
    source_handle_id: str
    target_handle_id: str
    label: Optional[str] = None
    dependency_kind: Optional[DependencyKind] = None

    @field_validator("label")
    @classmethod
    def _strip_label(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None

    @model_validator(mode="after")
    def _default_dependency_kind(self) -> "DiagramEdge":
        if self.kind == EdgeKind.DEPENDENCY and self.dependency_kind is None:
            self.dependency_kind = DependencyKind.INCLUDE
        return self


class Diagram(CamelModel):
    """Complete diagram: ordered nodes and edges plus the viewport."""
    id: str
    title: str = "Untitled Diagram"
    diagram_type: DiagramType = DiagramType.USE_CASE
    nodes: list[DiagramNode] = Field(default_factory=list)
    edges: list[DiagramEdge] = Field(default_factory=list)
    viewport: Viewport = Field(default_factory=Viewport)

    def get_node(self, node_id: str) -> Optional[DiagramNode]:
        return next((n for n in self.nodes if n.id == node_id), None)

    def get_edge(self, edge_id: str) -> Optional[DiagramEdge]:
        return next((e for e in self.edges if e.id == edge_id), None)


class DiagramPayload(CamelModel):
    """Structured graph produced by the AI collaborator."""
    title: Optional[str] = None
    nodes: list[DiagramNode] = Field(default_factory=list)
    edges: list[DiagramEdge] = Field(default_factory=list)
    viewport: Optional[Viewport] = None


class MessageRole(str, Enum):
    USER = "USER"
    ASSISTANT = "ASSISTANT"


class MessageStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ClarifyingQuestion(BaseModel):
    """A question to ask for clarification."""
    question: str
    context: str
    options: Optional[list[str]] = None
    default: Optional[str] = None


class ConversationMessage(CamelModel):
    """A message in the conversation."""
    id: str
    role: MessageRole
    content: str
    status: MessageStatus = MessageStatus.COMPLETED
    created_at: datetime = Field(default_factory=utc_now)


class Conversation(CamelModel):
    """Ordered message history that drives diagram generation."""
    id: str
    diagram_id: Optional[str] = None
    messages: list[ConversationMessage] = Field(default_factory=list)


class DiagramRecord(CamelModel):
    """Durable storage shape of a diagram."""
    id: str
    title: str = "Untitled Diagram"
    user_id: str
    content: dict[str, Any] = Field(default_factory=dict)
    thumbnail: Optional[str] = None
    type: DiagramType = DiagramType.USE_CASE
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
