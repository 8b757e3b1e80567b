"""diagram-studio - conversational use case diagram generation and editing."""

from .models import (
    NodeKind,
    EdgeKind,
    DependencyKind,
    DiagramType,
    HandleSide,
    HandleDirection,
    Handle,
    Position,
    Viewport,
    DiagramNode,
    DiagramEdge,
    Diagram,
    DiagramPayload,
    MessageRole,
    MessageStatus,
    ConversationMessage,
    Conversation,
    DiagramRecord,
)

from .errors import (
    DiagramStudioError,
    DiagramValidationError,
    ElementReferenceError,
    GenerationError,
    PersistenceError,
    DiagramNotFoundError,
    WorkflowStateError,
)

from .graph import (
    handles_for,
    handle_ids_for,
    validate,
    apply_patch,
    try_apply_patch,
    ValidationResult,
    Violation,
)

from .ids import random_id, SequentialIds

from .editor import DiagramEditor, display_label

from .palette import PALETTE, DropPayload

from .workflow import GenerationWorkflow, WorkflowState

from .persistence import (
    DebouncedWriter,
    InMemoryDiagramStore,
    JsonFileDiagramStore,
    serialize_diagram,
    deserialize_diagram,
)

from .session import DiagramSession

from .config import ModelProvider, EditorSettings, get_model_name, print_config

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # Models
    "NodeKind",
    "EdgeKind",
    "DependencyKind",
    "DiagramType",
    "HandleSide",
    "HandleDirection",
    "Handle",
    "Position",
    "Viewport",
    "DiagramNode",
    "DiagramEdge",
    "Diagram",
    "DiagramPayload",
    "MessageRole",
    "MessageStatus",
    "ConversationMessage",
    "Conversation",
    "DiagramRecord",
    # Errors
    "DiagramStudioError",
    "DiagramValidationError",
    "ElementReferenceError",
    "GenerationError",
    "PersistenceError",
    "DiagramNotFoundError",
    "WorkflowStateError",
    # Graph
    "handles_for",
    "handle_ids_for",
    "validate",
    "apply_patch",
    "try_apply_patch",
    "ValidationResult",
    "Violation",
    # Ids
    "random_id",
    "SequentialIds",
    # Editor
    "DiagramEditor",
    "display_label",
    "PALETTE",
    "DropPayload",
    # Workflow
    "GenerationWorkflow",
    "WorkflowState",
    # Persistence
    "DebouncedWriter",
    "InMemoryDiagramStore",
    "JsonFileDiagramStore",
    "serialize_diagram",
    "deserialize_diagram",
    "DiagramSession",
    # Config
    "ModelProvider",
    "EditorSettings",
    "get_model_name",
    "print_config",
]
