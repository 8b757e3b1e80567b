"""Error taxonomy for diagram editing, generation and persistence."""

from typing import Optional


class DiagramStudioError(Exception):
    """Base class for all diagram-studio errors."""


class DiagramValidationError(DiagramStudioError):
    """A diagram, patch or payload breaks one or more graph invariants."""

    def __init__(self, violations: list, message: Optional[str] = None):
        self.violations = list(violations)
        if message is None:
            details = "; ".join(v.message for v in self.violations) or "unknown violation"
            message = f"Diagram failed validation: {details}"
        super().__init__(message)


class ElementReferenceError(DiagramStudioError):
    """An operation names a node or edge id that does not exist."""

    def __init__(self, element_id: str):
        self.element_id = element_id
        super().__init__(f"No node or edge with id '{element_id}'")


class GenerationError(DiagramStudioError):
    """The AI collaborator failed, timed out or returned nothing usable."""


class PersistenceError(DiagramStudioError):
    """A storage read or write failed."""


class DiagramNotFoundError(PersistenceError):
    """The requested diagram does not exist for the current user."""

    def __init__(self, diagram_id: str):
        self.diagram_id = diagram_id
        super().__init__(f"Diagram '{diagram_id}' not found")


class WorkflowStateError(DiagramStudioError):
    """A workflow action was requested in a state that does not allow it."""
