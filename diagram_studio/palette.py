"""Shape palette and the drag-and-drop payload it hands to the canvas."""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from .models import EdgeKind, NodeKind

logger = logging.getLogger(__name__)


class ShapeCategory(str, Enum):
    NODES = "nodes"
    EDGES = "edges"


@dataclass(frozen=True)
class PaletteShape:
    """A draggable palette entry."""
    type: str
    label: str
    description: str
    category: ShapeCategory
    default_data: dict[str, Any] = field(default_factory=dict)


NODE_SHAPES = [
    PaletteShape("actor", "Actor", "Person or system that interacts",
                 ShapeCategory.NODES, {"label": "Actor"}),
    PaletteShape("usecase", "Use Case", "System functionality or action",
                 ShapeCategory.NODES, {"label": "Use Case"}),
    PaletteShape("system", "System", "System boundary container",
                 ShapeCategory.NODES, {"label": "System"}),
]

CONNECTION_SHAPES = [
    PaletteShape("association", "Association", "Solid line connection", ShapeCategory.EDGES),
    PaletteShape("dependency", "Dependency", "Dashed line (include/extend)", ShapeCategory.EDGES),
]

PALETTE = NODE_SHAPES + CONNECTION_SHAPES


def default_label(kind: NodeKind) -> str:
    """Label a freshly dropped node gets when nothing else is given."""
    for shape in NODE_SHAPES:
        if shape.type == NodeKind(kind).value:
            return shape.default_data["label"]
    return NodeKind(kind).value.capitalize()


@dataclass
class DropPayload:
    """Type tag plus initial-data JSON blob, as set on drag start."""
    type: str
    data: str = "{}"

    @classmethod
    def for_shape(cls, shape: PaletteShape) -> "DropPayload":
        return cls(type=shape.type, data=json.dumps(shape.default_data))

    @property
    def node_kind(self) -> Optional[NodeKind]:
        try:
            return NodeKind(self.type)
        except ValueError:
            return None

    @property
    def edge_kind(self) -> Optional[EdgeKind]:
        try:
            return EdgeKind(self.type)
        except ValueError:
            return None

    def initial_data(self) -> dict[str, Any]:
        """Parsed blob layered over ``{"label": <Type>}``; bad JSON keeps the fallback."""
        data: dict[str, Any] = {"label": self.type[:1].upper() + self.type[1:]}
        try:
            parsed = json.loads(self.data) if self.data else {}
        except json.JSONDecodeError:
            logger.debug("Ignoring unparsable drop data for %s: %r", self.type, self.data)
            return data
        if isinstance(parsed, dict):
            data.update(parsed)
        return data
