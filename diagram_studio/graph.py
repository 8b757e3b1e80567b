"""Graph model rules: handle taxonomy, structural validation and patching."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from .errors import DiagramValidationError
from .models import (
    Diagram,
    DiagramEdge,
    DiagramNode,
    EdgeKind,
    Handle,
    HandleDirection,
    HandleSide,
    NodeKind,
    Viewport,
)

logger = logging.getLogger(__name__)


ALL_SIDES = (HandleSide.TOP, HandleSide.BOTTOM, HandleSide.LEFT, HandleSide.RIGHT)

# Sides that carry a source and a target handle, per node kind.
HANDLE_SIDES = {
    NodeKind.ACTOR: ALL_SIDES,
    NodeKind.USE_CASE: ALL_SIDES,
    NodeKind.SYSTEM: (HandleSide.LEFT, HandleSide.RIGHT),
}


def _validate_handle_table():
    """Every NodeKind must have a handle entry. Fails at module load."""
    missing = [kind for kind in NodeKind if kind not in HANDLE_SIDES]
    if missing:
        raise ValueError(
            f"HANDLE_SIDES missing entries for: {[kind.value for kind in missing]}"
        )


_validate_handle_table()


def handles_for(kind: NodeKind) -> frozenset[Handle]:
    """Return the (side, direction) handles exposed by a node kind."""
    return frozenset(
        Handle(side=side, direction=direction)
        for side in HANDLE_SIDES[NodeKind(kind)]
        for direction in HandleDirection
    )


def handle_ids_for(kind: NodeKind, direction: Optional[HandleDirection] = None) -> frozenset[str]:
    """Return handle ids such as ``right-source``, optionally filtered by direction."""
    return frozenset(
        handle.id for handle in handles_for(kind)
        if direction is None or handle.direction == direction
    )


def is_valid_handle(node: DiagramNode, handle_id: str, direction: HandleDirection) -> bool:
    return handle_id in handle_ids_for(node.kind, direction)


@dataclass
class Violation:
    """A single broken invariant."""
    code: str
    message: str
    element_id: str


@dataclass
class ValidationResult:
    is_valid: bool
    errors: list[Violation] = field(default_factory=list)

    @classmethod
    def success(cls) -> "ValidationResult":
        return cls(is_valid=True, errors=[])

    @classmethod
    def failure(cls, errors: list[Violation]) -> "ValidationResult":
        return cls(is_valid=False, errors=errors)

    def __bool__(self) -> bool:
        return self.is_valid


def validate(diagram: Diagram) -> ValidationResult:
    """Check ids, edge references, handles and labels. Never raises."""
    errors: list[Violation] = []

    nodes: dict[str, DiagramNode] = {}
    for node in diagram.nodes:
        if node.id in nodes:
            errors.append(Violation("duplicate_node_id", f"Node id '{node.id}' is used more than once", node.id))
            continue
        nodes[node.id] = node
        if not isinstance(node.label, str) or not node.label.strip() or node.label != node.label.strip():
            errors.append(Violation("empty_label", f"Node '{node.id}' label must be non-empty and trimmed", node.id))

    edge_ids: set[str] = set()
    for edge in diagram.edges:
        if edge.id in edge_ids:
            errors.append(Violation("duplicate_edge_id", f"Edge id '{edge.id}' is used more than once", edge.id))
        edge_ids.add(edge.id)

        source = nodes.get(edge.source_node_id)
        target = nodes.get(edge.target_node_id)
        if source is None:
            errors.append(Violation(
                "dangling_source",
                f"Edge '{edge.id}' references missing source node '{edge.source_node_id}'",
                edge.id,
            ))
        elif not is_valid_handle(source, edge.source_handle_id, HandleDirection.SOURCE):
            errors.append(Violation(
                "invalid_source_handle",
                f"Edge '{edge.id}' uses '{edge.source_handle_id}', not a source handle of {source.kind.value} '{source.id}'",
                edge.id,
            ))
        if target is None:
            errors.append(Violation(
                "dangling_target",
                f"Edge '{edge.id}' references missing target node '{edge.target_node_id}'",
                edge.id,
            ))
        elif not is_valid_handle(target, edge.target_handle_id, HandleDirection.TARGET):
            errors.append(Violation(
                "invalid_target_handle",
                f"Edge '{edge.id}' uses '{edge.target_handle_id}', not a target handle of {target.kind.value} '{target.id}'",
                edge.id,
            ))
        if edge.kind == EdgeKind.ASSOCIATION and edge.dependency_kind is not None:
            errors.append(Violation(
                "dependency_kind_on_association",
                f"Association edge '{edge.id}' must not carry a dependency kind",
                edge.id,
            ))

    return ValidationResult.failure(errors) if errors else ValidationResult.success()


def _merge(existing: list, updates: list) -> list:
    """Upsert by id: replace in place, append unseen ids in order."""
    by_id = {item.id: item for item in updates}
    merged = [by_id.pop(item.id, item) for item in existing]
    merged.extend(item for item in updates if item.id in by_id)
    return merged


def _patched(
    diagram: Diagram,
    nodes: Optional[list[DiagramNode]],
    edges: Optional[list[DiagramEdge]],
    viewport: Optional[Viewport],
    merge: bool,
) -> Diagram:
    update = {}
    if nodes is not None:
        update["nodes"] = _merge(diagram.nodes, nodes) if merge else list(nodes)
    if edges is not None:
        update["edges"] = _merge(diagram.edges, edges) if merge else list(edges)
    if viewport is not None:
        update["viewport"] = viewport
    return diagram.model_copy(update=update)


def try_apply_patch(
    diagram: Diagram,
    nodes: Optional[list[DiagramNode]] = None,
    edges: Optional[list[DiagramEdge]] = None,
    viewport: Optional[Viewport] = None,
    merge: bool = False,
) -> Diagram:
    """Return a patched copy of ``diagram`` or raise DiagramValidationError."""
    candidate = _patched(diagram, nodes, edges, viewport, merge)
    result = validate(candidate)
    if not result.is_valid:
        raise DiagramValidationError(result.errors)
    return candidate


def apply_patch(
    diagram: Diagram,
    nodes: Optional[list[DiagramNode]] = None,
    edges: Optional[list[DiagramEdge]] = None,
    viewport: Optional[Viewport] = None,
    merge: bool = False,
) -> Diagram:
    """Replace (or merge) node/edge collections.

    An invalid result is rejected as a whole and the prior diagram is
    returned unchanged.
    """
    try:
        return try_apply_patch(diagram, nodes, edges, viewport, merge)
    except DiagramValidationError as exc:
        logger.warning("Rejected patch on diagram %s: %s", diagram.id, exc)
        return diagram
