"""Editing engine: atomic, invariant-preserving operations on one diagram.

Every operation builds a candidate diagram, checks it with
:func:`diagram_studio.graph.validate` and only then swaps it in, so a
rejected operation leaves the working diagram exactly as it was. Missing
ids never raise; they are logged and the operation is a no-op.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from .errors import ElementReferenceError
from .graph import is_valid_handle, validate
from .ids import IdGenerator, random_id
from .models import (
    DependencyKind,
    Diagram,
    DiagramEdge,
    DiagramNode,
    EdgeKind,
    HandleDirection,
    NodeKind,
    Position,
    Viewport,
)
from .palette import DropPayload, default_label

logger = logging.getLogger(__name__)

ChangeListener = Callable[[Diagram], None]


def display_label(edge: DiagramEdge) -> Optional[str]:
    """Text shown on an edge; dependency kinds render as ``«include»``.

    Presentation only: the synthesised text is never stored as the label.
    """
    if edge.label:
        return edge.label
    if edge.kind == EdgeKind.DEPENDENCY and edge.dependency_kind is not None:
        return f"«{edge.dependency_kind.value}»"
    return None


def describe_selection(node_count: int, edge_count: int) -> str:
    """Toolbar text such as ``2 nodes, 1 edge selected``."""
    parts = []
    if node_count:
        parts.append(f"{node_count} node{'s' if node_count > 1 else ''}")
    if edge_count:
        parts.append(f"{edge_count} edge{'s' if edge_count > 1 else ''}")
    if not parts:
        return "Nothing selected"
    return ", ".join(parts) + " selected"


@dataclass
class LabelEdit:
    """An in-progress inline label edit."""
    element_id: str
    original: str
    text: str


class DiagramEditor:
    """Interactive editor over a single diagram."""

    def __init__(
        self,
        diagram: Optional[Diagram] = None,
        id_generator: Optional[IdGenerator] = None,
        snap_grid: Optional[float] = None,
    ):
        self._ids = id_generator or random_id
        self._diagram = diagram if diagram is not None else Diagram(id=self._ids("diagram"))
        self.snap_grid = snap_grid or None
        self.connection_kind = EdgeKind.ASSOCIATION
        self._listeners: list[ChangeListener] = []
        self._edit: Optional[LabelEdit] = None

    @property
    def diagram(self) -> Diagram:
        return self._diagram

    @property
    def editing(self) -> Optional[LabelEdit]:
        return self._edit

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it.

        Listeners run after the change is committed. An exception raised by
        one is logged and does not reach the caller of the operation.
        """
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _commit(self, candidate: Diagram, action: str) -> bool:
        result = validate(candidate)
        if not result.is_valid:
            logger.warning(
                "Rejected %s on diagram %s: %s",
                action, candidate.id, "; ".join(v.message for v in result.errors),
            )
            return False
        self._diagram = candidate
        logger.debug("Applied %s on diagram %s", action, candidate.id)
        # The change is already committed; a failing listener must not undo that
        for listener in list(self._listeners):
            try:
                listener(candidate)
            except Exception:
                logger.exception("Change listener %r failed after %s", listener, action)
        return True

    def _fresh_id(self, prefix: str) -> str:
        taken = {n.id for n in self._diagram.nodes} | {e.id for e in self._diagram.edges}
        new_id = self._ids(prefix)
        while new_id in taken:
            new_id = self._ids(prefix)
        return new_id

    def _snap(self, position: Position) -> Position:
        if not self.snap_grid:
            return position
        grid = self.snap_grid
        return Position(x=round(position.x / grid) * grid, y=round(position.y / grid) * grid)

    def _require_node(self, node_id: str) -> DiagramNode:
        node = self._diagram.get_node(node_id)
        if node is None:
            raise ElementReferenceError(node_id)
        return node

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def load(self, diagram: Diagram) -> bool:
        """Replace the working diagram, e.g. after generation or a reload."""
        self._edit = None
        return self._commit(diagram, "load")

    def add_node(
        self,
        kind: NodeKind,
        position: Position,
        initial_label: Optional[str] = None,
    ) -> Optional[DiagramNode]:
        """Append a new node; it renders above every earlier node."""
        kind = NodeKind(kind)
        label = (initial_label or "").strip() or default_label(kind)
        node = DiagramNode(
            id=self._fresh_id("node"),
            kind=kind,
            label=label,
            position=self._snap(position),
        )
        candidate = self._diagram.model_copy(update={"nodes": [*self._diagram.nodes, node]})
        return node if self._commit(candidate, "add_node") else None

    def move_node(self, node_id: str, position: Position) -> Optional[DiagramNode]:
        try:
            node = self._require_node(node_id)
        except ElementReferenceError as exc:
            logger.debug("move_node ignored: %s", exc)
            return None
        moved = node.model_copy(update={"position": self._snap(position)})
        if moved.position == node.position:
            return node
        nodes = [moved if n.id == node_id else n for n in self._diagram.nodes]
        candidate = self._diagram.model_copy(update={"nodes": nodes})
        return moved if self._commit(candidate, "move_node") else None

    def set_connection_kind(self, kind: EdgeKind):
        """Edge kind used by later connect() calls that do not name one."""
        self.connection_kind = EdgeKind(kind)

    def connect(
        self,
        source_node_id: str,
        source_handle_id: str,
        target_node_id: str,
        target_handle_id: str,
        edge_kind: Optional[EdgeKind] = None,
        dependency_kind: Optional[DependencyKind] = None,
        label: Optional[str] = None,
    ) -> Optional[DiagramEdge]:
        """Create an edge between two handles, or return None if rejected."""
        try:
            source = self._require_node(source_node_id)
            target = self._require_node(target_node_id)
        except ElementReferenceError as exc:
            logger.debug("connect ignored: %s", exc)
            return None

        if not is_valid_handle(source, source_handle_id, HandleDirection.SOURCE):
            logger.info("connect rejected: '%s' is not a source handle of %s", source_handle_id, source.id)
            return None
        if not is_valid_handle(target, target_handle_id, HandleDirection.TARGET):
            logger.info("connect rejected: '%s' is not a target handle of %s", target_handle_id, target.id)
            return None

        for existing in self._diagram.edges:
            if (existing.source_node_id, existing.source_handle_id,
                    existing.target_node_id, existing.target_handle_id) == (
                    source_node_id, source_handle_id, target_node_id, target_handle_id):
                logger.debug("connect ignored: identical edge %s exists", existing.id)
                return None

        kind = EdgeKind(edge_kind) if edge_kind is not None else self.connection_kind
        if kind == EdgeKind.DEPENDENCY:
            dependency_kind = DependencyKind(dependency_kind) if dependency_kind else DependencyKind.INCLUDE
        else:
            dependency_kind = None

        edge = DiagramEdge(
            id=self._fresh_id("edge"),
            kind=kind,
            source_node_id=source_node_id,
            source_handle_id=source_handle_id,
            target_node_id=target_node_id,
            target_handle_id=target_handle_id,
            label=label,
            dependency_kind=dependency_kind,
        )
        candidate = self._diagram.model_copy(update={"edges": [*self._diagram.edges, edge]})
        return edge if self._commit(candidate, "connect") else None

    def relabel(self, element_id: str, text: str) -> bool:
        """Commit ``text.strip()`` as the label of a node or edge.

        Empty, whitespace-only or unchanged text leaves the label alone.
        """
        new_label = (text or "").strip()
        node = self._diagram.get_node(element_id)
        edge = None if node is not None else self._diagram.get_edge(element_id)
        if node is None and edge is None:
            logger.debug("relabel ignored: %s", ElementReferenceError(element_id))
            return False
        current = node.label if node is not None else edge.label
        if not new_label or new_label == current:
            return False

        if node is not None:
            nodes = [n.model_copy(update={"label": new_label}) if n.id == element_id else n
                     for n in self._diagram.nodes]
            candidate = self._diagram.model_copy(update={"nodes": nodes})
        else:
            edges = [e.model_copy(update={"label": new_label}) if e.id == element_id else e
                     for e in self._diagram.edges]
            candidate = self._diagram.model_copy(update={"edges": edges})
        return self._commit(candidate, "relabel")

    def start_edit(self, element_id: str) -> Optional[LabelEdit]:
        """Enter inline editing for a node or edge label."""
        node = self._diagram.get_node(element_id)
        if node is not None:
            current = node.label
        else:
            edge = self._diagram.get_edge(element_id)
            if edge is None:
                logger.debug("start_edit ignored: %s", ElementReferenceError(element_id))
                return None
            current = edge.label or ""
        self._edit = LabelEdit(element_id=element_id, original=current, text=current)
        return self._edit

    def update_edit(self, text: str):
        if self._edit is not None:
            self._edit.text = text

    def commit_edit(self) -> bool:
        """Confirm or blur: apply the edited text through relabel()."""
        edit, self._edit = self._edit, None
        if edit is None:
            return False
        return self.relabel(edit.element_id, edit.text)

    def cancel_edit(self) -> Optional[str]:
        """Abort: drop the edited text and return the pre-edit label."""
        edit, self._edit = self._edit, None
        return edit.original if edit is not None else None

    def delete_selection(
        self,
        node_ids: Iterable[str] = (),
        edge_ids: Iterable[str] = (),
    ) -> tuple[list[DiagramNode], list[DiagramEdge]]:
        """Remove nodes and edges, cascading to edges of removed nodes."""
        node_ids = set(node_ids)
        edge_ids = set(edge_ids)
        removed_nodes = [n for n in self._diagram.nodes if n.id in node_ids]
        gone = {n.id for n in removed_nodes}
        removed_edges = [
            e for e in self._diagram.edges
            if e.id in edge_ids or e.source_node_id in gone or e.target_node_id in gone
        ]
        if not removed_nodes and not removed_edges:
            return [], []

        dropped_edges = {e.id for e in removed_edges}
        candidate = self._diagram.model_copy(update={
            "nodes": [n for n in self._diagram.nodes if n.id not in gone],
            "edges": [e for e in self._diagram.edges if e.id not in dropped_edges],
        })
        if self._edit is not None and self._edit.element_id in gone | dropped_edges:
            self._edit = None
        if not self._commit(candidate, "delete_selection"):
            return [], []
        return removed_nodes, removed_edges

    def set_viewport(self, x: float, y: float, zoom: float) -> bool:
        if zoom <= 0:
            logger.debug("set_viewport ignored: zoom must be positive, got %s", zoom)
            return False
        candidate = self._diagram.model_copy(update={"viewport": Viewport(x=x, y=y, zoom=zoom)})
        return self._commit(candidate, "set_viewport")

    def drop(self, payload: DropPayload, position: Position) -> Optional[DiagramNode]:
        """Handle a palette drop: node tags add a node, edge tags pick the edge kind."""
        node_kind = payload.node_kind
        if node_kind is not None:
            label = payload.initial_data().get("label")
            return self.add_node(node_kind, position, label if isinstance(label, str) else None)
        edge_kind = payload.edge_kind
        if edge_kind is not None:
            self.set_connection_kind(edge_kind)
        else:
            logger.debug("Ignoring drop with unknown type tag %r", payload.type)
        return None

    def describe_selection(self, node_ids: Iterable[str] = (), edge_ids: Iterable[str] = ()) -> str:
        node_ids, edge_ids = set(node_ids), set(edge_ids)
        nodes = sum(1 for n in self._diagram.nodes if n.id in node_ids)
        edges = sum(1 for e in self._diagram.edges if e.id in edge_ids)
        return describe_selection(nodes, edges)
