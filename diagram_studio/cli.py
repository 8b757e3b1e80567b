"""Command-line interface."""

import argparse
import asyncio
import shlex
import sys
from typing import Optional

from .config import EditorSettings, print_config
from .editor import display_label
from .errors import DiagramNotFoundError, DiagramStudioError
from .logger import configure_logging
from .models import DependencyKind, EdgeKind, NodeKind, Position
from .persistence import JsonFileDiagramStore, dump_json
from .session import DiagramSession
from .workflow import WorkflowState

EDIT_HELP = """Editing commands:
  add <actor|usecase|system> <x> <y> [label]
  move <node-id> <x> <y>
  connect <source-id> <source-handle> <target-id> <target-handle> [include|extend]
  mode <association|dependency>
  relabel <id> <text>
  delete <id> [<id> ...]
  show | json | save | quit"""


def format_diagram(session: DiagramSession) -> str:
    diagram = session.diagram
    if diagram is None:
        return "No diagram yet."
    lines = [f"{diagram.title} ({diagram.id})"]
    for node in diagram.nodes:
        lines.append(f"  [{node.kind.value}] {node.id}: {node.label} @ ({node.position.x:g}, {node.position.y:g})")
    for edge in diagram.edges:
        text = display_label(edge)
        suffix = f" '{text}'" if text else ""
        lines.append(
            f"  {edge.id}: {edge.source_node_id}.{edge.source_handle_id} -> "
            f"{edge.target_node_id}.{edge.target_handle_id} [{edge.kind.value}]{suffix}"
        )
    if session.unsaved_changes:
        lines.append("  (unsaved changes)")
    return "\n".join(lines)


def handle_edit_command(session: DiagramSession, line: str) -> Optional[str]:
    """Run one editing command and return the text to print."""
    editor = session.editor
    args = shlex.split(line)
    if not args:
        return None
    command, rest = args[0].lower(), args[1:]

    try:
        if command == "add" and len(rest) >= 3:
            node = editor.add_node(NodeKind(rest[0]), Position(x=float(rest[1]), y=float(rest[2])),
                                   " ".join(rest[3:]) or None)
            return f"Added {node.id}" if node else "Rejected"
        if command == "move" and len(rest) == 3:
            node = editor.move_node(rest[0], Position(x=float(rest[1]), y=float(rest[2])))
            return f"Moved {node.id}" if node else f"No node {rest[0]}"
        if command == "connect" and len(rest) in (4, 5):
            dependency = DependencyKind(rest[4]) if len(rest) == 5 else None
            edge = editor.connect(rest[0], rest[1], rest[2], rest[3], dependency_kind=dependency)
            return f"Connected {edge.id}" if edge else "Rejected: check node ids and handles"
        if command == "mode" and len(rest) == 1:
            editor.set_connection_kind(EdgeKind(rest[0]))
            return f"New connections: {editor.connection_kind.value}"
        if command == "relabel" and len(rest) >= 2:
            changed = editor.relabel(rest[0], " ".join(rest[1:]))
            return "Relabelled" if changed else "Label unchanged"
        if command == "delete" and rest:
            nodes, edges = editor.delete_selection(node_ids=rest, edge_ids=rest)
            return f"Deleted {len(nodes)} node(s), {len(edges)} edge(s)"
    except ValueError as e:
        return f"Error: {e}"
    return EDIT_HELP


async def run_interactive(session: DiagramSession):
    """Run an interactive session: describe, confirm, then edit."""
    print("=" * 60)
    print("diagram-studio - Use Case Diagrams from Plain Language")
    print("=" * 60)
    print_config()
    if session.state == WorkflowState.EDITING:
        print(f"\n{format_diagram(session)}\n\n{EDIT_HELP}\n")
    else:
        print("\nDescribe your system. Commands: approve, revise <text>, retry, quit\n")

    try:
        while True:
            try:
                user_input = input("\nYou: ").strip()
            except (EOFError, KeyboardInterrupt):
                break

            if not user_input:
                continue
            if user_input.lower() == "quit":
                break

            state = session.state
            try:
                if state == WorkflowState.EDITING:
                    lowered = user_input.lower()
                    if lowered == "show":
                        print(format_diagram(session))
                    elif lowered == "json":
                        print(dump_json(session.diagram))
                    elif lowered == "save":
                        saved = await session.save()
                        print("Saved." if saved else f"Save failed: {session.writer.last_error}")
                    else:
                        result = handle_edit_command(session, user_input)
                        if result:
                            print(result)
                elif user_input.lower() == "approve" and state == WorkflowState.CONFIRMING:
                    print("Generating diagram...")
                    await session.workflow.approve()
                elif user_input.lower() == "retry" and state == WorkflowState.FAILED:
                    print("Retrying...")
                    await session.workflow.retry()
                elif state == WorkflowState.CONFIRMING:
                    text = user_input[len("revise"):] if user_input.lower().startswith("revise ") else user_input
                    print("Revising...")
                    reply = await session.workflow.request_revision(text)
                    print(f"\n{reply.content}")
                elif state == WorkflowState.DRAFTING:
                    print("Analyzing...")
                    reply = await session.workflow.submit(user_input)
                    print(f"\n{reply.content}")
                else:
                    print(f"Not available while {state.value}.")
            except (DiagramStudioError, ValueError) as e:
                print(f"Error: {e}")

            if session.state != state:
                if session.state == WorkflowState.EDITING:
                    print(f"\n{format_diagram(session)}\n\n{EDIT_HELP}")
                elif session.state == WorkflowState.FAILED:
                    print(f"\n{session.workflow.messages[-1].content}")
    finally:
        saved = await session.close()
        if session.diagram is not None:
            print(f"\n{'Saved' if saved else 'NOT saved'}: {session.diagram.id}")


async def open_session(settings: EditorSettings, diagram_id: Optional[str]) -> DiagramSession:
    from .assistant import PydanticAIAssistant

    store = JsonFileDiagramStore(settings.storage_dir, user_id=settings.user_id)
    assistant = PydanticAIAssistant()
    if diagram_id:
        return await DiagramSession.open_existing(diagram_id, assistant, store, settings=settings)
    return DiagramSession.start(assistant, store, settings=settings)


async def run(settings: EditorSettings, diagram_id: Optional[str]):
    session = await open_session(settings, diagram_id)
    await run_interactive(session)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="diagram-studio",
        description="Describe a system in plain language, then edit the use case diagram"
    )
    parser.add_argument(
        "--open",
        type=str,
        metavar="DIAGRAM_ID",
        help="Resume editing a stored diagram"
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List stored diagrams and exit"
    )
    parser.add_argument(
        "--storage",
        type=str,
        help="Directory holding diagram records (overrides DIAGRAM_STORAGE_DIR)"
    )
    parser.add_argument(
        "--config", "-c",
        action="store_true",
        help="Show config and exit"
    )
    args = parser.parse_args()

    try:
        settings = EditorSettings.from_env()
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    if args.storage:
        settings.storage_dir = args.storage
    configure_logging(settings.log_level)

    if args.config:
        print_config()
        return

    if args.list:
        store = JsonFileDiagramStore(settings.storage_dir, user_id=settings.user_id)
        for diagram_id in store.list_diagrams():
            print(diagram_id)
        return

    try:
        asyncio.run(run(settings, args.open))
    except DiagramNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
