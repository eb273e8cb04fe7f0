"""
Workflow Runner — Main CLI Entrypoint.

Wires the engine to its collaborators and runs one of:
- ``run <graph.json>``: interactive execution
- ``validate <graph.json>``: structural report
- ``serve-questions``: the question-generation HTTP service
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from entry.cli import CLIAdapter
from execution.conditions import ConditionEvaluator, KeywordPromptStrategy, ModelPromptStrategy
from execution.engine import ExecutionEngine, WorkflowConfigurationError
from models.selector import ModelSelector
from questions.generator import HttpQuestionGenerator, ModelQuestionGenerator, QuestionGenerator
from registry.graph_loader import GraphLoadError, load_graph
from shared.workflow_contracts import WorkflowGraph

# ─── Configuration ──────────────────────────────────────────────

logger = logging.getLogger(__name__)

# Ensure local .env is loaded before reading runtime configuration.
load_dotenv(override=False)

WORKFLOW_PACING_SECONDS = float(os.getenv("WORKFLOW_PACING_SECONDS", "0.5"))
QUESTION_SERVICE_URL = os.getenv("QUESTION_SERVICE_URL", "").strip()
QUESTION_MODEL = os.getenv("QUESTION_MODEL", "gpt-4o-mini").strip() or "gpt-4o-mini"
CONDITION_MODEL = os.getenv("CONDITION_MODEL", "").strip()
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"
QUESTION_SERVER_HOST = os.getenv("QUESTION_SERVER_HOST", "0.0.0.0")
QUESTION_SERVER_PORT = int(os.getenv("QUESTION_SERVER_PORT", "8003"))

# ─── Rich Console ───────────────────────────────────────────────

console = Console()


def setup_logging() -> None:
    """Configure logging."""
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def build_question_generator(model_selector: ModelSelector | None) -> QuestionGenerator:
    if QUESTION_SERVICE_URL:
        return HttpQuestionGenerator(QUESTION_SERVICE_URL)
    return ModelQuestionGenerator(model_selector or ModelSelector(), model_name=QUESTION_MODEL)


def build_condition_evaluator(model_selector: ModelSelector | None) -> ConditionEvaluator:
    if CONDITION_MODEL and model_selector is not None:
        return ConditionEvaluator(ModelPromptStrategy(model_selector, model_name=CONDITION_MODEL))
    return ConditionEvaluator(KeywordPromptStrategy())


def build_engine(graph: WorkflowGraph, cli: CLIAdapter) -> tuple[ExecutionEngine, ModelSelector | None]:
    """Wire the engine; the returned selector (if any) must be closed by the caller."""
    model_selector = ModelSelector() if (CONDITION_MODEL or not QUESTION_SERVICE_URL) else None
    engine = ExecutionEngine(
        graph,
        callbacks=cli.callbacks(),
        question_generator=build_question_generator(model_selector),
        condition_evaluator=build_condition_evaluator(model_selector),
        pacing_seconds=WORKFLOW_PACING_SECONDS,
    )
    return engine, model_selector


def _load_or_exit(path: str) -> WorkflowGraph:
    try:
        return load_graph(path)
    except GraphLoadError as e:
        console.print(f"[bold red]Failed to load workflow:[/] {e}")
        sys.exit(1)


async def run_workflow_loop(graph_path: str) -> None:
    """Interactive workflow run."""
    graph = _load_or_exit(graph_path)
    cli = CLIAdapter(console)
    engine, model_selector = build_engine(graph, cli)

    console.print(Panel(
        Text.from_markup(
            f"[bold cyan]{graph.name}[/bold cyan]\n"
            f"[dim]{graph.description or graph.id}[/dim]\n"
            "[dim]Commands: /pause • /resume • /stop • exit[/dim]"
        ),
        title="🚨",
        border_style="cyan",
        box=box.DOUBLE,
    ))

    try:
        await engine.start()
    except WorkflowConfigurationError as e:
        console.print(f"[bold red]Cannot start workflow:[/] {e}")
        return

    try:
        while True:
            await engine.wait_until_idle()
            status = engine.context.status
            waiting = engine.waiting_node_ids
            if not waiting and status != "paused":
                break

            raw_input = await asyncio.to_thread(console.input, "[bold cyan]You → [/]")
            entry = cli.read_input(raw_input)
            if entry.command == "quit":
                await engine.stop()
                console.print("[dim]Goodbye! 👋[/dim]")
                break
            if entry.command == "pause":
                await engine.pause()
                console.print("[yellow]Paused.[/yellow]")
            elif entry.command == "resume":
                await engine.resume()
            elif entry.command == "stop":
                await engine.stop()
                console.print("[yellow]Stopped.[/yellow]")
                break
            elif not entry.text:
                continue
            elif waiting:
                await engine.continue_from_user_input(waiting[0], entry.text)
            else:
                console.print("[dim]Run is paused; type /resume to continue.[/dim]")
    finally:
        question_generator = engine.executor.question_generator
        if isinstance(question_generator, HttpQuestionGenerator):
            await question_generator.aclose()
        if model_selector is not None:
            model_selector.close()

    render_summary(engine)


def render_summary(engine: ExecutionEngine) -> None:
    context = engine.context
    style = {"completed": "green", "error": "red"}.get(context.status, "yellow")
    table = Table(title="Run Summary", box=box.SIMPLE)
    table.add_column("Variable", style="cyan")
    table.add_column("Value")
    for key, value in context.variables.items():
        table.add_row(key, str(value))
    console.print(table)
    console.print(f"[{style}]Status: {context.status}[/]")
    if context.error:
        console.print(f"[bold red]Error:[/] {context.error}")


def validate_workflow(graph_path: str) -> int:
    graph = _load_or_exit(graph_path)

    nodes = Table(title=f"Nodes — {graph.name}")
    nodes.add_column("Id", style="cyan")
    nodes.add_column("Type", style="magenta")
    nodes.add_column("Label")
    nodes.add_column("Out", justify="right")
    for node in graph.nodes:
        nodes.add_row(node.id, node.type, node.label, str(len(graph.outgoing(node.id))))
    console.print(nodes)

    connections = Table(title="Connections")
    connections.add_column("Id", style="cyan")
    connections.add_column("From")
    connections.add_column("To")
    connections.add_column("Handle", style="dim")
    for connection in graph.connections:
        target = connection.target_node_id
        if graph.node_by_id(target) is None:
            target = f"[red]{target} (missing)[/red]"
        connections.add_row(connection.id, connection.source_node_id, target, connection.source_handle or "")
    console.print(connections)

    start_nodes = graph.start_nodes()
    if len(start_nodes) != 1:
        console.print(f"[bold red]Expected exactly one start node, found {len(start_nodes)}[/]")
        return 1
    console.print(f"[green]Start node: {start_nodes[0].id}[/green]")
    return 0


def serve_questions() -> None:
    import uvicorn

    from api.question_server import app

    uvicorn.run(app, host=QUESTION_SERVER_HOST, port=QUESTION_SERVER_PORT)


def main() -> None:
    """Entrypoint with CLI args."""
    setup_logging()

    parser = argparse.ArgumentParser(description="Emergency Response Workflow Runner")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    run_parser = subparsers.add_parser("run", help="Run a workflow interactively")
    run_parser.add_argument("graph", help="Path to workflow JSON")

    validate_parser = subparsers.add_parser("validate", help="Check a workflow file")
    validate_parser.add_argument("graph", help="Path to workflow JSON")

    subparsers.add_parser("serve-questions", help="Run the question-generation HTTP service")

    args = parser.parse_args()

    if args.command == "run":
        if not Path(args.graph).exists():
            console.print(f"[bold red]No such file:[/] {args.graph}")
            sys.exit(1)
        try:
            asyncio.run(run_workflow_loop(args.graph))
        except KeyboardInterrupt:
            pass
    elif args.command == "validate":
        sys.exit(validate_workflow(args.graph))
    elif args.command == "serve-questions":
        serve_questions()
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
