import asyncio

from execution.callbacks import EngineCallbacks
from execution.engine import DEFAULT_QUESTION, ExecutionEngine
from shared.workflow_contracts import WorkflowGraph


def _ask_graph(prompt: str = "Ask how many people are trapped") -> WorkflowGraph:
    return WorkflowGraph.model_validate(
        {
            "nodes": [
                {"id": "start", "type": "start"},
                {"id": "lookup", "type": "data-query", "data": {"collection": "buildings", "query": "floor plans"}},
                {"id": "ask", "type": "user-interaction", "data": {"prompt": prompt, "saveResponseAs": "trapped"}},
                {"id": "finish", "type": "end"},
            ],
            "connections": [
                {"id": "c0", "sourceNodeId": "start", "targetNodeId": "lookup"},
                {"id": "c1", "sourceNodeId": "lookup", "targetNodeId": "ask"},
                {"id": "c2", "sourceNodeId": "ask", "targetNodeId": "finish"},
            ],
        }
    )


class _RecordingQuestions:
    def __init__(self, answer: str = "How many people are still inside?") -> None:
        self.answer = answer
        self.calls: list[tuple[str, str, str]] = []

    async def generate_question(self, instruction: str, context: str, knowledge_base: str) -> str:
        self.calls.append((instruction, context, knowledge_base))
        return self.answer


class _BrokenQuestions:
    async def generate_question(self, instruction: str, context: str, knowledge_base: str) -> str:
        raise ConnectionError("question service unreachable")


def test_resume_with_yes_records_answer_and_continues() -> None:
    statuses: list[tuple[str, str]] = []
    generator = _RecordingQuestions()

    async def _run() -> ExecutionEngine:
        engine = ExecutionEngine(
            _ask_graph(),
            callbacks=EngineCallbacks(on_node_status_change=lambda n, s: statuses.append((n, s))),
            question_generator=generator,
            pacing_seconds=0,
        )
        await engine.start()
        await engine.wait_until_idle()
        assert engine.node_status("finish") == "idle"
        assert engine.pending_prompt("ask") == "How many people are still inside?"

        assert await engine.continue_from_user_input("ask", "yes") is True
        await engine.wait_until_idle()
        return engine

    engine = asyncio.run(_run())
    context = engine.context

    user_inputs = [entry for entry in context.knowledge_base if entry.type == "user-input"]
    assert len(user_inputs) == 1
    assert user_inputs[0].summary == "User response: yes"
    assert user_inputs[0].content == "yes"
    assert context.variables["ask_response"] == "yes"
    assert context.variables["trapped"] == "yes"
    assert [s for n, s in statuses if n == "ask"] == ["running", "waiting", "completed"]
    assert engine.node_status("finish") == "completed"
    assert "Received user input" in [entry.action for entry in context.history]
    assert engine.waiting_node_ids == []
    assert context.status == "completed"


def test_question_generator_receives_instruction_and_context() -> None:
    generator = _RecordingQuestions()

    async def _run() -> None:
        engine = ExecutionEngine(_ask_graph(), question_generator=generator, pacing_seconds=0)
        await engine.start()
        await engine.wait_until_idle()

    asyncio.run(_run())

    instruction, context_text, knowledge_text = generator.calls[0]
    assert instruction == "Ask how many people are trapped"
    assert context_text.startswith("startTime: ")
    assert "lookup_result: 📊 Queried buildings for: floor plans" in context_text
    assert knowledge_text == "📊 Queried buildings for: floor plans"


def test_blank_prompt_uses_default_instruction() -> None:
    generator = _RecordingQuestions()

    async def _run() -> None:
        engine = ExecutionEngine(_ask_graph(prompt=""), question_generator=generator, pacing_seconds=0)
        await engine.start()
        await engine.wait_until_idle()

    asyncio.run(_run())

    assert generator.calls[0][0] == "Ask the user for input"


def test_question_failure_falls_back_to_default_prompt() -> None:
    prompts: list[tuple[str, str]] = []

    async def _on_wait(node_id: str, prompt: str) -> None:
        prompts.append((node_id, prompt))

    async def _run() -> ExecutionEngine:
        engine = ExecutionEngine(
            _ask_graph(),
            callbacks=EngineCallbacks(on_wait_for_user=_on_wait),
            question_generator=_BrokenQuestions(),
            pacing_seconds=0,
        )
        await engine.start()
        await engine.wait_until_idle()
        return engine

    engine = asyncio.run(_run())

    assert prompts == [("ask", DEFAULT_QUESTION)]
    assert DEFAULT_QUESTION == "Please provide your input."
    assert engine.context.error is None
    assert engine.context.status == "running"
    assert engine.waiting_node_ids == ["ask"]


def test_continue_on_node_that_is_not_waiting_is_rejected() -> None:
    async def _run() -> tuple[bool, bool, ExecutionEngine]:
        engine = ExecutionEngine(_ask_graph(), question_generator=_RecordingQuestions(), pacing_seconds=0)
        await engine.start()
        await engine.wait_until_idle()
        early = await engine.continue_from_user_input("lookup", "hello")
        first = await engine.continue_from_user_input("ask", "three")
        await engine.wait_until_idle()
        again = await engine.continue_from_user_input("ask", "four")
        return early or again, first, engine

    rejected, accepted, engine = asyncio.run(_run())

    assert rejected is False
    assert accepted is True
    assert engine.context.variables["ask_response"] == "three"
    assert len([e for e in engine.context.knowledge_base if e.type == "user-input"]) == 1


def test_failing_callback_does_not_break_the_run() -> None:
    def _explode(*_args) -> None:
        raise RuntimeError("ui crashed")

    async def _run() -> ExecutionEngine:
        engine = ExecutionEngine(
            _ask_graph(),
            callbacks=EngineCallbacks(
                on_node_status_change=_explode,
                on_context_update=_explode,
                on_message=_explode,
                on_wait_for_user=_explode,
            ),
            question_generator=_RecordingQuestions(),
            pacing_seconds=0,
        )
        await engine.start()
        await engine.wait_until_idle()
        await engine.continue_from_user_input("ask", "two")
        await engine.wait_until_idle()
        return engine

    engine = asyncio.run(_run())

    assert engine.context.status == "completed"
    assert engine.context.error is None
