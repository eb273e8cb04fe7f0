import asyncio

from execution.callbacks import EngineCallbacks
from execution.conditions import ConditionEvaluator
from execution.node_executor import NodeExecutor
from shared.models import ChatMessage, ExecutionContext
from shared.workflow_contracts import WorkflowGraph


def _executor(graph: WorkflowGraph, messages: list[ChatMessage]) -> NodeExecutor:
    return NodeExecutor(
        graph,
        ConditionEvaluator(),
        question_generator=None,
        callbacks=EngineCallbacks(on_message=messages.append),
    )


def _run_node(node: dict, variables: dict | None = None):
    graph = WorkflowGraph.model_validate({"nodes": [node]})
    messages: list[ChatMessage] = []
    context = ExecutionContext(status="running", variables=dict(variables or {}))
    outcome = asyncio.run(_executor(graph, messages).execute(graph.nodes[0], context))
    return outcome, context, messages


def test_tool_call_records_result_everywhere() -> None:
    outcome, context, messages = _run_node(
        {
            "id": "sms",
            "type": "tool-call",
            "data": {"toolName": "send_sms", "parameters": {"to": "112"}, "saveResultAs": "smsStatus"},
        }
    )

    expected = '🔧 Executed tool: **send_sms** with parameters: {"to": "112"}'
    assert outcome.status == "completed"
    assert context.variables["sms_result"] == expected
    assert context.variables["smsStatus"] == expected
    assert context.knowledge_base[0].type == "tool-result"
    assert context.knowledge_base[0].summary == expected
    assert context.history[0].action == "Tool execution"
    assert [m.content for m in messages] == [expected]


def test_tool_call_defaults() -> None:
    _, context, _ = _run_node({"id": "t", "type": "tool-call"})
    assert context.variables["t_result"] == "🔧 Executed tool: **unknown** with parameters: default"


def test_data_query_defaults() -> None:
    _, context, messages = _run_node({"id": "q", "type": "data-query"})

    assert messages[0].content == "📊 Queried database for: all records"
    assert context.knowledge_base[0].type == "query-result"
    assert context.history[0].action == "Queried data"


def test_decision_summarizes_responses() -> None:
    _, context, messages = _run_node(
        {"id": "d", "type": "decision", "data": {"decisionPrompt": "send two engines"}},
        {"ask_response": "fire on floor 3", "callers": 2, "check_response": "yes"},
    )

    decision = 'Based on: ask_response: "fire on floor 3", check_response: "yes", I recommend: send two engines'
    assert context.variables["d_decision"] == decision
    assert messages[0].content == f"🤖 **AI Decision**: {decision}"
    assert context.knowledge_base[0].type == "decision"
    assert context.history[0].action == "Made decision"


def test_decision_without_responses_uses_initial_context() -> None:
    _, context, _ = _run_node({"id": "d", "type": "decision"})
    assert context.variables["d_decision"] == "Based on: initial context, I recommend: Analyzing situation..."


def test_end_node_is_terminal() -> None:
    outcome, context, messages = _run_node({"id": "e", "type": "end", "data": {"summary": "done"}})

    assert outcome.status == "terminal"
    assert context.history[0].action == "Completed workflow"
    assert messages[0].role == "system"
    assert messages[0].content == "Workflow completed successfully"


def test_merge_and_parallel_just_record_history() -> None:
    for node_type in ("merge", "parallel"):
        outcome, context, messages = _run_node({"id": "m", "type": node_type})
        assert outcome.status == "completed"
        assert context.history[0].action == "Executed node"
        assert messages == []


def test_user_interaction_without_generator_uses_default_question() -> None:
    outcome, context, messages = _run_node({"id": "ask", "type": "user-interaction"})

    assert outcome.status == "waiting"
    assert outcome.prompt == "Please provide your input."
    assert messages[0].metadata["awaiting_input"] is True
    assert context.history == []


def test_if_node_reports_condition_check() -> None:
    outcome, context, messages = _run_node({"id": "gate", "type": "if", "data": {"condition": "${ready}"}}, {"ready": 1})

    assert outcome.branch is True
    assert context.variables["gate_result"] is True
    assert context.history[0].action == '[Variable Mode] ready = "1" → TRUE'
    assert context.history[0].output is True
    assert messages[0].content == '🔍 **Condition Check**: [Variable Mode] ready = "1" → TRUE'
    assert messages[0].metadata["mode"] == "simple-text"
