"""Tests for the conversation-to-diagram workflow."""

import asyncio
import json

import pytest

from conftest import FakeAssistant
from diagram_studio.errors import GenerationError, WorkflowStateError
from diagram_studio.graph import validate
from diagram_studio.models import DiagramPayload, MessageRole, MessageStatus
from diagram_studio.workflow import GenerationWorkflow, WorkflowState, parse_payload


def make_workflow(assistant, ids, **kwargs):
    return GenerationWorkflow(assistant, id_generator=ids, timeout=kwargs.pop("timeout", 1.0), **kwargs)


async def confirmed(workflow, text="Customers check out and pay online"):
    await workflow.submit(text)
    assert workflow.state == WorkflowState.CONFIRMING
    return workflow


class TestParsePayload:
    def test_accepts_model_dict_and_json(self, valid_payload):
        model = DiagramPayload.model_validate(valid_payload)
        assert parse_payload(model) is model
        assert parse_payload(valid_payload) == model
        assert parse_payload(json.dumps(valid_payload)) == model

    @pytest.mark.parametrize("bad", ["not json", '{"nodes": "nope"}', 42, None])
    def test_rejects_garbage(self, bad):
        with pytest.raises(ValueError):
            parse_payload(bad)


class TestDrafting:
    @pytest.mark.asyncio
    async def test_submit_moves_to_confirming(self, ids):
        assistant = FakeAssistant(replies=["Proposal: Customer -> Checkout. Approve?"])
        workflow = make_workflow(assistant, ids)

        reply = await workflow.submit("  A customer checks out  ")

        assert workflow.state == WorkflowState.CONFIRMING
        assert reply.role == MessageRole.ASSISTANT
        assert reply.content.startswith("Proposal")
        user = workflow.messages[0]
        assert user.content == "A customer checks out"
        assert user.status == MessageStatus.COMPLETED
        assert len(assistant.reply_calls) == 1

    @pytest.mark.asyncio
    async def test_empty_message_rejected(self, ids):
        workflow = make_workflow(FakeAssistant(), ids)
        with pytest.raises(ValueError):
            await workflow.submit("   ")
        assert workflow.messages == []

    @pytest.mark.asyncio
    async def test_failed_reply_stays_drafting(self, ids):
        assistant = FakeAssistant(replies=[GenerationError("model offline"), "Proposal ready"])
        workflow = make_workflow(assistant, ids)

        reply = await workflow.submit("Draw my shop")

        assert workflow.state == WorkflowState.DRAFTING
        assert reply.status == MessageStatus.FAILED
        assert "model offline" in reply.content
        assert workflow.messages[0].status == MessageStatus.FAILED

        await workflow.submit("Draw my shop, please")
        assert workflow.state == WorkflowState.CONFIRMING

    @pytest.mark.asyncio
    async def test_unexpected_reply_error_marks_messages_failed(self, ids):
        assistant = FakeAssistant(replies=[RuntimeError("boom"), "Proposal ready"])
        workflow = make_workflow(assistant, ids)

        reply = await workflow.submit("Draw my shop")

        assert workflow.state == WorkflowState.DRAFTING
        assert workflow.messages[0].status == MessageStatus.FAILED
        assert reply.status == MessageStatus.FAILED
        assert "boom" in reply.content

        await workflow.submit("Draw my shop again")
        assert workflow.state == WorkflowState.CONFIRMING

    @pytest.mark.asyncio
    async def test_submit_not_allowed_while_confirming(self, ids):
        workflow = await confirmed(make_workflow(FakeAssistant(), ids))
        with pytest.raises(WorkflowStateError):
            await workflow.submit("more")

    @pytest.mark.asyncio
    async def test_revision_round(self, ids):
        assistant = FakeAssistant(replies=["First proposal", "Second proposal"])
        workflow = await confirmed(make_workflow(assistant, ids))

        reply = await workflow.request_revision("Add an admin actor")

        assert reply.content == "Second proposal"
        assert workflow.state == WorkflowState.CONFIRMING
        assert [m.role for m in workflow.messages] == [
            MessageRole.USER, MessageRole.ASSISTANT, MessageRole.USER, MessageRole.ASSISTANT,
        ]

    @pytest.mark.asyncio
    async def test_approve_requires_confirming(self, ids):
        workflow = make_workflow(FakeAssistant(), ids)
        with pytest.raises(WorkflowStateError):
            await workflow.approve()


class TestGeneration:
    @pytest.mark.asyncio
    async def test_approve_produces_diagram(self, ids, valid_payload):
        assistant = FakeAssistant(payloads=[valid_payload])
        workflow = await confirmed(make_workflow(assistant, ids))
        accepted = []
        workflow.on_diagram(accepted.append)

        state = await workflow.approve()

        assert state == WorkflowState.EDITING
        diagram = workflow.diagram
        assert diagram.title == "Checkout"
        assert diagram.id == workflow.conversation.diagram_id
        assert len(diagram.nodes) == 2
        assert validate(diagram).is_valid
        assert accepted == [diagram]
        assert workflow.messages[-1].content == "Generated 'Checkout' with 2 nodes and 1 edges."

    @pytest.mark.asyncio
    async def test_json_string_payload(self, ids, valid_payload):
        assistant = FakeAssistant(payloads=[json.dumps(valid_payload)])
        workflow = await confirmed(make_workflow(assistant, ids))
        assert await workflow.approve() == WorkflowState.EDITING

    @pytest.mark.asyncio
    async def test_dangling_edge_fails_without_touching_diagram(self, ids, dangling_payload):
        assistant = FakeAssistant(payloads=[dangling_payload])
        workflow = await confirmed(make_workflow(assistant, ids))
        accepted = []
        workflow.on_diagram(accepted.append)

        state = await workflow.approve()

        assert state == WorkflowState.FAILED
        assert workflow.diagram is None
        assert accepted == []
        assert "n_missing" in workflow.last_error
        assert workflow.messages[-1].status == MessageStatus.FAILED

    @pytest.mark.asyncio
    async def test_malformed_payload_fails(self, ids):
        assistant = FakeAssistant(payloads=["{this is not json"])
        workflow = await confirmed(make_workflow(assistant, ids))
        assert await workflow.approve() == WorkflowState.FAILED
        assert "not a valid diagram" in workflow.last_error

    @pytest.mark.asyncio
    async def test_assistant_error_fails(self, ids):
        assistant = FakeAssistant(payloads=[GenerationError("quota exceeded")])
        workflow = await confirmed(make_workflow(assistant, ids))
        assert await workflow.approve() == WorkflowState.FAILED
        assert workflow.last_error == "quota exceeded"

    @pytest.mark.asyncio
    async def test_unexpected_error_fails_and_is_retryable(self, ids, valid_payload):
        assistant = FakeAssistant(payloads=[ConnectionError("reset by peer"), valid_payload])
        workflow = await confirmed(make_workflow(assistant, ids))

        assert await workflow.approve() == WorkflowState.FAILED
        assert "reset by peer" in workflow.last_error
        assert workflow.messages[-1].status == MessageStatus.FAILED
        assert workflow.diagram is None

        assert await workflow.retry() == WorkflowState.EDITING
        assert len(assistant.generate_calls) == 2

    @pytest.mark.asyncio
    async def test_timeout_fails(self, ids):
        assistant = FakeAssistant(payloads=[{}], gate=asyncio.Event())
        workflow = await confirmed(make_workflow(assistant, ids, timeout=0.05))
        assert await workflow.approve() == WorkflowState.FAILED
        assert "0.05s" in workflow.last_error

    @pytest.mark.asyncio
    async def test_retry_reuses_approved_context(self, ids, dangling_payload, valid_payload):
        assistant = FakeAssistant(payloads=[dangling_payload, valid_payload])
        workflow = await confirmed(make_workflow(assistant, ids))

        assert await workflow.approve() == WorkflowState.FAILED
        assert await workflow.retry() == WorkflowState.EDITING

        first, second = assistant.generate_calls
        assert first == second
        assert all(m.status != MessageStatus.FAILED for m in second)

    @pytest.mark.asyncio
    async def test_retry_requires_failed(self, ids):
        workflow = await confirmed(make_workflow(FakeAssistant(), ids))
        with pytest.raises(WorkflowStateError):
            await workflow.retry()

    @pytest.mark.asyncio
    async def test_second_approve_while_generating_is_ignored(self, ids, valid_payload):
        gate = asyncio.Event()
        assistant = FakeAssistant(payloads=[valid_payload], gate=gate)
        workflow = await confirmed(make_workflow(assistant, ids))

        first = asyncio.create_task(workflow.approve())
        await asyncio.sleep(0)
        assert workflow.state == WorkflowState.GENERATING

        assert await workflow.approve() == WorkflowState.GENERATING
        assert await workflow.retry() == WorkflowState.GENERATING

        gate.set()
        assert await first == WorkflowState.EDITING
        assert len(assistant.generate_calls) == 1

    @pytest.mark.asyncio
    async def test_abandoned_result_is_discarded(self, ids, valid_payload):
        gate = asyncio.Event()
        assistant = FakeAssistant(payloads=[valid_payload], gate=gate)
        workflow = await confirmed(make_workflow(assistant, ids))
        accepted = []
        workflow.on_diagram(accepted.append)

        task = asyncio.create_task(workflow.approve())
        await asyncio.sleep(0)
        workflow.abandon()
        assert workflow.state == WorkflowState.FAILED

        gate.set()
        await task

        assert workflow.diagram is None
        assert accepted == []
        assert workflow.last_error == "generation abandoned"


class TestHistory:
    @pytest.mark.asyncio
    async def test_history_is_append_only(self, ids, dangling_payload, valid_payload):
        assistant = FakeAssistant(payloads=[dangling_payload, valid_payload])
        workflow = make_workflow(assistant, ids)

        snapshots = []
        await workflow.submit("A customer checks out")
        snapshots.append([m.id for m in workflow.messages])
        await workflow.approve()
        snapshots.append([m.id for m in workflow.messages])
        await workflow.retry()
        snapshots.append([m.id for m in workflow.messages])

        for earlier, later in zip(snapshots, snapshots[1:]):
            assert later[:len(earlier)] == earlier
            assert len(later) > len(earlier)

    @pytest.mark.asyncio
    async def test_diagram_id_assigned_on_first_generation(self, ids, valid_payload):
        workflow = await confirmed(make_workflow(FakeAssistant(payloads=[valid_payload]), ids))
        assert workflow.conversation.diagram_id is None
        await workflow.approve()
        assert workflow.conversation.diagram_id == "diagram_1"

    @pytest.mark.asyncio
    async def test_empty_revision_keeps_confirming(self, ids):
        workflow = await confirmed(make_workflow(FakeAssistant(), ids))
        with pytest.raises(ValueError):
            await workflow.request_revision("  ")
        assert workflow.state == WorkflowState.CONFIRMING
