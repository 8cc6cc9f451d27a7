"""
Tests for ExecutionCoordinatorService against the in-memory store and a recording channel.
"""
import asyncio

import pytest

from exceptions.flow_exception import ErrorKind
from models.bot_data import BotData
from models.contact_data import ContactData
from models.execution_cursor import ExecutionCursor

from flow_fixtures import node, edge, chain, make_graph


def greeting_graph():
    return make_graph(
        "greet",
        [
            node("s", "start"),
            node("hello", "text", message="Hello!"),
            node("ask", "quickReply", message="Want a tour?", buttons=[
                {"id": "b_yes", "title": "Yes", "payload": "TOUR_YES"},
            ]),
            node("yes", "text", message="Great, let's go"),
        ],
        chain("s", "hello", "ask") + [edge("ask", "yes", "b_yes")],
        triggers=["hi"],
    )


def name_graph():
    return make_graph(
        "name",
        [
            node("s", "start"),
            node("ask", "userInput", prompt="What's your name?", variable_name="name"),
            node("greet", "text", message="Nice to meet you, {{name}}"),
        ],
        chain("s", "ask", "greet"),
        triggers=["start"],
    )


def drip_graph(**delay_config):
    delay_config.setdefault("duration", 30)
    return make_graph(
        "drip",
        [
            node("s", "start"),
            node("a", "text", message="A"),
            node("wait", "delay", **delay_config),
            node("b", "text", message="B"),
        ],
        chain("s", "a", "wait", "b"),
        triggers=["drip"],
    )


def menu_block():
    return make_graph(
        "menu",
        [node("s", "start"), node("t", "text", message="Main menu")],
        chain("s", "t"),
    )


async def seed(flow_db, *graphs, **bot_fields):
    bot_fields.setdefault("is_active", True)
    await flow_db.save_bot(BotData(id="bot_1", **bot_fields))
    for graph in graphs:
        await flow_db.save_graph(graph)


class TestInboundMessages:
    @pytest.mark.asyncio
    async def test_keyword_entry_then_reply(self, coordinator, flow_db, delivery):
        await seed(flow_db, greeting_graph())

        first = await coordinator.handle_inbound_message("bot_1", "c1", text="Hi")
        assert first.actions_dispatched == 2
        assert first.entry_reason == "keyword_exact"
        assert not first.terminal
        assert first.error is None

        cursor = await flow_db.get_cursor("bot_1", "c1")
        assert cursor.current_node_id == "ask"
        assert cursor.awaiting_choice
        assert cursor.version == 1

        second = await coordinator.handle_inbound_message("bot_1", "c1", quick_reply_payload="TOUR_YES")
        assert second.terminal
        assert second.entry_reason is None
        assert delivery.texts() == ["Hello!", "Want a tour?", "Great, let's go"]

        cursor = await flow_db.get_cursor("bot_1", "c1")
        assert not cursor.is_active()
        assert cursor.version == 2

    @pytest.mark.asyncio
    async def test_messages_are_recorded(self, coordinator, flow_db):
        await seed(flow_db, greeting_graph())
        await coordinator.handle_inbound_message("bot_1", "c1", text="Hi", message_id="m.1")

        directions = [message.direction for message in flow_db.messages]
        assert directions == ["incoming", "outgoing", "outgoing"]
        assert flow_db.messages[0].message_id == "m.1"

    @pytest.mark.asyncio
    async def test_no_entry_point_leaves_cursor_alone(self, coordinator, flow_db, delivery):
        await seed(flow_db, greeting_graph())
        await coordinator.handle_inbound_message("bot_1", "c1", text="Hi")

        result = await coordinator.handle_inbound_message("bot_1", "c1", text="what now")
        assert result.actions_dispatched == 0
        assert result.error is None
        cursor = await flow_db.get_cursor("bot_1", "c1")
        assert cursor.current_node_id == "ask"
        assert cursor.version == 1

    @pytest.mark.asyncio
    async def test_unmatched_reply_falls_back_to_triggers(self, coordinator, flow_db, delivery):
        await seed(flow_db, greeting_graph(), name_graph())
        await coordinator.handle_inbound_message("bot_1", "c1", text="Hi")

        result = await coordinator.handle_inbound_message("bot_1", "c1", text="start")
        assert result.entry_reason == "keyword_exact"
        cursor = await flow_db.get_cursor("bot_1", "c1")
        assert cursor.graph_id == "name"
        assert cursor.awaiting_input

    @pytest.mark.asyncio
    async def test_welcome_block_on_first_message_only(self, coordinator, flow_db, delivery):
        welcome = make_graph(
            "welcome",
            [node("s", "start"), node("t", "text", message="Welcome aboard")],
            chain("s", "t"),
            is_welcome=True,
        )
        await seed(flow_db, welcome, greeting_graph())

        first = await coordinator.handle_inbound_message("bot_1", "c1", text="Hi")
        assert first.entry_reason == "welcome"

        second = await coordinator.handle_inbound_message("bot_1", "c1", text="Hi")
        assert second.entry_reason == "keyword_exact"
        assert delivery.texts() == ["Welcome aboard", "Hello!", "Want a tour?"]

    @pytest.mark.asyncio
    async def test_same_contact_messages_are_serialized(self, coordinator, flow_db, delivery):
        await seed(flow_db, name_graph())
        delivery.send_delay = 0.01

        first, second = await asyncio.gather(
            coordinator.handle_inbound_message("bot_1", "c1", text="start"),
            coordinator.handle_inbound_message("bot_1", "c1", text="Bob"),
        )
        assert first.error is None and second.error is None
        assert delivery.texts() == ["What's your name?", "Nice to meet you, Bob"]
        cursor = await flow_db.get_cursor("bot_1", "c1")
        assert cursor.bindings == {"name": "Bob"}
        assert cursor.version == 2

    @pytest.mark.asyncio
    async def test_different_contacts_run_independently(self, coordinator, flow_db, delivery):
        await seed(flow_db, name_graph())
        results = await asyncio.gather(*(
            coordinator.handle_inbound_message("bot_1", f"c{i}", text="start") for i in range(5)
        ))
        assert all(result.actions_dispatched == 1 for result in results)
        assert sorted(contact_id for contact_id, _ in delivery.sent) == [f"c{i}" for i in range(5)]

    @pytest.mark.asyncio
    async def test_restart_drops_bindings(self, coordinator, flow_db):
        await seed(flow_db, name_graph())
        await coordinator.handle_inbound_message("bot_1", "c1", text="start")
        await coordinator.handle_inbound_message("bot_1", "c1", text="Bob")

        assert await coordinator.restart_conversation("bot_1", "c1")
        assert await coordinator.get_cursor("bot_1", "c1") is None
        assert not await coordinator.restart_conversation("bot_1", "c1")


class TestPayloadNavigation:
    @pytest.mark.asyncio
    async def test_payload_leaves_pending_user_input(self, coordinator, flow_db, delivery):
        await seed(flow_db, name_graph(), menu_block())
        await coordinator.handle_inbound_message("bot_1", "c1", text="start")

        result = await coordinator.handle_inbound_message("bot_1", "c1", text="Menu", quick_reply_payload="menu")
        assert result.entry_reason == "payload"
        assert result.terminal
        assert delivery.texts() == ["What's your name?", "Main menu"]

        cursor = await flow_db.get_cursor("bot_1", "c1")
        assert not cursor.is_active()
        assert "name" not in cursor.bindings

    @pytest.mark.asyncio
    async def test_payload_naming_a_node_leaves_pending_user_input(self, coordinator, flow_db, delivery):
        await seed(flow_db, name_graph(), menu_block())
        await coordinator.handle_inbound_message("bot_1", "c1", text="start")

        result = await coordinator.handle_inbound_message("bot_1", "c1", text="Menu", quick_reply_payload="t")
        assert result.entry_reason == "payload"
        assert delivery.texts() == ["What's your name?", "Main menu"]

    @pytest.mark.asyncio
    async def test_unknown_payload_is_bound_as_input(self, coordinator, flow_db, delivery):
        await seed(flow_db, name_graph(), menu_block())
        await coordinator.handle_inbound_message("bot_1", "c1", text="start")

        result = await coordinator.handle_inbound_message("bot_1", "c1", text="Bob", quick_reply_payload="NOT_A_BLOCK")
        assert result.entry_reason is None
        assert delivery.texts() == ["What's your name?", "Nice to meet you, Bob"]

    @pytest.mark.asyncio
    async def test_payload_leaves_pending_delay(self, coordinator, flow_db, delivery, later):
        await seed(flow_db, drip_graph(), menu_block())
        await coordinator.handle_inbound_message("bot_1", "c1", text="drip")

        result = await coordinator.handle_inbound_message("bot_1", "c1", quick_reply_payload="menu")
        assert result.entry_reason == "payload"
        assert delivery.texts() == ["A", "Main menu"]
        assert (await flow_db.get_cursor("bot_1", "c1")).pending_resume_at is None

        assert await coordinator.tick_due_delays(now=later(31)) == 0
        assert delivery.texts() == ["A", "Main menu"]


class TestInboundGuards:
    @pytest.mark.asyncio
    async def test_inactive_bot(self, coordinator, flow_db, delivery):
        await seed(flow_db, greeting_graph(), is_active=False)
        result = await coordinator.handle_inbound_message("bot_1", "c1", text="Hi")
        assert result.error == ErrorKind.BOT_INACTIVE
        assert delivery.sent == []

    @pytest.mark.asyncio
    async def test_unknown_bot(self, coordinator, delivery):
        result = await coordinator.handle_inbound_message("nope", "c1", text="Hi")
        assert result.error == ErrorKind.BOT_INACTIVE

    @pytest.mark.asyncio
    async def test_human_takeover_skips_flow(self, coordinator, flow_db, delivery):
        await seed(flow_db, greeting_graph())
        await flow_db.set_human_takeover("bot_1", "c1", True)

        result = await coordinator.handle_inbound_message("bot_1", "c1", text="Hi")
        assert result.human_takeover
        assert delivery.sent == []
        assert await flow_db.get_cursor("bot_1", "c1") is None
        assert [message.direction for message in flow_db.messages] == ["incoming"]

    @pytest.mark.asyncio
    async def test_unsubscribed_contact_abandons_flow(self, coordinator, flow_db, delivery):
        await seed(flow_db, greeting_graph())
        await coordinator.handle_inbound_message("bot_1", "c1", text="Hi")
        await flow_db.save_contact(ContactData(bot_id="bot_1", contact_id="c1", is_subscribed=False))

        result = await coordinator.handle_inbound_message("bot_1", "c1", quick_reply_payload="TOUR_YES")
        assert result.terminal
        assert result.actions_dispatched == 0
        assert not (await flow_db.get_cursor("bot_1", "c1")).is_active()

    @pytest.mark.asyncio
    async def test_lock_timeout(self, coordinator, flow_db):
        await seed(flow_db, greeting_graph())
        coordinator.contact_lock_service.timeout_seconds = 0.05

        async with coordinator.contact_lock_service.acquire("bot_1", "c1"):
            result = await coordinator.handle_inbound_message("bot_1", "c1", text="Hi")
        assert result.error == ErrorKind.LOCK_TIMEOUT

    @pytest.mark.asyncio
    async def test_active_cursor_with_missing_graph(self, coordinator, flow_db, delivery):
        await seed(flow_db)
        await flow_db.put_cursor(
            ExecutionCursor(bot_id="bot_1", contact_id="c1", graph_id="deleted", current_node_id="ask", awaiting_input=True),
            None
        )
        result = await coordinator.handle_inbound_message("bot_1", "c1", text="Bob")
        assert result.error == ErrorKind.VALIDATION
        assert result.terminal
        assert not (await flow_db.get_cursor("bot_1", "c1")).is_active()

    @pytest.mark.asyncio
    async def test_walk_error_is_reported_after_dispatching_earlier_actions(self, coordinator, flow_db, delivery):
        loop = make_graph(
            "loop",
            [node("s", "start"), node("a", "text", message="A"), node("b", "text", message="B")],
            chain("s", "a", "b") + [edge("b", "a")],
            triggers=["loop"],
        )
        await seed(flow_db, loop)
        result = await coordinator.handle_inbound_message("bot_1", "c1", text="loop")

        assert result.error == ErrorKind.LOOP_GUARD
        assert result.terminal
        assert result.actions_dispatched == 2
        assert delivery.texts() == ["A", "B"]


class TestDelivery:
    @pytest.mark.asyncio
    async def test_failure_aborts_rest_of_batch(self, coordinator, flow_db, delivery):
        await seed(flow_db, greeting_graph())
        delivery.fail_on = "send_text"

        result = await coordinator.handle_inbound_message("bot_1", "c1", text="Hi")
        assert result.error == ErrorKind.DELIVERY
        assert result.actions_dispatched == 0
        assert delivery.sent == []

        failure = flow_db.delivery_failures[0]
        assert failure.action["type"] == "send_text"
        assert failure.aborted_count == 1

        cursor = await flow_db.get_cursor("bot_1", "c1")
        assert cursor.current_node_id == "ask"

    @pytest.mark.asyncio
    async def test_failure_mid_batch(self, coordinator, flow_db, delivery):
        await seed(flow_db, greeting_graph())
        delivery.fail_on = "send_quick_replies"

        result = await coordinator.handle_inbound_message("bot_1", "c1", text="Hi")
        assert result.error == ErrorKind.DELIVERY
        assert result.actions_dispatched == 1
        assert flow_db.delivery_failures[0].aborted_count == 0

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failure(self, coordinator, flow_db, delivery):
        await seed(flow_db, greeting_graph())
        delivery.stall_on = "send_quick_replies"

        result = await coordinator.handle_inbound_message("bot_1", "c1", text="Hi")
        assert result.error == ErrorKind.DELIVERY
        assert "timed out" in result.error_message
        assert delivery.texts() == ["Hello!"]


class TestDelays:
    @pytest.mark.asyncio
    async def test_tick_resumes_only_when_due(self, coordinator, flow_db, delivery, later):
        await seed(flow_db, drip_graph())
        await coordinator.handle_inbound_message("bot_1", "c1", text="drip")
        assert delivery.texts() == ["A"]

        assert await coordinator.tick_due_delays(now=later(10)) == 0
        assert delivery.texts() == ["A"]

        assert await coordinator.tick_due_delays(now=later(31)) == 1
        assert delivery.texts() == ["A", "B"]

        # a resumed delay is not delivered a second time
        assert await coordinator.tick_due_delays(now=later(31)) == 0
        assert await coordinator.tick_due_delays(now=later(120)) == 0
        assert delivery.texts() == ["A", "B"]
        cursor = await flow_db.get_cursor("bot_1", "c1")
        assert not cursor.is_active()
        assert cursor.pending_resume_at is None

    @pytest.mark.asyncio
    async def test_inbound_during_delay_is_ignored(self, coordinator, flow_db, delivery):
        await seed(flow_db, drip_graph())
        await coordinator.handle_inbound_message("bot_1", "c1", text="drip")

        result = await coordinator.handle_inbound_message("bot_1", "c1", text="are you there?")
        assert result.actions_dispatched == 0
        assert (await flow_db.get_cursor("bot_1", "c1")).version == 1

    @pytest.mark.asyncio
    async def test_superseded_delay_is_skipped(self, coordinator, flow_db, delivery, later):
        await seed(flow_db, drip_graph(interruptible=True))
        await coordinator.handle_inbound_message("bot_1", "c1", text="drip")
        scheduled = await flow_db.get_cursor("bot_1", "c1")

        # An inbound message interrupts the delay before the tick gets to it
        await coordinator.handle_inbound_message("bot_1", "c1", text="skip ahead")
        assert delivery.texts() == ["A", "B"]

        assert not await coordinator._resume_due(scheduled, later(31))
        assert delivery.texts() == ["A", "B"]

    @pytest.mark.asyncio
    async def test_delay_of_deactivated_bot_is_abandoned(self, coordinator, flow_db, delivery, later):
        await seed(flow_db, drip_graph())
        await coordinator.handle_inbound_message("bot_1", "c1", text="drip")
        await flow_db.save_bot(BotData(id="bot_1", is_active=False))

        assert await coordinator.tick_due_delays(now=later(31)) == 0
        assert delivery.texts() == ["A"]
        assert not (await flow_db.get_cursor("bot_1", "c1")).is_active()

    @pytest.mark.asyncio
    async def test_ticks_for_many_contacts(self, coordinator, flow_db, delivery, later):
        await seed(flow_db, drip_graph())
        for contact_id in ("c1", "c2", "c3"):
            await coordinator.handle_inbound_message("bot_1", contact_id, text="drip")

        assert await coordinator.tick_due_delays(now=later(31)) == 3
        assert delivery.texts("c2") == ["A", "B"]
