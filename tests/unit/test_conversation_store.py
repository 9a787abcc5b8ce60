import asyncio
from datetime import timedelta

import pytest

from relay.conversations.models import BotState, ConversationStatus, Message, SenderRole
from relay.core.errors import InvalidStatus, UnknownConversation
from relay.realtime.broadcaster import EventName


def test_upsert_is_idempotent(store, broadcaster):
    subscription = broadcaster.subscribe()

    async def scenario():
        first = await store.upsert_on_first_message("5511", "Maria")
        second = await store.upsert_on_first_message("5511", "Someone else")
        return first, second

    first, second = asyncio.run(scenario())

    assert first.customer_id == second.customer_id == "5511"
    assert second.display_name == "Maria"
    assert first.bot_state is BotState.UNINITIALIZED
    assert first.status is ConversationStatus.NEW
    assert len(store) == 1
    assert [delta.event for delta in subscription.pending()] == [EventName.CONVERSATION_UPDATED]


def test_display_name_defaults_to_customer_id(store):
    conversation = asyncio.run(store.upsert_on_first_message("5511"))

    assert conversation.display_name == "5511"


def test_append_to_unknown_conversation_fails(store):
    with pytest.raises(UnknownConversation):
        asyncio.run(store.append_message("missing", Message(sender=SenderRole.CUSTOMER, text="hi")))


def test_append_only_growth(store):
    async def scenario():
        await store.upsert_on_first_message("5511")
        lengths = []
        for index in range(4):
            conversation = await store.append_message(
                "5511", Message(sender=SenderRole.CUSTOMER, text=f"m{index}", id=f"id-{index}")
            )
            lengths.append(len(conversation.messages))
        return lengths

    lengths = asyncio.run(scenario())

    assert lengths == [1, 2, 3, 4]
    assert [message.text for message in store.get("5511").messages] == ["m0", "m1", "m2", "m3"]


def test_returned_conversation_is_detached(store):
    async def scenario():
        await store.upsert_on_first_message("5511")
        return await store.append_message("5511", Message(sender=SenderRole.CUSTOMER, text="hi"))

    conversation = asyncio.run(scenario())
    conversation.messages.clear()
    conversation.status = ConversationStatus.CLOSED

    stored = store.get("5511")
    assert len(stored.messages) == 1
    assert stored.status is ConversationStatus.NEW


def test_timestamps_never_go_backwards(store):
    async def scenario():
        await store.upsert_on_first_message("5511")
        first = Message(sender=SenderRole.CUSTOMER, text="late clock", id="a")
        await store.append_message("5511", first)
        earlier = Message(
            sender=SenderRole.CUSTOMER,
            text="early clock",
            id="b",
            timestamp=first.timestamp - timedelta(minutes=5),
        )
        return await store.append_message("5511", earlier)

    conversation = asyncio.run(scenario())

    assert conversation.messages[1].timestamp == conversation.messages[0].timestamp


def test_set_status_publishes_status_delta(store, broadcaster):
    async def scenario():
        await store.upsert_on_first_message("5511")
        subscription = broadcaster.subscribe()
        conversation = await store.set_status("5511", "in_progress")
        return conversation, subscription.pending()

    conversation, deltas = asyncio.run(scenario())

    assert conversation.status is ConversationStatus.IN_PROGRESS
    assert len(deltas) == 1
    assert deltas[0].event is EventName.STATUS_CHANGED
    assert deltas[0].data == {"customer_id": "5511", "status": "in_progress"}


def test_set_status_rejects_unknown_values(store, broadcaster):
    async def scenario():
        await store.upsert_on_first_message("5511")
        subscription = broadcaster.subscribe()
        with pytest.raises(InvalidStatus):
            await store.set_status("5511", "archived")
        return subscription.pending()

    assert asyncio.run(scenario()) == []
    assert store.get("5511").status is ConversationStatus.NEW


def test_set_status_unknown_conversation(store):
    with pytest.raises(UnknownConversation):
        asyncio.run(store.set_status("missing", ConversationStatus.CLOSED))


def test_ticket_reference_is_stored_and_broadcast(store, broadcaster):
    async def scenario():
        await store.upsert_on_first_message("5511")
        subscription = broadcaster.subscribe()
        conversation = await store.set_ticket_reference("5511", "OS-2024-118")
        return conversation, subscription.pending()

    conversation, deltas = asyncio.run(scenario())

    assert conversation.ticket_reference == "OS-2024-118"
    assert [delta.event for delta in deltas] == [EventName.CONVERSATION_UPDATED]
    assert deltas[0].data["conversation"]["ticket_reference"] == "OS-2024-118"


def test_ticket_reference_unknown_conversation(store):
    with pytest.raises(UnknownConversation):
        asyncio.run(store.set_ticket_reference("missing", "OS-1"))


def test_bot_transition_on_new_conversation(store):
    async def scenario():
        await store.upsert_on_first_message("5511")
        return await store.apply_bot_transition("5511", "hello")

    outcome = asyncio.run(scenario())

    assert outcome.reply_text.startswith("Hello! Welcome")
    assert outcome.conversation.bot_state is BotState.AWAITING_CHOICE
    assert outcome.conversation.status is ConversationStatus.AWAITING_RESPONSE


def test_bot_transition_with_reply_publishes_nothing_by_itself(store, broadcaster):
    async def scenario():
        await store.upsert_on_first_message("5511")
        await store.apply_bot_transition("5511", "hello")
        subscription = broadcaster.subscribe()
        outcome = await store.apply_bot_transition("5511", "2")
        return outcome, subscription.pending()

    outcome, deltas = asyncio.run(scenario())

    assert outcome.conversation.status is ConversationStatus.STATUS_INQUIRY
    assert outcome.conversation.bot_state is BotState.AWAITING_FOLLOWUP
    assert deltas == []


def test_operator_message_hands_off_conversation(store):
    async def scenario():
        await store.upsert_on_first_message("5511")
        await store.apply_bot_transition("5511", "hello")
        await store.append_message(
            "5511", Message(sender=SenderRole.OPERATOR, text="I'll help", operator_id="ana")
        )
        return await store.apply_bot_transition("5511", "1")

    outcome = asyncio.run(scenario())

    assert outcome.reply_text is None
    assert outcome.conversation.bot_state is BotState.FORWARDED
    assert outcome.conversation.assigned_operator == "ana"
    assert outcome.conversation.status is ConversationStatus.AWAITING_RESPONSE


def test_concurrent_writes_serialize_per_customer(store, broadcaster):
    async def scenario():
        await store.upsert_on_first_message("5511")
        subscription = broadcaster.subscribe()
        operations = []
        for index in range(20):
            if index % 5 == 0:
                operations.append(store.set_status("5511", ConversationStatus.IN_PROGRESS))
            else:
                operations.append(
                    store.append_message(
                        "5511", Message(sender=SenderRole.CUSTOMER, text=str(index), id=f"id-{index}")
                    )
                )
        await asyncio.gather(*operations)
        return subscription.pending()

    deltas = asyncio.run(scenario())
    stored = store.get("5511")

    assert len(stored.messages) == 16
    assert len(deltas) == 20
    appended = [delta for delta in deltas if delta.event is EventName.CONVERSATION_UPDATED]
    # Each broadcast record extends the previous one by exactly one message.
    sizes = [len(delta.data["conversation"]["messages"]) for delta in appended]
    assert sizes == list(range(1, 17))
    broadcast_ids = [message["id"] for message in appended[-1].data["conversation"]["messages"]]
    assert broadcast_ids == [message.id for message in stored.messages]


def test_snapshot_is_keyed_by_customer(store):
    async def scenario():
        await store.upsert_on_first_message("a")
        await store.upsert_on_first_message("b", "Bea")

    asyncio.run(scenario())
    snapshot = store.snapshot()

    assert set(snapshot) == {"a", "b"}
    assert snapshot["b"]["display_name"] == "Bea"
    assert snapshot["a"]["bot_state"] == "uninitialized"
