"""Tests for inbound message routing."""

import json
from datetime import UTC, datetime, timedelta

import pytest

from tests.conftest import text_response
from wsagent.models.messages import UNKNOWN_ACTION_MESSAGE
from wsagent.services.dispatcher import TURN_IN_PROGRESS_MESSAGE, MessageDispatcher


@pytest.fixture
def dispatcher(make_agent):
    return MessageDispatcher(make_agent(text_response("Hi", " there"), text_response("Again")))


class TestPing:
    """Tests for the ping action."""

    @pytest.mark.asyncio
    async def test_ping_replies_pong(self, dispatcher, session, channel):
        """Test that ping is answered without starting a turn."""
        task = await dispatcher.handle(session, channel, '{"action": "ping"}')

        assert task is None
        assert channel.types == ["pong"]
        assert dispatcher.agent.gateway.calls == []

    @pytest.mark.asyncio
    async def test_ping_answered_while_busy(self, dispatcher, session, channel):
        """Test that ping works while a turn is in flight."""
        session.try_begin_turn()

        await dispatcher.handle(session, channel, '{"action": "ping"}')

        assert channel.types == ["pong"]


class TestInputErrors:
    """Malformed messages produce one error event and leave the session idle."""

    @pytest.mark.asyncio
    async def test_unknown_action(self, dispatcher, session, channel):
        """Test that an unknown action is rejected."""
        task = await dispatcher.handle(session, channel, '{"action": "frobnicate"}')

        assert task is None
        assert channel.types == ["error"]
        assert channel.events[0].error == UNKNOWN_ACTION_MESSAGE
        assert session.busy is False

    @pytest.mark.asyncio
    async def test_missing_action(self, dispatcher, session, channel):
        """Test that a message without an action is rejected as unknown."""
        await dispatcher.handle(session, channel, '{"message": "Hello"}')

        assert channel.events[0].error == UNKNOWN_ACTION_MESSAGE

    @pytest.mark.asyncio
    async def test_invalid_json(self, dispatcher, session, channel):
        """Test that non-JSON input is rejected."""
        await dispatcher.handle(session, channel, "not json")

        assert channel.types == ["error"]
        assert channel.events[0].error == "Invalid JSON message"

    @pytest.mark.asyncio
    async def test_chat_without_message(self, dispatcher, session, channel):
        """Test that chat requires a message."""
        task = await dispatcher.handle(session, channel, '{"action": "chat"}')

        assert task is None
        assert channel.events[0].error == "Missing required field: message"
        assert session.busy is False

    @pytest.mark.asyncio
    async def test_temperature_out_of_range(self, dispatcher, session, channel):
        """Test that invalid inference params are rejected."""
        await dispatcher.handle(session, channel, '{"action": "chat", "message": "Hi", "temperature": 3}')

        assert channel.events[0].error.startswith("Invalid field 'temperature'")

    @pytest.mark.asyncio
    async def test_oversized_message(self, make_agent, session, channel):
        """Test that messages over the token limit are rejected before a turn starts."""
        agent = make_agent(text_response("unused"))
        agent.gateway.max_message_chars = 10
        dispatcher = MessageDispatcher(agent)

        task = await dispatcher.handle(session, channel, json.dumps({"action": "chat", "message": "x" * 50}))

        assert task is None
        assert "exceeds token limit" in channel.events[0].error
        assert session.busy is False

    @pytest.mark.asyncio
    async def test_session_usable_after_input_error(self, dispatcher, session, channel):
        """Test that a chat after a rejected message runs normally."""
        await dispatcher.handle(session, channel, '{"action": "frobnicate"}')
        task = await dispatcher.handle(session, channel, '{"action": "chat", "message": "Hello"}')
        await task

        assert channel.types == ["error", "stream", "stream", "complete"]


class TestChat:
    """Tests for the chat action."""

    @pytest.mark.asyncio
    async def test_chat_starts_turn(self, dispatcher, session, channel):
        """Test that chat marks the session busy and returns the turn task."""
        task = await dispatcher.handle(session, channel, '{"action": "chat", "message": "Hello"}')

        assert task is not None
        assert session.busy is True

        result = await task

        assert result.text == "Hi there"
        assert session.busy is False
        assert channel.types == ["stream", "stream", "complete"]

    @pytest.mark.asyncio
    async def test_chat_forwards_params(self, dispatcher, session, channel):
        """Test that systemPrompt, temperature and maxTokens reach the model request."""
        raw = {"action": "chat", "message": "Hello", "systemPrompt": "Be brief", "temperature": 0.1, "maxTokens": 64}

        await (await dispatcher.handle(session, channel, json.dumps(raw)))

        call = dispatcher.agent.gateway.calls[0]
        assert call["system_prompt"] == "Be brief"
        assert call["params"].temperature == 0.1
        assert call["params"].max_tokens == 64

    @pytest.mark.asyncio
    async def test_second_chat_rejected_while_busy(self, dispatcher, session, channel):
        """Test that a chat during a turn never starts a second loop."""
        first = await dispatcher.handle(session, channel, '{"action": "chat", "message": "Hello"}')
        second = await dispatcher.handle(session, channel, '{"action": "chat", "message": "Hello?"}')

        assert second is None
        assert channel.types == ["error"]
        assert channel.events[0].error == TURN_IN_PROGRESS_MESSAGE

        await first

        assert len(dispatcher.agent.gateway.calls) == 1
        assert [message.text for message in session.history if message.role == "user"] == ["Hello"]

    @pytest.mark.asyncio
    async def test_chat_accepted_after_turn_ends(self, dispatcher, session, channel):
        """Test that the next chat is accepted once the previous turn finished."""
        await (await dispatcher.handle(session, channel, '{"action": "chat", "message": "Hello"}'))
        second = await dispatcher.handle(session, channel, '{"action": "chat", "message": "Hello again"}')

        assert second is not None
        await second
        assert session.turn_count == 2


class TestActivity:
    """Inbound messages keep the session fresh."""

    @pytest.mark.asyncio
    async def test_ping_refreshes_activity(self, dispatcher, session, channel):
        """Test that any inbound message updates the activity timestamp."""
        session.last_activity = datetime.now(UTC) - timedelta(hours=2)

        await dispatcher.handle(session, channel, '{"action": "ping"}')

        assert datetime.now(UTC) - session.last_activity < timedelta(minutes=1)

    @pytest.mark.asyncio
    async def test_rejected_message_refreshes_activity(self, dispatcher, session, channel):
        """Test that even malformed input counts as activity."""
        session.last_activity = datetime.now(UTC) - timedelta(hours=2)

        await dispatcher.handle(session, channel, "not json")

        assert datetime.now(UTC) - session.last_activity < timedelta(minutes=1)
