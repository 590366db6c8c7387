"""Routing of inbound connection messages."""

import asyncio
from typing import assert_never

from wsagent.channels import ConnectionChannel, safe_send
from wsagent.models.llm import InferenceParams
from wsagent.models.messages import ChatAction, ErrorEvent, InputError, PingAction, PongEvent, parse_inbound
from wsagent.models.session import Session
from wsagent.services.agent import AgentLoop
from wsagent.utils.logging import get_logger

logger = get_logger(__name__)

TURN_IN_PROGRESS_MESSAGE = "A turn is already in progress"


class MessageDispatcher:
    """Turns inbound messages into pongs, error events or agent turns."""

    def __init__(self, agent: AgentLoop):
        self.agent = agent

    async def handle(self, session: Session, channel: ConnectionChannel, raw: str | bytes) -> asyncio.Task | None:
        """Handle one inbound message.

        A chat starts its turn as a background task so the connection keeps
        receiving while the turn runs. The session is marked busy before this
        method returns, so a second chat is rejected deterministically.

        Returns:
            The turn task if a turn was started, None otherwise
        """
        session.update_activity()

        try:
            message = parse_inbound(raw)
        except InputError as e:
            logger.warning(f"Rejected message on {session.connection_id}: {e}")
            await safe_send(channel, ErrorEvent(error=str(e)))
            return None

        match message:
            case PingAction():
                await safe_send(channel, PongEvent())
                return None
            case ChatAction():
                return await self._start_turn(session, channel, message)
            case _:
                assert_never(message)

    async def _start_turn(
        self, session: Session, channel: ConnectionChannel, message: ChatAction
    ) -> asyncio.Task | None:
        try:
            self.agent.gateway.validate_message_tokens(message.message)
        except ValueError as e:
            logger.warning(f"Message validation error for {session.connection_id}: {e}")
            await safe_send(channel, ErrorEvent(error=str(e)))
            return None

        if not session.try_begin_turn():
            await safe_send(channel, ErrorEvent(error=TURN_IN_PROGRESS_MESSAGE))
            return None

        params = InferenceParams(temperature=message.temperature, max_tokens=message.max_tokens)
        return asyncio.create_task(
            self.agent.run_turn(session, channel, message.message, system_prompt=message.system_prompt, params=params),
            name=f"turn-{session.connection_id}-{session.turn_count}",
        )
