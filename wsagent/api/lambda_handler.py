"""AWS Lambda entry point for API Gateway WebSocket routes.

Sessions live in the warm container that received ``$connect``. A
``$default`` message that lands on a fresh container starts a new session.
A busy session only rejects chats routed to the same container.
"""

import asyncio
from typing import Any

from wsagent.channels.apigateway import ApiGatewayChannel, create_management_client
from wsagent.config import get_settings
from wsagent.services.agent import get_agent_loop
from wsagent.services.dispatcher import MessageDispatcher
from wsagent.services.session_manager import get_session_manager
from wsagent.utils.logging import LogConfig, get_logger, setup_logging
from wsagent.utils.tracing import TracingConfig, flush_tracing, setup_tracing

settings = get_settings()
setup_logging(LogConfig(level=settings.log_level))
setup_tracing(
    TracingConfig(
        enabled=settings.tracing_enabled,
        service_name=settings.otel_service_name,
        otlp_endpoint=settings.otlp_endpoint,
        aws_region=settings.aws_region,
    )
)
logger = get_logger(__name__)

# Async clients are bound to the loop they first ran on, so keep one for the container
_loop = asyncio.new_event_loop()
_management_clients: dict[str, Any] = {}


def _response(status_code: int, body: str) -> dict[str, Any]:
    return {"statusCode": status_code, "body": body}


def _management_client(domain_name: str, stage: str) -> Any:
    endpoint = f"{domain_name}/{stage}"
    if endpoint not in _management_clients:
        _management_clients[endpoint] = create_management_client(domain_name, stage, settings.aws_region)
    return _management_clients[endpoint]


def handle_connect(connection_id: str, authorizer: dict[str, Any]) -> dict[str, Any]:
    """Open a session for a new connection, recording the authorizer principal."""
    get_session_manager().open_session(
        connection_id=connection_id,
        user_id=authorizer.get("userId") or authorizer.get("principalId"),
        email=authorizer.get("email"),
    )
    return _response(200, "Connected")


def handle_disconnect(connection_id: str) -> dict[str, Any]:
    get_session_manager().close_session(connection_id)
    return _response(200, "Disconnected")


async def handle_message(event: dict[str, Any]) -> dict[str, Any]:
    """Dispatch one inbound message and wait for any turn it starts."""
    request_context = event["requestContext"]
    connection_id = request_context["connectionId"]

    session_manager = get_session_manager()
    session = session_manager.get_session(connection_id)
    if session is None:
        logger.info(f"No session for {connection_id} in this container, opening one")
        session = session_manager.open_session(connection_id=connection_id)

    channel = ApiGatewayChannel(
        _management_client(request_context["domainName"], request_context["stage"]),
        connection_id,
    )
    turn = await MessageDispatcher(get_agent_loop()).handle(session, channel, event.get("body") or "")
    if turn is not None:
        await turn

    return _response(200, "OK")


def lambda_handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    """AWS Lambda entry point for the WebSocket API."""
    request_context = event.get("requestContext", {})
    route_key = request_context.get("routeKey")
    connection_id = request_context.get("connectionId")
    logger.info(f"Route {route_key} for connection {connection_id}")

    try:
        match route_key:
            case "$connect":
                return handle_connect(connection_id, request_context.get("authorizer") or {})
            case "$disconnect":
                return handle_disconnect(connection_id)
            case "$default":
                return _loop.run_until_complete(handle_message(event))
            case _:
                logger.warning(f"Unknown route: {route_key}")
                return _response(400, f"Unknown route: {route_key}")
    except Exception as e:
        logger.error(f"Error handling {route_key} for {connection_id}: {e}", exc_info=True)
        return _response(500, "Internal server error")
    finally:
        flush_tracing()
