"""Connection channel over the API Gateway WebSocket management API."""

import asyncio
from typing import Any

import boto3
from botocore.exceptions import ClientError

from wsagent.channels.base import ChannelGoneError
from wsagent.models.messages import OutboundEvent
from wsagent.utils.logging import get_logger

logger = get_logger(__name__)


def create_management_client(domain_name: str, stage: str, region_name: str | None = None) -> Any:
    """Create the management API client for a WebSocket API stage."""
    return boto3.client(
        "apigatewaymanagementapi",
        endpoint_url=f"https://{domain_name}/{stage}",
        region_name=region_name,
    )


def _is_gone(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") == "GoneException"


class ApiGatewayChannel:
    """Channel that posts events to an API Gateway WebSocket connection."""

    def __init__(self, client: Any, connection_id: str):
        self.client = client
        self.connection_id = connection_id

    async def send(self, event: OutboundEvent) -> None:
        try:
            await asyncio.to_thread(
                self.client.post_to_connection,
                ConnectionId=self.connection_id,
                Data=event.to_json().encode("utf-8"),
            )
        except ClientError as e:
            if not _is_gone(e):
                logger.error(f"Failed to post to connection {self.connection_id}: {e}")
            raise ChannelGoneError(f"Connection {self.connection_id} is unreachable") from e

    async def close(self) -> None:
        try:
            await asyncio.to_thread(self.client.delete_connection, ConnectionId=self.connection_id)
        except ClientError as e:
            if not _is_gone(e):
                raise
            logger.debug(f"Connection {self.connection_id} already closed")
