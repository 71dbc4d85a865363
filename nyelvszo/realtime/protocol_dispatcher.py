"""
Protocol dispatcher for inbound frames.

Each inbound frame is ``{"type": ..., "payload": {...}}``. The dispatcher
parses it, checks the command's state requirement (anonymous, authenticated,
or a minimum role tier) and routes it to a handler. Domain errors become
error frames; the connection is never closed by the dispatcher.
"""

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from ..auth.gate import AuthenticationGate
from ..auth.roles import Role
from ..error_types import ErrorCode, create_websocket_error_response
from ..events.event_store import EventStore
from ..events.event_types import EXPECTED_VERSION_ANY, NewEvent
from ..exceptions import (
    AuthenticationError,
    AuthorizationError,
    ErrorContext,
    NyelvSzoError,
    ProtocolError,
    RealtimeError,
)
from ..services.search import NullSearchProvider, SearchProvider
from ..structured_logging.enhanced_logging_config import bind_request_context, get_logger
from .channel_multiplexer import ChannelMultiplexer
from .connection_models import Connection
from .connection_registry import ConnectionRegistry
from .envelope import build_frame, stamped

logger = get_logger(__name__)

Handler = Callable[[Connection, dict[str, Any]], Awaitable[None]]

MIN_SEARCH_QUERY_LENGTH = 2
ENTRY_AGGREGATE_TYPE = "Entry"
ENTRY_EDIT_EVENT_TYPE = "EntryEditOperation"


def entry_stream_id(entry_id: str) -> str:
    return f"entry-{entry_id}"


def entry_channel(entry_id: str) -> str:
    return f"entries:{entry_id}"


@dataclass(frozen=True)
class Command:
    """A client command and the connection state it requires."""

    handler: Handler
    requires_auth: bool = False
    min_role: Role | None = None


class ProtocolDispatcher:
    """
    Routes inbound frames of one connection to command handlers.

    The connection is unauthenticated until an `auth` command succeeds and
    stays authenticated until it disconnects.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        multiplexer: ChannelMultiplexer,
        gate: AuthenticationGate,
        event_store: EventStore | None = None,
        search_provider: SearchProvider | None = None,
        max_message_bytes: int = 64 * 1024,
        search_result_limit: int = 10,
        search_suggestion_limit: int = 5,
    ) -> None:
        self.registry = registry
        self.multiplexer = multiplexer
        self.gate = gate
        self.event_store = event_store
        self.search_provider = search_provider or NullSearchProvider()
        self.max_message_bytes = max_message_bytes
        self.search_result_limit = search_result_limit
        self.search_suggestion_limit = search_suggestion_limit
        self.commands: dict[str, Command] = {
            "auth": Command(self.handle_auth),
            "subscribe": Command(self.handle_subscribe),
            "unsubscribe": Command(self.handle_unsubscribe),
            "join_room": Command(self.handle_join_room),
            "leave_room": Command(self.handle_leave_room),
            "search": Command(self.handle_search),
            "typing": Command(self.handle_typing, requires_auth=True),
            "chat_message": Command(self.handle_chat_message, requires_auth=True),
            "entry_edit": Command(self.handle_entry_edit, requires_auth=True, min_role=Role.EDITOR),
            "heartbeat": Command(self.handle_heartbeat),
            "pong": Command(self.handle_pong),
        }

    # Entry point

    async def dispatch(self, connection_id: str, raw: str | bytes) -> None:
        """
        Handle one inbound frame.

        Any inbound data counts as a liveness signal, even when it fails to parse.
        """
        connection = self.registry.get(connection_id)
        if connection is None:
            return
        self.registry.touch(connection_id)

        command_name: str | None = None
        try:
            command_name, payload = self.parse(raw, connection_id)
            command = self.commands.get(command_name)
            if command is None:
                raise ProtocolError(
                    f"Unknown message type: {command_name}",
                    ErrorContext(connection_id=connection_id, command=command_name),
                    code=ErrorCode.UNKNOWN_MESSAGE_TYPE,
                )
            self._authorize(connection, command, command_name)
            await command.handler(connection, payload)
        except AuthenticationError as e:
            await self.registry.send_to(
                connection_id, create_websocket_error_response(e.code, e.user_friendly, frame_type="auth_failed")
            )
        except RealtimeError as e:
            await self.registry.send_to(connection_id, create_websocket_error_response(e.code, e.user_friendly))
        except Exception as e:  # pylint: disable=broad-except  # Reason: one failing frame must not end the connection
            logger.error(
                "Error handling frame",
                connection_id=connection_id,
                command=command_name,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            await self.registry.send_to(connection_id, create_websocket_error_response(ErrorCode.INTERNAL_ERROR))

    def parse(self, raw: str | bytes, connection_id: str | None = None) -> tuple[str, dict[str, Any]]:
        """
        Parse an inbound frame into its type and payload.

        Raises:
            ProtocolError: If the frame is too large, not JSON, has no type, or
                has a non-object payload
        """
        context = ErrorContext(connection_id=connection_id)
        size = len(raw.encode("utf-8")) if isinstance(raw, str) else len(raw)
        if size > self.max_message_bytes:
            raise ProtocolError(context=context, code=ErrorCode.MESSAGE_TOO_LARGE)
        try:
            frame = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ProtocolError(context=context, code=ErrorCode.INVALID_JSON) from e

        if not isinstance(frame, dict) or not isinstance(frame.get("type"), str) or not frame["type"]:
            raise ProtocolError(context=context, code=ErrorCode.MISSING_TYPE)

        payload = frame.get("payload")
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise ProtocolError(context=context, code=ErrorCode.INVALID_PAYLOAD)
        return frame["type"], payload

    def _authorize(self, connection: Connection, command: Command, command_name: str) -> None:
        context = ErrorContext(connection_id=connection.connection_id, user_id=connection.user_id, command=command_name)
        if command.requires_auth and not connection.is_authenticated:
            raise AuthorizationError(context=context, code=ErrorCode.UNAUTHORIZED)
        if command.min_role is not None and connection.effective_role < command.min_role:
            raise AuthorizationError(
                context=context,
                code=ErrorCode.INSUFFICIENT_PERMISSIONS,
                details={"required_role": command.min_role.label, "role": connection.effective_role.label},
            )

    # Handlers

    async def handle_auth(self, connection: Connection, payload: dict[str, Any]) -> None:
        identity = await self.gate.authenticate(connection.connection_id, payload.get("token"))
        bind_request_context(user_id=identity.user_id)
        await self.registry.send_to(
            connection.connection_id, build_frame("auth_success", self.gate.success_payload(identity))
        )
        await self.registry.flush_user_backlog(identity.user_id, connection.connection_id)

    async def handle_subscribe(self, connection: Connection, payload: dict[str, Any]) -> None:
        channels = self._channel_list(connection, payload, "subscribe")
        granted = self.multiplexer.subscribe(connection.connection_id, channels)
        await self.registry.send_to(connection.connection_id, build_frame("subscribed", stamped({"channels": granted})))

    async def handle_unsubscribe(self, connection: Connection, payload: dict[str, Any]) -> None:
        channels = self._channel_list(connection, payload, "unsubscribe")
        removed = self.multiplexer.unsubscribe(connection.connection_id, channels)
        await self.registry.send_to(
            connection.connection_id, build_frame("unsubscribed", stamped({"channels": removed}))
        )

    @staticmethod
    def _channel_list(connection: Connection, payload: dict[str, Any], command: str) -> list[Any]:
        channels = payload.get("channels")
        if not isinstance(channels, list):
            raise ProtocolError(
                context=ErrorContext(connection_id=connection.connection_id, command=command),
                code=ErrorCode.INVALID_CHANNELS,
            )
        return channels

    @staticmethod
    def _room_id(connection: Connection, payload: dict[str, Any], key: str, command: str) -> str:
        room_id = payload.get(key)
        if isinstance(room_id, int) and not isinstance(room_id, bool):
            room_id = str(room_id)
        if not isinstance(room_id, str) or not room_id.strip():
            raise ProtocolError(
                context=ErrorContext(connection_id=connection.connection_id, command=command),
                code=ErrorCode.INVALID_ROOM,
            )
        return room_id

    async def handle_join_room(self, connection: Connection, payload: dict[str, Any]) -> None:
        room_id = self._room_id(connection, payload, "roomId", "join_room")
        member_count = self.multiplexer.join_room(connection.connection_id, room_id)
        await self.registry.send_to(
            connection.connection_id,
            build_frame("room_joined", stamped({"roomId": room_id, "memberCount": member_count})),
        )
        await self.multiplexer.fan_out_room(
            room_id,
            build_frame(
                "user_joined",
                stamped({"roomId": room_id, "userId": connection.user_id, "clientId": connection.connection_id}),
            ),
            exclude={connection.connection_id},
        )

    async def handle_leave_room(self, connection: Connection, payload: dict[str, Any]) -> None:
        room_id = self._room_id(connection, payload, "roomId", "leave_room")
        remaining = self.multiplexer.leave_room(connection.connection_id, room_id)
        await self.registry.send_to(
            connection.connection_id,
            build_frame("room_left", stamped({"roomId": room_id, "memberCount": remaining or 0})),
        )
        if remaining:
            await self.multiplexer.fan_out_room(
                room_id,
                build_frame(
                    "user_left",
                    stamped({"roomId": room_id, "userId": connection.user_id, "clientId": connection.connection_id}),
                ),
            )

    async def handle_search(self, connection: Connection, payload: dict[str, Any]) -> None:
        query = payload.get("query")
        options = payload.get("options") if isinstance(payload.get("options"), dict) else {}
        if not isinstance(query, str) or len(query.strip()) < MIN_SEARCH_QUERY_LENGTH:
            await self.registry.send_to(
                connection.connection_id,
                build_frame("search_results", {"query": query, "results": [], "suggestions": []}),
            )
            return

        context = {
            "userId": connection.user_id,
            "role": int(connection.effective_role),
            "realTime": True,
            "options": options,
        }
        try:
            results = await self.search_provider.search(query, context)
            suggestions = await self.search_provider.suggest(query, context)
        except NyelvSzoError as e:
            raise RealtimeError(
                context=ErrorContext(connection_id=connection.connection_id, command="search"),
                code=ErrorCode.SEARCH_FAILED,
            ) from e
        except Exception as e:  # pylint: disable=broad-except  # Reason: the search backend is an external collaborator
            logger.error(
                "Real-time search failed",
                connection_id=connection.connection_id,
                query=query[:50],
                error=str(e),
                error_type=type(e).__name__,
            )
            raise RealtimeError(code=ErrorCode.SEARCH_FAILED) from e

        await self.registry.send_to(
            connection.connection_id,
            build_frame(
                "search_results",
                {
                    "query": query,
                    "results": results[: self.search_result_limit],
                    "suggestions": suggestions[: self.search_suggestion_limit],
                    "metadata": stamped({"total": len(results), "query": query, "realTime": True}),
                },
            ),
        )
        logger.debug("Real-time search performed", connection_id=connection.connection_id, results=len(results))

    async def handle_typing(self, connection: Connection, payload: dict[str, Any]) -> None:
        room_id = self._room_id(connection, payload, "room", "typing")
        await self.multiplexer.fan_out_room(
            room_id,
            build_frame(
                "user_typing",
                stamped(
                    {
                        "roomId": room_id,
                        "userId": connection.user_id,
                        "email": connection.email,
                        "isTyping": bool(payload.get("isTyping")),
                    }
                ),
            ),
            exclude={connection.connection_id},
        )

    async def handle_chat_message(self, connection: Connection, payload: dict[str, Any]) -> None:
        room_id = self._room_id(connection, payload, "roomId", "chat_message")
        message = payload.get("message")
        if not isinstance(message, str) or not message.strip():
            raise ProtocolError(
                "Chat message text is required",
                ErrorContext(connection_id=connection.connection_id, command="chat_message"),
                code=ErrorCode.INVALID_PAYLOAD,
            )
        await self.multiplexer.fan_out_room(
            room_id,
            build_frame(
                "chat_message",
                stamped({"roomId": room_id, "message": message, "user": connection.user_summary()}),
            ),
            exclude={connection.connection_id},
        )

    async def handle_entry_edit(self, connection: Connection, payload: dict[str, Any]) -> None:
        """
        Append an edit to the entry's stream and fan it out to collaborators.

        The append deliberately skips the version check: simultaneous edits
        are all accepted in arrival order and clients reconcile from the events.
        """
        context = ErrorContext(connection_id=connection.connection_id, user_id=connection.user_id, command="entry_edit")
        entry_id = payload.get("entryId")
        if isinstance(entry_id, int) and not isinstance(entry_id, bool):
            entry_id = str(entry_id)
        if not isinstance(entry_id, str) or not entry_id.strip():
            raise ProtocolError("Entry ID is required", context, code=ErrorCode.INVALID_PAYLOAD)
        if self.event_store is None:
            raise RealtimeError("Event store unavailable", context, code=ErrorCode.EDIT_FAILED)

        operation = payload.get("operation")
        data = payload.get("data")
        stream_id = entry_stream_id(entry_id)
        context.stream_id = stream_id
        try:
            persisted = await self.event_store.append(
                stream_id,
                [
                    NewEvent(
                        event_type=ENTRY_EDIT_EVENT_TYPE,
                        aggregate_id=entry_id,
                        aggregate_type=ENTRY_AGGREGATE_TYPE,
                        payload={"operation": operation, "data": data, "userId": connection.user_id},
                    )
                ],
                expected_version=EXPECTED_VERSION_ANY,
                metadata={"userId": connection.user_id, "source": "websocket", "clientId": connection.connection_id},
            )
        except NyelvSzoError as e:
            raise RealtimeError(context=context, code=ErrorCode.EDIT_FAILED) from e

        event = persisted[0]
        await self.multiplexer.fan_out_many(
            build_frame(
                "entry_updated",
                stamped(
                    {
                        "entryId": entry_id,
                        "operation": operation,
                        "data": data,
                        "user": connection.user_summary(),
                        "event": event.to_dict(),
                    }
                ),
            ),
            channels=[entry_channel(entry_id)],
            rooms=[stream_id],
            exclude={connection.connection_id},
        )
        logger.info(
            "Entry edit recorded",
            connection_id=connection.connection_id,
            user_id=connection.user_id,
            entry_id=entry_id,
            sequence_number=event.sequence_number,
        )

    async def handle_heartbeat(self, connection: Connection, payload: dict[str, Any]) -> None:
        await self.registry.send_to(connection.connection_id, build_frame("heartbeat_ack", stamped({})))

    async def handle_pong(self, connection: Connection, payload: dict[str, Any]) -> None:
        """Reply to a server ping; the liveness timestamp was already refreshed."""
