"""
Service boundaries

Narrow capabilities the messaging core depends on. Concrete
implementations are supplied at construction time by app.core.deps.
"""

import enum
from typing import Any, Protocol


class RelationshipOracle(Protocol):
    async def is_blocked(self, user_a: str, user_b: str) -> bool:
        """True when either user blocks the other"""
        ...


class Broadcaster(Protocol):
    async def emit_new_message(self, conversation_id: str, message: dict[str, Any], sender_id: str) -> None: ...

    async def emit_reaction_delta(self, conversation_id: str, payload: dict[str, Any]) -> None: ...

    async def emit_conversation_list_changed(self, user_id: str) -> None: ...

    async def emit_to_user(self, user_id: str, event: str, data: dict[str, Any]) -> None: ...


class NotificationSink(Protocol):
    async def message_received(
        self,
        *,
        recipient_id: str,
        is_muted: bool,
        sender_id: str,
        sender_name: str,
        conversation_id: str,
        message_id: int,
        preview: str,
    ) -> None: ...


class PresenceQuery(Protocol):
    async def is_user_active_within_last_minutes(self, user_id: str, minutes: int) -> bool: ...


class PushResult(str, enum.Enum):
    OK = "ok"
    PERMANENT_FAILURE = "permanent_failure"
    TRANSIENT_FAILURE = "transient_failure"


class PushProvider(Protocol):
    async def deliver(
        self,
        token: str,
        platform: str,
        title: str,
        body: str,
        data: dict[str, str],
    ) -> PushResult: ...
