"""
Role tiers and channel access grants.

Channel names have the form ``<namespace>:<topic>``. Access is granted by
structured ChannelGrant values rather than string-prefix checks: a grant names
a namespace, optionally a single topic, and the lowest tier allowed to use it.
Higher tiers inherit every grant of the tiers below them.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Any

WILDCARD_TOPIC = "*"


class Role(IntEnum):
    """Ordered role tiers; numeric values match the user store's role column."""

    ANONYMOUS = 0
    USER = 1
    EDITOR = 2
    ADMIN = 3

    @classmethod
    def parse(cls, value: Any) -> "Role":
        """
        Parse a role claim given either as its number or its name.

        Raises:
            ValueError: If the value does not name a role
        """
        if isinstance(value, bool):
            raise ValueError(f"Invalid role: {value!r}")
        if isinstance(value, int):
            return cls(value)
        if isinstance(value, str):
            text = value.strip()
            if text.isdigit():
                return cls(int(text))
            try:
                return cls[text.upper()]
            except KeyError as e:
                raise ValueError(f"Invalid role: {value!r}") from e
        raise ValueError(f"Invalid role: {value!r}")

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class ChannelName:
    """A parsed topic channel name."""

    namespace: str
    topic: str

    @classmethod
    def parse(cls, name: str) -> "ChannelName | None":
        """Parse ``namespace:topic``; returns None for anything malformed."""
        if not isinstance(name, str):
            return None
        namespace, sep, topic = name.partition(":")
        if not sep or not namespace or not topic:
            return None
        return cls(namespace, topic)

    @property
    def is_wildcard(self) -> bool:
        return self.topic == WILDCARD_TOPIC

    def __str__(self) -> str:
        return f"{self.namespace}:{self.topic}"


@dataclass(frozen=True)
class ChannelGrant:
    """
    Permission to use channels of one namespace.

    A grant with ``topic=None`` covers every topic in the namespace, including
    the namespace wildcard subscription ``<namespace>:*``.
    """

    namespace: str
    topic: str | None
    tier: Role

    def matches(self, channel: ChannelName) -> bool:
        """True when this grant covers the given channel."""
        if channel.namespace != self.namespace:
            return False
        return self.topic is None or self.topic == channel.topic

    @property
    def is_literal(self) -> bool:
        return self.topic is not None


CHANNEL_GRANTS: tuple[ChannelGrant, ...] = (
    ChannelGrant("entries", "public", Role.ANONYMOUS),
    ChannelGrant("search", "suggestions", Role.ANONYMOUS),
    # Per-entry topics (entries:<entryId>) carry live edits of one entry
    ChannelGrant("entries", None, Role.ANONYMOUS),
    ChannelGrant("events", None, Role.USER),
    ChannelGrant("entries", "editing", Role.EDITOR),
    ChannelGrant("collaboration", None, Role.EDITOR),
    ChannelGrant("admin", None, Role.ADMIN),
    ChannelGrant("system", None, Role.ADMIN),
)


def required_tier(channel: ChannelName, grants: tuple[ChannelGrant, ...] = CHANNEL_GRANTS) -> Role | None:
    """
    Return the lowest tier allowed on a channel, or None if no grant covers it.

    A literal grant for the exact topic wins over a namespace-wide grant, so
    ``entries:editing`` stays editor-only even though ``entries:<id>`` is open.
    A wildcard subscription needs the namespace-wide grant.
    """
    literal = [g for g in grants if g.is_literal and g.matches(channel)]
    if literal:
        return min(g.tier for g in literal)
    namespace_wide = [g for g in grants if not g.is_literal and g.matches(channel)]
    if not namespace_wide:
        return None
    tier = min(g.tier for g in namespace_wide)
    if channel.is_wildcard:
        # Wildcards also cover the literal topics, so they need the highest of them
        literal_tiers = [g.tier for g in grants if g.is_literal and g.namespace == channel.namespace]
        tier = max([tier, *literal_tiers])
    return tier


def can_access_channel(role: Role, name: str) -> bool:
    """True when a connection of the given role may subscribe to a channel name."""
    channel = ChannelName.parse(name)
    if channel is None:
        return False
    tier = required_tier(channel)
    return tier is not None and role >= tier


def allowed_channel_grants(role: Role) -> list[str]:
    """Human-readable list of channel patterns available to a role."""
    return [f"{g.namespace}:{g.topic or WILDCARD_TOPIC}" for g in CHANNEL_GRANTS if role >= g.tier]


def features_for(role: Role) -> dict[str, bool]:
    """Capability flags announced to the client after authentication."""
    return {
        "realTimeSearch": True,
        "liveCollaboration": role >= Role.EDITOR,
        "pushNotifications": role >= Role.USER,
        "adminFeatures": role >= Role.ADMIN,
    }
