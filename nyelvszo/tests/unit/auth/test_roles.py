"""
Unit tests for role tiers and channel grants.

Tests Role parsing and the structured channel access rules.
"""

import pytest

from nyelvszo.auth.roles import (
    ChannelName,
    Role,
    allowed_channel_grants,
    can_access_channel,
    features_for,
    required_tier,
)


class TestRoleParse:
    """Tests for Role.parse."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (1, Role.USER),
            ("2", Role.EDITOR),
            ("admin", Role.ADMIN),
            (" Editor ", Role.EDITOR),
            (0, Role.ANONYMOUS),
        ],
    )
    def test_parse_accepts_numbers_and_names(self, value, expected):
        """Test parse accepts numeric and named roles."""
        assert Role.parse(value) == expected

    @pytest.mark.parametrize("value", [True, "superuser", 7, None, 1.5])
    def test_parse_rejects_unknown_values(self, value):
        """Test parse raises ValueError for values that do not name a role."""
        with pytest.raises(ValueError):
            Role.parse(value)

    def test_roles_are_ordered(self):
        """Test role tiers compare by privilege."""
        assert Role.ANONYMOUS < Role.USER < Role.EDITOR < Role.ADMIN
        assert Role.EDITOR.label == "editor"


class TestChannelName:
    """Tests for ChannelName.parse."""

    def test_parse_splits_namespace_and_topic(self):
        """Test a well-formed name is split on the first colon."""
        channel = ChannelName.parse("entries:42")
        assert channel == ChannelName("entries", "42")
        assert str(channel) == "entries:42"
        assert not channel.is_wildcard

    @pytest.mark.parametrize("name", ["entries", ":public", "entries:", "", 42])
    def test_parse_rejects_malformed_names(self, name):
        """Test malformed channel names parse to None."""
        assert ChannelName.parse(name) is None


class TestChannelAccess:
    """Tests for channel grant evaluation."""

    @pytest.mark.parametrize(
        ("role", "channel", "allowed"),
        [
            (Role.ANONYMOUS, "entries:public", True),
            (Role.ANONYMOUS, "search:suggestions", True),
            (Role.ANONYMOUS, "entries:42", True),
            (Role.ANONYMOUS, "entries:editing", False),
            (Role.ANONYMOUS, "events:Entry", False),
            (Role.ANONYMOUS, "admin:*", False),
            (Role.USER, "events:Entry", True),
            (Role.USER, "collaboration:room-1", False),
            (Role.EDITOR, "entries:editing", True),
            (Role.EDITOR, "collaboration:room-1", True),
            (Role.EDITOR, "system:alerts", False),
            (Role.ADMIN, "admin:*", True),
            (Role.ADMIN, "system:alerts", True),
            (Role.ADMIN, "unknown:topic", False),
        ],
    )
    def test_can_access_channel(self, role, channel, allowed):
        """Test each tier reaches its own grants and inherits lower ones."""
        assert can_access_channel(role, channel) is allowed

    def test_wildcard_needs_highest_literal_tier(self):
        """Test a namespace wildcard requires the tier of its most restricted topic."""
        assert required_tier(ChannelName("entries", "*")) == Role.EDITOR
        assert not can_access_channel(Role.USER, "entries:*")
        assert can_access_channel(Role.EDITOR, "entries:*")

    def test_literal_grant_wins_over_namespace_grant(self):
        """Test entries:editing stays editor-only although entries:<id> is open."""
        assert required_tier(ChannelName("entries", "editing")) == Role.EDITOR
        assert required_tier(ChannelName("entries", "7")) == Role.ANONYMOUS

    def test_allowed_channel_grants_grow_with_role(self):
        """Test higher tiers list every grant of the lower tiers."""
        anonymous = set(allowed_channel_grants(Role.ANONYMOUS))
        admin = set(allowed_channel_grants(Role.ADMIN))
        assert "entries:public" in anonymous
        assert "admin:*" not in anonymous
        assert anonymous < admin

    def test_features_for_role(self):
        """Test capability flags follow the role tier."""
        assert features_for(Role.USER) == {
            "realTimeSearch": True,
            "liveCollaboration": False,
            "pushNotifications": True,
            "adminFeatures": False,
        }
        assert features_for(Role.ADMIN)["adminFeatures"] is True
