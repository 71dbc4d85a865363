"""
Notification templates and rendering.

Each template holds one body per channel. String values may contain
``{{dotted.path}}`` placeholders resolved against the task data; a
placeholder whose path does not resolve is left as written.
"""

import re
from typing import Any

from ..exceptions import DeliveryError

PLACEHOLDER_PATTERN = re.compile(r"\{\{([^}]+)\}\}")

DEFAULT_TEMPLATES: dict[str, dict[str, dict[str, Any]]] = {
    "entry_created": {
        "websocket": {
            "type": "entry_created",
            "title": "New Entry Created",
            "message": '{{user.name}} created a new entry: "{{entry.title}}"',
            "icon": "plus-circle",
            "category": "content",
        },
        "email": {
            "subject": "New Entry: {{entry.title}}",
            "template": "entry_created",
            "data": ["user", "entry"],
        },
    },
    "entry_updated": {
        "websocket": {
            "type": "entry_updated",
            "title": "Entry Updated",
            "message": '{{user.name}} updated "{{entry.title}}"',
            "icon": "edit",
            "category": "content",
        },
    },
    "entry_approved": {
        "websocket": {
            "type": "entry_approved",
            "title": "Entry Approved",
            "message": 'Your entry "{{entry.title}}" has been approved!',
            "icon": "check-circle",
            "category": "approval",
            "style": "success",
        },
        "email": {
            "subject": "Entry Approved: {{entry.title}}",
            "template": "entry_approved",
            "data": ["entry", "approver"],
        },
    },
    "entry_rejected": {
        "websocket": {
            "type": "entry_rejected",
            "title": "Entry Needs Revision",
            "message": 'Your entry "{{entry.title}}" needs revision. Reason: {{reason}}',
            "icon": "x-circle",
            "category": "approval",
            "style": "warning",
        },
        "email": {
            "subject": "Entry Needs Revision: {{entry.title}}",
            "template": "entry_rejected",
            "data": ["entry", "reason"],
        },
    },
    "collaborative_edit": {
        "websocket": {
            "type": "collaborative_edit",
            "title": "Collaborative Editing",
            "message": '{{user.name}} is editing "{{entry.title}}"',
            "icon": "users",
            "category": "collaboration",
        },
    },
    "system_maintenance": {
        "websocket": {
            "type": "system_maintenance",
            "title": "System Maintenance",
            "message": "Scheduled maintenance: {{maintenance.description}}",
            "icon": "wrench",
            "category": "system",
            "style": "info",
        },
        "sms": {
            "message": "NyelvSzó maintenance: {{maintenance.description}}",
        },
    },
    "welcome": {
        "websocket": {
            "type": "welcome",
            "title": "Welcome to NyelvSzó!",
            "message": "Welcome {{user.name}}! Start exploring our language resources.",
            "icon": "heart",
            "category": "onboarding",
            "style": "success",
        },
        "email": {
            "subject": "Welcome to NyelvSzó!",
            "template": "welcome",
            "data": ["user"],
        },
    },
    "admin_message": {
        "websocket": {
            "type": "{{message.type}}",
            "title": "{{message.title}}",
            "message": "{{message.message}}",
            "sender": "{{sender.email}}",
            "icon": "megaphone",
            "category": "system",
        },
    },
}


def resolve_path(data: Any, path: str) -> Any:
    """Follow a dotted path through nested mappings; None when any step is missing."""
    current = data
    for key in path.split("."):
        if not isinstance(current, dict) or key not in current:
            return None
        current = current[key]
    return current


def interpolate(template: Any, data: dict[str, Any]) -> Any:
    """Replace placeholders in every string of a (possibly nested) template body."""
    if isinstance(template, str):

        def replace(match: re.Match[str]) -> str:
            value = resolve_path(data, match.group(1).strip())
            return match.group(0) if value is None else str(value)

        return PLACEHOLDER_PATTERN.sub(replace, template)
    if isinstance(template, list):
        return [interpolate(item, data) for item in template]
    if isinstance(template, dict):
        return {key: interpolate(value, data) for key, value in template.items()}
    return template


class TemplateRegistry:
    """Named notification templates."""

    def __init__(self, templates: dict[str, dict[str, dict[str, Any]]] | None = None) -> None:
        self._templates: dict[str, dict[str, dict[str, Any]]] = dict(
            DEFAULT_TEMPLATES if templates is None else templates
        )

    def register(self, name: str, bodies: dict[str, dict[str, Any]]) -> None:
        self._templates[name] = bodies

    def __contains__(self, name: object) -> bool:
        return name in self._templates

    def __len__(self) -> int:
        return len(self._templates)

    def names(self) -> list[str]:
        return sorted(self._templates)

    def render(self, name: str, data: dict[str, Any]) -> dict[str, Any]:
        """
        Render every channel body of a template.

        Raises:
            DeliveryError: If the template is unknown
        """
        template = self._templates.get(name)
        if template is None:
            raise DeliveryError(f"Unknown template: {name}", channel="template")
        return {channel: interpolate(body, data) for channel, body in template.items()}
