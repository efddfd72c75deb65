"""Per-service webhook payload builders."""

from __future__ import annotations

import json
from datetime import timezone
from typing import Any, Callable

from ..storage.models import WebhookType, ensure_aware
from .models import Notification

CONTENT_TYPE_JSON = "application/json"
FOOTER = "Humantime"

Formatter = Callable[[Notification], bytes]


def _iso(notification: Notification) -> str:
    stamp = ensure_aware(notification.timestamp).astimezone(timezone.utc)
    return stamp.strftime("%Y-%m-%dT%H:%M:%SZ")


def _short(notification: Notification) -> str:
    stamp = notification.timestamp
    return f"{stamp.strftime('%b')} {stamp.day}, {stamp.strftime('%I:%M %p').lstrip('0')}"


def _dump(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def format_discord(notification: Notification) -> bytes:
    embed: dict[str, Any] = {
        "title": notification.title,
        "description": notification.message,
        "color": notification.effective_color,
        "timestamp": _iso(notification),
        "footer": {"text": FOOTER},
    }
    if notification.fields:
        embed["fields"] = [
            {"name": name, "value": value, "inline": True}
            for name, value in notification.fields.items()
        ]
    return _dump({"embeds": [embed]})


def format_slack(notification: Notification) -> bytes:
    blocks: list[dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": notification.title}},
        {"type": "section", "text": {"type": "mrkdwn", "text": notification.message}},
    ]
    if notification.fields:
        blocks.append(
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*{name}*\n{value}"}
                    for name, value in notification.fields.items()
                ],
            }
        )
    blocks.append(
        {
            "type": "context",
            "elements": [{"type": "mrkdwn", "text": f"{FOOTER} | {_short(notification)}"}],
        }
    )
    return _dump(
        {
            "text": f"*{notification.title}*",
            "blocks": blocks,
            "attachments": [
                {"color": f"#{notification.effective_color:06X}", "fallback": notification.title}
            ],
        }
    )


def format_teams(notification: Notification) -> bytes:
    section: dict[str, Any] = {
        "activityTitle": notification.title,
        "activitySubtitle": f"{FOOTER} | {_short(notification)}",
        "text": notification.message,
        "markdown": True,
    }
    if notification.fields:
        section["facts"] = [
            {"name": name, "value": value} for name, value in notification.fields.items()
        ]
    return _dump(
        {
            "@type": "MessageCard",
            "@context": "http://schema.org/extensions",
            "themeColor": f"{notification.effective_color:06X}",
            "summary": notification.title,
            "sections": [section],
        }
    )


def format_generic(notification: Notification) -> bytes:
    payload: dict[str, Any] = {
        "type": notification.type.value,
        "title": notification.title,
        "message": notification.message,
        "timestamp": _iso(notification),
        "color": notification.effective_color,
    }
    if notification.fields:
        payload["fields"] = dict(notification.fields)
    return _dump(payload)


FORMATTERS: dict[WebhookType, Formatter] = {
    WebhookType.DISCORD: format_discord,
    WebhookType.SLACK: format_slack,
    WebhookType.TEAMS: format_teams,
    WebhookType.GENERIC: format_generic,
}


def get_formatter(webhook_type: WebhookType | str | None) -> Formatter:
    try:
        return FORMATTERS[WebhookType(webhook_type)]
    except ValueError:
        return format_generic


__all__ = [
    "CONTENT_TYPE_JSON",
    "FORMATTERS",
    "Formatter",
    "format_discord",
    "format_generic",
    "format_slack",
    "format_teams",
    "get_formatter",
]
