"""
Build the trigger input handed to the execution engine.

Every shape carries a `webhook.data` envelope (provider, path, config, raw
payload, headers, method) and, where the provider represents a message, a
primary textual `input`.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Optional

from shared.logger import get_logger

logger = get_logger(__name__)

JsonDict = Dict[str, Any]


def build_webhook_envelope(
    *,
    provider: Optional[str],
    path: str,
    provider_config: Optional[Mapping[str, Any]],
    payload: Any,
    headers: Mapping[str, str],
    method: str,
) -> JsonDict:
    return {
        "data": {
            "provider": provider,
            "path": path,
            "providerConfig": dict(provider_config or {}),
            "payload": payload,
            "headers": dict(headers),
            "method": method,
        }
    }


def whatsapp_messages(body: Any) -> list:
    try:
        value = body["entry"][0]["changes"][0]["value"]
    except (KeyError, IndexError, TypeError):
        return []
    return list(value.get("messages") or []) if isinstance(value, dict) else []


def _format_whatsapp(body: Any, envelope: JsonDict) -> Optional[JsonDict]:
    messages = whatsapp_messages(body)
    if not messages:
        return None
    value = body["entry"][0]["changes"][0]["value"]
    message = messages[0]
    text = (message.get("text") or {}).get("body")
    return {
        "input": text or "",
        "whatsapp": {
            "data": {
                "messageId": message.get("id"),
                "from": message.get("from"),
                "phoneNumberId": (value.get("metadata") or {}).get("phone_number_id"),
                "text": text,
                "timestamp": message.get("timestamp"),
                "raw": message,
            }
        },
        "webhook": envelope,
    }


TELEGRAM_MESSAGE_KEYS = ("message", "edited_message", "channel_post", "edited_channel_post")

# (field, messageType, input text); first present field wins
_TELEGRAM_CONTENT: tuple = (
    ("photo", "photo", lambda m: "Photo message"),
    ("document", "document", lambda m: f"Document: {m['document'].get('file_name') or 'file'}"),
    ("audio", "audio", lambda m: f"Audio: {m['audio'].get('title') or 'audio file'}"),
    ("video", "video", lambda m: "Video message"),
    ("voice", "voice", lambda m: "Voice message"),
    ("sticker", "sticker", lambda m: f"Sticker: {m['sticker'].get('emoji') or '🎭'}"),
    ("location", "location", lambda m: "Location shared"),
    ("contact", "contact", lambda m: f"Contact: {m['contact'].get('first_name') or 'contact'}"),
    ("poll", "poll", lambda m: f"Poll: {m['poll'].get('question')}"),
)


def telegram_input_text(message: Mapping[str, Any]) -> str:
    if message.get("text"):
        return message["text"]
    if message.get("caption"):
        return message["caption"]
    for key, _, describe in _TELEGRAM_CONTENT:
        if message.get(key):
            return describe(message)
    return "Message received"


def telegram_message_type(message: Mapping[str, Any]) -> str:
    for key, message_type, _ in _TELEGRAM_CONTENT:
        if message.get(key):
            return message_type
    return "text"


def _format_telegram(body: Any, envelope: JsonDict) -> JsonDict:
    body = body if isinstance(body, dict) else {}
    update_type = next((key for key in TELEGRAM_MESSAGE_KEYS if body.get(key)), None)

    if update_type is None:
        logger.warning(
            "Unknown Telegram update type",
            extra={"update_id": body.get("update_id"), "body_keys": list(body)},
        )
        return {
            "input": "Telegram update received",
            "telegram": {"updateId": body.get("update_id"), "updateType": "unknown", "raw": body},
            "webhook": envelope,
        }

    message = body[update_type]
    sender = message.get("from")
    chat = message.get("chat")
    return {
        "input": telegram_input_text(message),
        "telegram": {
            "message": {
                "id": message.get("message_id"),
                "text": message.get("text"),
                "caption": message.get("caption"),
                "date": message.get("date"),
                "messageType": telegram_message_type(message),
                "raw": message,
            },
            "sender": {
                "id": sender.get("id"),
                "firstName": sender.get("first_name"),
                "lastName": sender.get("last_name"),
                "username": sender.get("username"),
                "languageCode": sender.get("language_code"),
                "isBot": sender.get("is_bot"),
            } if sender else None,
            "chat": {
                "id": chat.get("id"),
                "type": chat.get("type"),
                "title": chat.get("title"),
                "username": chat.get("username"),
                "firstName": chat.get("first_name"),
                "lastName": chat.get("last_name"),
            } if chat else None,
            "updateId": body.get("update_id"),
            "updateType": update_type,
        },
        "webhook": envelope,
    }


def _format_gmail(body: Any, envelope: JsonDict) -> JsonDict:
    if not isinstance(body, dict):
        return {"input": body, "webhook": envelope}
    email = body.get("email") or {}
    formatted = dict(body)
    formatted.setdefault("input", email.get("bodyText") or email.get("snippet") or email.get("subject") or "")
    formatted["webhook"] = envelope
    return formatted


def _format_teams(body: Any, envelope: JsonDict) -> JsonDict:
    body = body if isinstance(body, dict) else {}
    sender = body.get("from") or {}
    conversation = body.get("conversation") or {}
    text = body.get("text") or ""
    return {
        "input": text,
        "microsoftteams": {
            "message": {
                "id": body.get("id") or "",
                "text": text,
                "timestamp": body.get("timestamp") or body.get("localTimestamp") or "",
                "type": body.get("type") or "message",
                "serviceUrl": body.get("serviceUrl"),
                "channelId": body.get("channelId"),
                "raw": body,
            },
            "from": {
                "id": sender.get("id"),
                "name": sender.get("name"),
                "aadObjectId": sender.get("aadObjectId"),
            },
            "conversation": {
                "id": conversation.get("id"),
                "name": conversation.get("name"),
                "conversationType": conversation.get("conversationType"),
                "tenantId": conversation.get("tenantId"),
            },
            "activity": {
                "type": body.get("type"),
                "id": body.get("id"),
                "timestamp": body.get("timestamp"),
                "localTimestamp": body.get("localTimestamp"),
                "serviceUrl": body.get("serviceUrl"),
                "channelId": body.get("channelId"),
            },
        },
        "webhook": envelope,
    }


def _format_slack(body: Any, envelope: JsonDict) -> JsonDict:
    event = body.get("event") if isinstance(body, dict) else None
    text = event.get("text") if isinstance(event, dict) else None
    return {"input": text if text is not None else body, "webhook": envelope}


def _format_generic(body: Any, envelope: JsonDict) -> JsonDict:
    return {"input": body, "webhook": envelope}


_FORMATTERS: Dict[str, Callable[[Any, JsonDict], Optional[JsonDict]]] = {
    "whatsapp": _format_whatsapp,
    "telegram": _format_telegram,
    "gmail": _format_gmail,
    "microsoftteams": _format_teams,
    "slack": _format_slack,
}


def format_webhook_input(
    *,
    provider: Optional[str],
    path: str,
    provider_config: Optional[Mapping[str, Any]],
    workflow_id: Any,
    body: Any,
    headers: Mapping[str, str],
    method: str,
) -> Optional[JsonDict]:
    """
    Shape `body` for the engine. Returns None when a message-style provider
    delivered no message (nothing to execute).
    """
    envelope = build_webhook_envelope(
        provider=provider,
        path=path,
        provider_config=provider_config,
        payload=body,
        headers=headers,
        method=method,
    )
    formatter = _FORMATTERS.get(provider or "", _format_generic)
    formatted = formatter(body, envelope)
    if formatted is None:
        return None
    formatted["workflowId"] = workflow_id
    return formatted


__all__ = [
    "build_webhook_envelope",
    "format_webhook_input",
    "telegram_input_text",
    "telegram_message_type",
    "whatsapp_messages",
]
