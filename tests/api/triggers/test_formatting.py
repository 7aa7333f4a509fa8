from __future__ import annotations

from api.triggers.formatting import format_webhook_input, telegram_input_text, telegram_message_type


def _format(provider, body, **kwargs):
    return format_webhook_input(
        provider=provider,
        path="hook-path",
        provider_config=kwargs.get("provider_config", {"foo": "bar"}),
        workflow_id=7,
        body=body,
        headers={"content-type": "application/json"},
        method="POST",
    )


def test_every_shape_carries_envelope_and_workflow_id():
    result = _format("generic", {"order": 1})
    assert result["input"] == {"order": 1}
    assert result["workflowId"] == 7
    data = result["webhook"]["data"]
    assert data == {
        "provider": "generic",
        "path": "hook-path",
        "providerConfig": {"foo": "bar"},
        "payload": {"order": 1},
        "headers": {"content-type": "application/json"},
        "method": "POST",
    }


def test_telegram_text_message():
    result = _format("telegram", {"update_id": 1, "message": {"message_id": 42, "text": "hi"}})
    assert result["input"] == "hi"
    assert result["telegram"]["message"]["id"] == 42
    assert result["telegram"]["message"]["messageType"] == "text"
    assert result["telegram"]["updateType"] == "message"
    assert result["telegram"]["sender"] is None


def test_telegram_content_fallbacks():
    assert telegram_input_text({"caption": "look"}) == "look"
    assert telegram_input_text({"photo": [{}]}) == "Photo message"
    assert telegram_input_text({"document": {"file_name": "a.pdf"}}) == "Document: a.pdf"
    assert telegram_input_text({"poll": {"question": "Lunch?"}}) == "Poll: Lunch?"
    assert telegram_input_text({}) == "Message received"
    assert telegram_message_type({"voice": {"duration": 2}}) == "voice"


def test_telegram_edited_and_unknown_updates():
    edited = _format("telegram", {"edited_message": {"message_id": 5, "text": "fixed", "from": {"id": 9}}})
    assert edited["telegram"]["updateType"] == "edited_message"
    assert edited["telegram"]["sender"]["id"] == 9

    unknown = _format("telegram", {"update_id": 3, "my_chat_member": {}})
    assert unknown["input"] == "Telegram update received"
    assert unknown["telegram"]["updateType"] == "unknown"


def test_whatsapp_message_and_empty_payload():
    body = {
        "entry": [
            {
                "changes": [
                    {
                        "value": {
                            "metadata": {"phone_number_id": "555"},
                            "messages": [
                                {"id": "wamid.1", "from": "3100", "timestamp": "1700", "text": {"body": "hello"}}
                            ],
                        }
                    }
                ]
            }
        ]
    }
    result = _format("whatsapp", body)
    assert result["input"] == "hello"
    assert result["whatsapp"]["data"]["messageId"] == "wamid.1"
    assert result["whatsapp"]["data"]["phoneNumberId"] == "555"

    assert _format("whatsapp", {"entry": [{"changes": [{"value": {"statuses": []}}]}]}) is None


def test_teams_message():
    body = {
        "type": "message",
        "id": "1",
        "text": "<at>Bot</at> deploy",
        "from": {"id": "u1", "name": "Dana"},
        "conversation": {"id": "c1"},
    }
    result = _format("microsoftteams", body)
    assert result["input"] == "<at>Bot</at> deploy"
    assert result["microsoftteams"]["from"]["name"] == "Dana"
    assert result["microsoftteams"]["conversation"]["id"] == "c1"
    assert result["microsoftteams"]["activity"]["type"] == "message"


def test_slack_event_text_and_gmail_passthrough():
    slack = _format("slack", {"event": {"type": "message", "text": "ping"}})
    assert slack["input"] == "ping"

    gmail = _format("gmail", {"email": {"subject": "Invoice", "snippet": "Please pay"}, "timestamp": "t"})
    assert gmail["input"] == "Please pay"
    assert gmail["email"]["subject"] == "Invoice"
    assert gmail["timestamp"] == "t"

    full = _format("gmail", {"email": {"bodyText": "Full text", "snippet": "Full"}})
    assert full["input"] == "Full text"
