"""LINE webhook endpoint: signature gate, batch parsing and acknowledgement."""
import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

from httpx import ASGITransport, AsyncClient

from common.config import settings
from common.line import SIGNATURE_HEADER, compute_signature

WEBHOOK_URL = "/webhook"
VALID_SECRET = "test_secret"


def _text_event(text, user_id="U1", reply_token="r1"):
    return {
        "type": "message",
        "replyToken": reply_token,
        "source": {"type": "user", "userId": user_id},
        "timestamp": 1772400000000,
        "message": {"id": "m1", "type": "text", "text": text},
    }


def _body(*events):
    return json.dumps({"destination": "Ubot", "events": list(events)}, ensure_ascii=False).encode("utf-8")


def _headers(body, secret=VALID_SECRET):
    headers = {"Content-Type": "application/json"}
    if secret is not None:
        headers[SIGNATURE_HEADER] = compute_signature(secret, body)
    return headers


def _post(asgi_app, url, **kwargs):
    async def _call():
        transport = ASGITransport(app=asgi_app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            return await client.post(url, **kwargs)
    return asyncio.run(_call())


def test_signed_text_event_is_processed(api_app, repo, mock_send):
    body = _body(_text_event("買狗糧"))
    resp = _post(api_app, WEBHOOK_URL, content=body, headers=_headers(body))

    assert resp.status_code == 200
    assert resp.json() == {"message": "Events processed successfully", "processed": 1, "failed": 0}
    mock_send.assert_awaited_once()
    tasks = asyncio.run(repo.get_user_tasks("U1"))
    assert [t["title"] for t in tasks.data] == ["買狗糧"]


def test_tampered_body_is_rejected_before_dispatch(api_app, repo, mock_send):
    body = _body(_text_event("買狗糧"))
    headers = _headers(body)
    tampered = body.replace("買狗糧".encode("utf-8"), "買貓糧".encode("utf-8"))

    resp = _post(api_app, WEBHOOK_URL, content=tampered, headers=headers)

    assert resp.status_code == 401
    mock_send.assert_not_awaited()
    assert asyncio.run(repo.get_user_tasks("U1")).data == []


def test_non_ascii_signature_header_is_unauthorized(api_app, repo, mock_send):
    body = _body(_text_event("買狗糧"))
    headers = {"Content-Type": "application/json", SIGNATURE_HEADER: b"\xe9abc"}

    resp = _post(api_app, WEBHOOK_URL, content=body, headers=headers)

    assert resp.status_code == 401
    mock_send.assert_not_awaited()
    assert asyncio.run(repo.get_user_tasks("U1")).data == []


def test_missing_signature_header_is_unauthorized(api_app, mock_send):
    body = _body(_text_event("清單"))
    resp = _post(api_app, WEBHOOK_URL, content=body, headers=_headers(body, secret=None))
    assert resp.status_code == 401
    mock_send.assert_not_awaited()


def test_missing_channel_secret_is_a_server_error(api_app, mock_send):
    body = _body(_text_event("清單"))
    with patch.object(settings, "LINE_CHANNEL_SECRET", None):
        resp = _post(api_app, WEBHOOK_URL, content=body, headers=_headers(body))
    assert resp.status_code == 500
    mock_send.assert_not_awaited()


def test_signed_but_malformed_body_is_a_server_error(api_app):
    body = b"{not json"
    resp = _post(api_app, WEBHOOK_URL, content=body, headers=_headers(body))
    assert resp.status_code == 500


def test_empty_batch_is_acknowledged(api_app, mock_send):
    body = _body()
    resp = _post(api_app, WEBHOOK_URL, content=body, headers=_headers(body))
    assert resp.status_code == 200
    assert resp.json()["message"] == "No events to process"
    mock_send.assert_not_awaited()


def test_one_failing_event_does_not_fail_the_batch(api_app):
    async def handle_event(event):
        if event["text"] == "boom":
            raise RuntimeError("handler exploded")
        return "listed"

    interpreter = MagicMock()
    interpreter.handle_event = AsyncMock(side_effect=handle_event)
    body = _body(_text_event("boom", reply_token="r1"), _text_event("清單", reply_token="r2"))

    with patch("api.main.interpreter", interpreter):
        resp = _post(api_app, WEBHOOK_URL, content=body, headers=_headers(body))

    assert resp.status_code == 200
    assert resp.json() == {"message": "Events processed successfully", "processed": 2, "failed": 1}
    assert interpreter.handle_event.await_count == 2


def test_failed_reply_still_acknowledges(api_app, mock_send):
    mock_send.side_effect = RuntimeError("LINE down")
    body = _body(_text_event("清單"))
    resp = _post(api_app, WEBHOOK_URL, content=body, headers=_headers(body))

    assert resp.status_code == 200
    assert resp.json()["failed"] == 1


def test_unsupported_events_are_acknowledged(api_app, mock_send):
    follow = {"type": "follow", "replyToken": "r1", "source": {"userId": "U1"}}
    body = _body(follow)
    resp = _post(api_app, WEBHOOK_URL, content=body, headers=_headers(body))
    assert resp.status_code == 200
    assert resp.json()["failed"] == 0
    mock_send.assert_not_awaited()
