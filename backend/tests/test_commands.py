import asyncio
from datetime import date, timedelta
from unittest.mock import AsyncMock

import pytest

from common.commands import (
    APOLOGY_TEXT, NOTHING_PENDING_TEXT, TASK_NOT_FOUND_TEXT, CommandInterpreter, first_incomplete, parse_command,
)
from common.flex import PUPPY_EMOJIS
from common.repository import OperationResult

LOCAL_TODAY = date(2026, 3, 2)


def _text_event(text, user_id="U1", reply_token="r1"):
    return {"kind": "message", "user_id": user_id, "reply_token": reply_token, "text": text, "message_id": "m1"}


def _postback_event(data, user_id="U1", reply_token="r1"):
    return {"kind": "postback", "user_id": user_id, "reply_token": reply_token, "data": data}


def _texts(node):
    found = []
    if isinstance(node, dict):
        if node.get("type") == "text":
            found.append(node["text"])
        for value in node.values():
            found.extend(_texts(value))
    elif isinstance(node, list):
        for value in node:
            found.extend(_texts(value))
    return found


def _last_reply(mock_send):
    token, message = mock_send.await_args.args
    return token, message


@pytest.mark.parametrize("kind,payload,expected", [
    ("message", "查看任務", ("list", None)),
    ("message", " 汪汪清單 ", ("list", None)),
    ("message", "完成", ("complete_next", None)),
    ("message", "餵食小汪", ("complete_next", None)),
    ("message", "  買狗糧  ", ("create", "買狗糧")),
    ("message", "   ", ("ignore", None)),
    ("postback", "complete_task_task_1_abc", ("toggle", "task_1_abc")),
    ("postback", "complete_task_", ("ignore", None)),
    ("postback", "action=other", ("ignore", None)),
])
def test_parse_command(kind, payload, expected):
    assert parse_command(kind, payload) == expected


def test_first_incomplete_takes_list_order():
    tasks = [{"task_id": "a", "completed": True}, {"task_id": "b", "completed": False}, {"task_id": "c", "completed": False}]
    assert first_incomplete(tasks)["task_id"] == "b"
    assert first_incomplete([{"task_id": "a", "completed": True}]) is None


def test_new_text_creates_task_for_today_and_replies_with_card(interpreter, repo, mock_send):
    async def _run():
        outcome = await interpreter.handle_event(_text_event("買狗糧"))
        tasks = await repo.get_user_tasks("U1")
        return outcome, tasks

    outcome, tasks = asyncio.run(_run())
    assert outcome == "created"
    assert tasks.data[0]["title"] == "買狗糧"
    assert tasks.data[0]["task_date"] == LOCAL_TODAY
    mock_send.assert_awaited_once()
    token, card = _last_reply(mock_send)
    assert token == "r1"
    assert card["type"] == "flex"
    assert "買狗糧" in _texts(card["contents"])
    assert "0 / 1 完成" in _texts(card["contents"])


def test_list_with_no_tasks_shows_sleepy_puppy(interpreter, mock_send):
    assert asyncio.run(interpreter.handle_event(_text_event("清單"))) == "listed"
    _, card = _last_reply(mock_send)
    assert f"{PUPPY_EMOJIS['sleepy']} 小汪的任務清單" in _texts(card["contents"])


def test_list_only_shows_today_by_default(interpreter, repo, mock_send):
    async def _run():
        await repo.create_task({"line_user_id": "U1", "title": "今天的", "task_date": LOCAL_TODAY})
        await repo.create_task({"line_user_id": "U1", "title": "昨天的", "task_date": LOCAL_TODAY - timedelta(days=1)})
        return await interpreter.handle_event(_text_event("任務"))

    asyncio.run(_run())
    texts = _texts(_last_reply(mock_send)[1]["contents"])
    assert "今天的" in texts
    assert "昨天的" not in texts


def test_list_scope_all_shows_every_task(repo, mock_send):
    interpreter = CommandInterpreter(repository=repo, send_reply=mock_send, today_only=False)

    async def _run():
        await repo.create_task({"line_user_id": "U1", "title": "昨天的", "task_date": LOCAL_TODAY - timedelta(days=1)})
        return await interpreter.handle_event(_text_event("任務"))

    asyncio.run(_run())
    assert "昨天的" in _texts(_last_reply(mock_send)[1]["contents"])


def test_toggle_postback_marks_task_and_redraws_card(interpreter, repo, mock_send):
    async def _run():
        task = (await repo.create_task({"line_user_id": "U1", "title": "散步", "task_date": LOCAL_TODAY})).data
        outcome = await interpreter.handle_event(_postback_event(f"complete_task_{task['task_id']}"))
        stored = await repo.get_user_tasks("U1")
        return outcome, stored

    outcome, stored = asyncio.run(_run())
    assert outcome == "toggled"
    assert stored.data[0]["completed"] is True
    texts = _texts(_last_reply(mock_send)[1]["contents"])
    assert "✅" in texts
    assert "1 / 1 完成" in texts


def test_toggle_unknown_task_replies_not_found(interpreter, mock_send):
    assert asyncio.run(interpreter.handle_event(_postback_event("complete_task_ghost"))) == "not_found"
    _, message = _last_reply(mock_send)
    assert message == {"type": "text", "text": TASK_NOT_FOUND_TEXT}


def test_toggle_of_another_users_task_replies_not_found(interpreter, repo, mock_send):
    async def _run():
        task = (await repo.create_task({"line_user_id": "U2", "title": "散步", "task_date": LOCAL_TODAY})).data
        outcome = await interpreter.handle_event(_postback_event(f"complete_task_{task['task_id']}", user_id="U1"))
        stored = await repo.get_user_tasks("U2")
        return outcome, stored

    outcome, stored = asyncio.run(_run())
    assert outcome == "not_found"
    assert stored.data[0]["completed"] is False
    assert _last_reply(mock_send)[1] == {"type": "text", "text": TASK_NOT_FOUND_TEXT}


def test_store_failure_on_toggle_sends_apology(repo, mock_send):
    repo.toggle_task_complete = AsyncMock(
        return_value=OperationResult(success=False, error_code="UNKNOWN", error_message="store unavailable"),
    )
    interpreter = CommandInterpreter(repository=repo, send_reply=mock_send)

    assert asyncio.run(interpreter.handle_event(_postback_event("complete_task_task_1"))) == "failed"
    mock_send.assert_awaited_once()
    assert _last_reply(mock_send)[1]["text"] == APOLOGY_TEXT


def test_complete_next_finishes_newest_pending_task(interpreter, repo, mock_send):
    async def _run():
        await repo.create_task({"line_user_id": "U1", "title": "先加的", "task_date": LOCAL_TODAY})
        await repo.create_task({"line_user_id": "U1", "title": "後加的", "task_date": LOCAL_TODAY})
        outcome = await interpreter.handle_event(_text_event("完成任務"))
        stored = await repo.get_user_tasks("U1")
        return outcome, stored

    outcome, stored = asyncio.run(_run())
    assert outcome == "completed"
    by_title = {t["title"]: t["completed"] for t in stored.data}
    assert by_title == {"後加的": True, "先加的": False}
    finished = next(t for t in stored.data if t["title"] == "後加的")
    assert finished["status"] == "completed"
    assert finished["completed_at"] is not None
    _, message = _last_reply(mock_send)
    assert message["type"] == "text"
    assert "後加的" in message["text"]
    assert message["quickReply"]["items"]


def test_complete_next_with_nothing_pending(interpreter, mock_send):
    assert asyncio.run(interpreter.handle_event(_text_event("汪汪完成"))) == "nothing_pending"
    assert _last_reply(mock_send)[1]["text"] == NOTHING_PENDING_TEXT


def test_card_uses_member_display_name(interpreter, repo, mock_send):
    async def _run():
        await repo.register_member({"userId": "U1", "displayName": "阿明"})
        await interpreter.handle_event(_text_event("清單"))

    asyncio.run(_run())
    assert any("阿明，" in t for t in _texts(_last_reply(mock_send)[1]["contents"]))


def test_unknown_member_gets_default_name(interpreter, mock_send):
    asyncio.run(interpreter.handle_event(_text_event("清單")))
    assert any("主人，" in t for t in _texts(_last_reply(mock_send)[1]["contents"]))


@pytest.mark.parametrize("event", [
    None,
    {"kind": "follow"},
    _postback_event("richmenu=switch"),
    _text_event("清單", reply_token=None),
    _text_event("清單", user_id=None),
])
def test_events_without_a_command_are_ignored(interpreter, mock_send, event):
    assert asyncio.run(interpreter.handle_event(event)) == "ignored"
    mock_send.assert_not_awaited()


def test_failed_reply_triggers_apology(interpreter, mock_send):
    mock_send.side_effect = [RuntimeError("reply token expired"), {}]

    assert asyncio.run(interpreter.handle_event(_text_event("清單"))) == "failed"
    assert mock_send.await_count == 2
    assert _last_reply(mock_send)[1]["text"] == APOLOGY_TEXT


def test_failed_apology_is_swallowed(interpreter, mock_send):
    mock_send.side_effect = RuntimeError("LINE down")
    assert asyncio.run(interpreter.handle_event(_text_event("清單"))) == "failed"


def test_store_failure_on_create_still_answers(repo, mock_send):
    repo.create_task = AsyncMock(
        return_value=OperationResult(success=False, error_code="UNKNOWN", error_message="store unavailable"),
    )
    interpreter = CommandInterpreter(repository=repo, send_reply=mock_send)

    assert asyncio.run(interpreter.handle_event(_text_event("洗碗"))) == "create_failed"
    assert _last_reply(mock_send)[1]["type"] == "flex"
