import asyncio
from datetime import date, timedelta
from unittest.mock import AsyncMock, MagicMock

from worker.main import format_reminder, process_pending_reminders


def _client(side_effect=None):
    client = MagicMock()
    client.push_message = AsyncMock(return_value={}, side_effect=side_effect)
    return client


async def _due_reminder(repo, clock, title, user_id="U1"):
    task = (await repo.create_task({
        "line_user_id": user_id, "title": title, "task_date": date(2026, 3, 2), "task_time": "18:00",
    })).data
    await repo.create_task_reminder(task["task_id"], None, clock.current - timedelta(minutes=1))
    return task


def test_format_reminder_includes_time_and_description():
    text = format_reminder({"task": {"title": "散步", "task_time": "18:00", "description": "帶水"}})
    assert "散步" in text
    assert "18:00" in text
    assert "帶水" in text
    assert format_reminder({"task": None}) is None


def test_due_reminder_is_pushed_and_marked_sent(repo, memory_store, clock):
    client = _client()

    async def _run():
        await _due_reminder(repo, clock, "散步")
        return await process_pending_reminders(repo, client)

    counts = asyncio.run(_run())
    assert counts == {"pending": 1, "sent": 1, "failed": 0}
    to, message = client.push_message.await_args.args
    assert to == "U1"
    assert message["type"] == "text"
    assert "散步" in message["text"]

    stored = asyncio.run(memory_store.select("task_reminders"))[0]
    assert stored["is_sent"] is True
    assert stored.get("error_message") is None
    assert asyncio.run(repo.get_pending_reminders()).data == []


def test_push_failure_marks_reminder_with_error_and_continues(repo, memory_store, clock):
    client = _client(side_effect=[RuntimeError("LINE down"), {}])

    async def _run():
        await _due_reminder(repo, clock, "第一個")
        await _due_reminder(repo, clock, "第二個", user_id="U2")
        return await process_pending_reminders(repo, client)

    counts = asyncio.run(_run())
    assert counts == {"pending": 2, "sent": 1, "failed": 1}
    assert client.push_message.await_count == 2

    stored = asyncio.run(memory_store.select("task_reminders", order_by=[("id", False)]))
    assert [r["is_sent"] for r in stored] == [True, True]
    assert stored[0]["error_message"] == "LINE down"
    assert stored[1].get("error_message") is None


def test_reminder_without_task_is_closed_out(repo, memory_store, clock):
    client = _client()

    async def _run():
        await repo.create_task_reminder("task_gone", None, clock.current - timedelta(minutes=1))
        return await process_pending_reminders(repo, client)

    counts = asyncio.run(_run())
    assert counts == {"pending": 1, "sent": 0, "failed": 1}
    client.push_message.assert_not_awaited()
    assert asyncio.run(memory_store.select("task_reminders"))[0]["error_message"] == "task_missing"


def test_store_outage_skips_the_sweep(repo, clock):
    client = _client()
    repo.get_pending_reminders = AsyncMock(return_value=MagicMock(success=False, error_message="down", data=None))

    counts = asyncio.run(process_pending_reminders(repo, client))
    assert counts == {"pending": 0, "sent": 0, "failed": 0}
    client.push_message.assert_not_awaited()
