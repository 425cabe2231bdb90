import asyncio
import logging
from typing import Any, Dict, Optional

from common.config import settings
from common.line import LineMessagingClient, build_text_message, line_client
from common.repository import TodoRepository, build_repository

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("worker")


def format_reminder(reminder: Dict[str, Any]) -> Optional[str]:
    task = reminder.get("task") or {}
    title = task.get("title")
    if not title:
        return None
    lines = [f"⏰🐕 汪！提醒你：「{title}」"]
    if task.get("task_time"):
        lines.append(f"時間：{task['task_time']}")
    if task.get("description"):
        lines.append(task["description"])
    return "\n".join(lines)


async def deliver_reminder(reminder: Dict[str, Any], repository: TodoRepository,
                           client: LineMessagingClient) -> bool:
    reminder_id = reminder.get("id")
    task = reminder.get("task") or {}
    text = format_reminder(reminder)
    recipient = task.get("line_user_id")
    if not text or not recipient:
        logger.warning(f"Reminder {reminder_id} has no deliverable task, marking as sent with error")
        await repository.mark_reminder_sent(reminder_id, error_message="task_missing")
        return False

    try:
        await client.push_message(recipient, build_text_message(text))
    except Exception as e:
        logger.error(f"Reminder {reminder_id} push failed: {e}")
        # Marked sent anyway so a broken reminder is not retried forever.
        await repository.mark_reminder_sent(reminder_id, error_message=str(e)[:500])
        return False

    marked = await repository.mark_reminder_sent(reminder_id)
    if not marked.success:
        logger.error(f"Reminder {reminder_id} delivered but could not be marked: {marked.error_message}")
    return True


async def process_pending_reminders(repository: TodoRepository, client: LineMessagingClient) -> Dict[str, int]:
    pending = await repository.get_pending_reminders()
    if not pending.success:
        logger.error(f"Fetching pending reminders failed: {pending.error_message}")
        return {"pending": 0, "sent": 0, "failed": 0}

    reminders = pending.data or []
    sent = failed = 0
    for reminder in reminders:
        try:
            delivered = await deliver_reminder(reminder, repository, client)
        except Exception as e:
            logger.error(f"Reminder {reminder.get('id')} crashed: {e}")
            delivered = False
        if delivered:
            sent += 1
        else:
            failed += 1

    if reminders:
        logger.info(f"Reminder sweep done: {sent} sent, {failed} failed")
    return {"pending": len(reminders), "sent": sent, "failed": failed}


async def worker_loop():
    repository = build_repository(settings)
    logger.info("Reminder worker started (poll every %ss)", settings.REMINDER_POLL_SECONDS)
    try:
        while True:
            try:
                await process_pending_reminders(repository, line_client)
            except Exception as e:
                logger.error(f"Reminder sweep failed: {e}")
            await asyncio.sleep(settings.REMINDER_POLL_SECONDS)
    finally:
        await repository.drain_background()
        await repository.store.close()


if __name__ == "__main__":
    asyncio.run(worker_loop())
