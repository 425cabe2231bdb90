import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from common.flex import (
    COMPLETE_SHORTCUT, LIST_SHORTCUT, TOGGLE_POSTBACK_PREFIX, build_task_card, default_quick_reply,
)
from common.line import build_text_message
from common.repository import OperationResult, TodoRepository
from common.retry import NOT_FOUND

logger = logging.getLogger(__name__)

LIST_COMMANDS = frozenset({"查看所有任務", "任務", "清單", "汪汪清單", LIST_SHORTCUT})
COMPLETE_COMMANDS = frozenset({COMPLETE_SHORTCUT, "餵食小汪", "完成", "汪汪完成"})

TASK_NOT_FOUND_TEXT = "🐕 汪？找不到這個任務耶～"
NOTHING_PENDING_TEXT = "🎉🐕 汪汪！所有任務都完成了！你真棒～"
APOLOGY_TEXT = "🐕 汪汪！小汪遇到了一點小問題，請稍後再試～"

ReplySender = Callable[[str, Dict[str, Any]], Awaitable[Any]]


def parse_command(kind: str, payload: str) -> Tuple[str, Optional[str]]:
    """
    Map an event's text or postback data onto one command.
    Returns (command, argument); command is one of
    toggle, list, complete_next, create, ignore.
    """
    if kind == "postback":
        data = (payload or "").strip()
        if data.startswith(TOGGLE_POSTBACK_PREFIX) and len(data) > len(TOGGLE_POSTBACK_PREFIX):
            return "toggle", data[len(TOGGLE_POSTBACK_PREFIX):]
        return "ignore", None

    text = (payload or "").strip()
    if not text:
        return "ignore", None
    if text in LIST_COMMANDS:
        return "list", None
    if text in COMPLETE_COMMANDS:
        return "complete_next", None
    return "create", text


def first_incomplete(tasks: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """The task "complete next" acts on.

    Tasks arrive newest-created first from the repository, so this is the most
    recently added task still pending; due dates play no part.
    """
    for task in tasks:
        if not task.get("completed"):
            return task
    return None


@dataclass
class CommandInterpreter:
    repository: TodoRepository
    send_reply: ReplySender
    today_only: bool = True
    default_display_name: str = "主人"
    overwhelmed_threshold: int = 5

    async def _display_name(self, user_id: str) -> str:
        result = await self.repository.get_member_by_line_id(user_id)
        if result.success and result.data and result.data.get("display_name"):
            return result.data["display_name"]
        return self.default_display_name

    async def _fetch_tasks(self, user_id: str, today: date) -> List[Dict[str, Any]]:
        if self.today_only:
            result = await self.repository.get_user_tasks(user_id, date=today)
        else:
            result = await self.repository.get_user_tasks(user_id)
        if not result.success:
            logger.error("Fetching tasks for %s failed: %s", user_id, result.error_message)
            return []
        return result.data or []

    async def _reply_with_card(self, reply_token: str, user_id: str, today: date) -> None:
        tasks = await self._fetch_tasks(user_id, today)
        card = build_task_card(
            tasks,
            user_name=await self._display_name(user_id),
            today=today if self.today_only else None,
            overwhelmed_threshold=self.overwhelmed_threshold,
        )
        await self.send_reply(reply_token, card)

    async def _toggle(self, reply_token: str, user_id: str, task_id: str, today: date) -> str:
        result: OperationResult = await self.repository.toggle_task_complete(task_id, line_user_id=user_id)
        if not result.success and result.error_code != NOT_FOUND:
            raise RuntimeError(f"Toggling task {task_id} failed: {result.error_message}")
        if not result.success or not result.data:
            logger.warning("Task not found for %s: %s", user_id, task_id)
            await self.send_reply(reply_token, build_text_message(TASK_NOT_FOUND_TEXT))
            return "not_found"
        logger.info("Task %s toggled to %s", task_id, result.data.get("status"))
        await self._reply_with_card(reply_token, user_id, today)
        return "toggled"

    async def _complete_next(self, reply_token: str, user_id: str, today: date) -> str:
        task = first_incomplete(await self._fetch_tasks(user_id, today))
        if task is None:
            await self.send_reply(reply_token, build_text_message(NOTHING_PENDING_TEXT, default_quick_reply()))
            return "nothing_pending"
        result = await self.repository.toggle_task_complete(task["task_id"])
        if not result.success:
            raise RuntimeError(f"Completing task {task['task_id']} failed: {result.error_message}")
        title = result.data.get("title") or task.get("title")
        await self.send_reply(
            reply_token,
            build_text_message(f"✅🐕 汪！「{title}」完成了！", default_quick_reply()),
        )
        return "completed"

    async def _create(self, reply_token: str, user_id: str, title: str, today: date) -> str:
        result = await self.repository.create_task({
            "line_user_id": user_id,
            "title": title,
            "description": "",
            "note": "",
            "task_date": today,
            "status": "pending",
            "completed": False,
        })
        if result.success:
            logger.info("Task created: %s", result.data["task_id"])
        else:
            logger.error("Creating task failed: %s", result.error_message)
        await self._reply_with_card(reply_token, user_id, today)
        return "created" if result.success else "create_failed"

    async def handle_event(self, event: Optional[Dict[str, Any]]) -> str:
        """Run one parsed event to completion.

        Never raises: on any failure an apology is attempted, and a failed
        apology is only logged.
        """
        if not event or event.get("kind") not in ("message", "postback"):
            return "ignored"

        user_id = event.get("user_id")
        reply_token = event.get("reply_token")
        payload = event.get("data") if event["kind"] == "postback" else event.get("text")
        command, arg = parse_command(event["kind"], payload or "")
        logger.info("Handling %s from %s as %s", event["kind"], user_id, command)
        if command == "ignore" or not user_id or not reply_token:
            return "ignored"

        today = self.repository.today()
        try:
            if command == "toggle":
                return await self._toggle(reply_token, user_id, arg, today)
            if command == "list":
                await self._reply_with_card(reply_token, user_id, today)
                return "listed"
            if command == "complete_next":
                return await self._complete_next(reply_token, user_id, today)
            return await self._create(reply_token, user_id, arg, today)
        except Exception as exc:
            logger.exception("Handling event from %s failed: %s", user_id, exc)
            try:
                await self.send_reply(reply_token, build_text_message(APOLOGY_TEXT))
            except Exception as reply_error:
                logger.error(f"Failed to send apology reply: {reply_error}")
            return "failed"
