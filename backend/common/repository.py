import asyncio
import logging
import secrets
import string
from collections import deque
from datetime import date, datetime, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Sequence, Set

from pydantic import BaseModel

from common.cache import QueryCache, cache_key, param_fragment
from common.models import MemberLevel, TaskStatus
from common.retry import (
    NOT_FOUND, VALIDATION_ERROR, DatabaseError, RetryPolicy, execute_with_retry,
)
from common.store import Condition, RowStore, eq, gte, in_, lte

logger = logging.getLogger(__name__)

MEMBER_STAT_FIELDS = ("total_tasks", "completed_tasks", "login_count")
OPTIMIZED_TASK_COLUMNS = ("task_id", "title", "completed", "status", "task_date", "priority", "created_at")
REMINDER_TASK_COLUMNS = ("task_id", "title", "description", "task_time", "line_user_id")
DIAGNOSTIC_TABLES = ("members", "tasks", "task_history", "task_reminders", "system_settings")
DEFAULT_PREFERENCES = {"language": "zh-TW", "timezone": "Asia/Taipei"}
DEFAULT_NOTIFICATION_SETTINGS = {"task_reminder": True, "daily_summary": True, "weekly_report": False}
_ID_ALPHABET = string.ascii_lowercase + string.digits


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_id(prefix: str, clock: Callable[[], datetime] = utc_now) -> str:
    stamp = int(clock().timestamp() * 1000)
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(13))
    return f"{prefix}_{stamp}_{suffix}"


def parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


class OperationResult(BaseModel):
    success: bool
    data: Any = None
    message: Optional[str] = None
    deleted_count: Optional[int] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    attempts: Optional[int] = None

    @classmethod
    def ok(cls, data: Any = None, **kwargs) -> "OperationResult":
        return cls(success=True, data=data, **kwargs)

    @classmethod
    def failure(cls, error: DatabaseError) -> "OperationResult":
        return cls(
            success=False,
            error_code=error.code,
            error_message=error.message,
            attempts=error.attempts,
        )


class BackgroundFailure(BaseModel):
    name: str
    error: str
    failed_at: datetime


class TodoRepository:
    """Typed member/task operations over a ``RowStore``.

    Every store round-trip goes through the retry executor. Reads listed as
    cached are served from ``self.cache`` for up to its expiry window, and each
    write drops the cached reads for the entity it touched before returning.

    Operations return ``OperationResult``; only ``VALIDATION_ERROR`` is raised.
    """

    def __init__(
        self,
        store: RowStore,
        cache: Optional[QueryCache] = None,
        retry_policy: Optional[RetryPolicy] = None,
        healthcheck_attempts: int = 5,
        utc_offset=None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.cache = cache if cache is not None else QueryCache()
        self.retry_policy = retry_policy or RetryPolicy()
        self.healthcheck_attempts = healthcheck_attempts
        self.utc_offset = utc_offset or timezone.utc
        self.clock = clock
        self._sleep = sleep
        self._background: Set[asyncio.Task] = set()
        self.background_failures: Deque[BackgroundFailure] = deque(maxlen=100)

    # --- plumbing ---

    def today(self) -> date:
        return self.clock().astimezone(self.utc_offset).date()

    async def _run(self, operation_name: str, operation: Callable[[], Awaitable[OperationResult]],
                   policy: Optional[RetryPolicy] = None) -> OperationResult:
        try:
            return await execute_with_retry(operation, operation_name, policy or self.retry_policy, sleep=self._sleep)
        except DatabaseError as exc:
            if exc.code == VALIDATION_ERROR:
                raise
            return OperationResult.failure(exc)

    async def _cached(self, operation_name: str, params: Dict[str, Any],
                      operation: Callable[[], Awaitable[OperationResult]],
                      cache_empty: bool = True) -> OperationResult:
        key = cache_key(operation_name, params)
        cached = self.cache.get(key)
        if cached is not None:
            return cached.model_copy(deep=True)
        generation = self.cache.generation()
        result = await self._run(operation_name, operation)
        if result.success and (cache_empty or result.data):
            self.cache.set(key, result.model_copy(deep=True), since=generation)
        return result

    def _invalidate_member(self, line_id: Optional[str], member_id: Optional[str]) -> None:
        if line_id:
            self.cache.invalidate("get_member_by_line_id", param_fragment("line_id", line_id))
        if member_id:
            self.cache.invalidate("get_member_by_id", param_fragment("member_id", member_id))

    def _invalidate_tasks(self, user_id: Optional[str]) -> None:
        if user_id:
            self.cache.invalidate("get_user_tasks", param_fragment("user_id", user_id))

    def spawn_background(self, name: str, coro: Awaitable[Any]) -> asyncio.Task:
        """Run a best-effort side effect without blocking the caller.

        Failures are logged and recorded in ``background_failures``.
        """
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._background.add(task)

        def _done(t: asyncio.Task) -> None:
            self._background.discard(t)
            if t.cancelled():
                return
            error = t.exception()
            if error is not None:
                logger.warning("Background task %s failed: %s", name, error)
                self.background_failures.append(
                    BackgroundFailure(name=name, error=str(error), failed_at=utc_now())
                )

        task.add_done_callback(_done)
        return task

    async def drain_background(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def clear_cache(self) -> None:
        self.cache.clear()

    # --- members ---

    async def upsert_member(self, member_data: Dict[str, Any]) -> OperationResult:
        if not member_data.get("line_id") or not member_data.get("member_id"):
            raise DatabaseError("Missing required field: line_id or member_id", VALIDATION_ERROR)

        async def op() -> OperationResult:
            now = self.clock()
            values = {**member_data, "updated_at": now}
            existing = await self.store.select("members", where=[eq("line_id", member_data["line_id"])], limit=1)
            if existing:
                rows = await self.store.update("members", values, where=[eq("line_id", member_data["line_id"])])
                self._invalidate_member(None, existing[0].get("member_id"))
            else:
                values.setdefault("created_at", now)
                rows = await self.store.insert("members", [values])
            self._invalidate_member(member_data["line_id"], member_data["member_id"])
            logger.info("Member saved: %s", member_data["member_id"])
            return OperationResult.ok(rows[0])

        return await self._run("upsert_member", op)

    async def get_member_by_line_id(self, line_id: str) -> OperationResult:
        async def op() -> OperationResult:
            rows = await self.store.select("members", where=[eq("line_id", line_id)], limit=1)
            return OperationResult.ok(rows[0] if rows else None)

        # Misses are not cached so a first registration is visible immediately.
        return await self._cached("get_member_by_line_id", {"line_id": line_id}, op, cache_empty=False)

    async def get_member_by_id(self, member_id: str) -> OperationResult:
        async def op() -> OperationResult:
            rows = await self.store.select("members", where=[eq("member_id", member_id)], limit=1)
            return OperationResult.ok(rows[0] if rows else None)

        return await self._cached("get_member_by_id", {"member_id": member_id}, op, cache_empty=False)

    async def update_member_stats(self, member_id: str, stats: Dict[str, Any]) -> OperationResult:
        values = {k: v for k, v in (stats or {}).items() if k in MEMBER_STAT_FIELDS}
        if not member_id or not values:
            raise DatabaseError(
                f"Stats update needs member_id and one of {', '.join(MEMBER_STAT_FIELDS)}",
                VALIDATION_ERROR,
            )

        async def op() -> OperationResult:
            rows = await self.store.update(
                "members", {**values, "updated_at": self.clock()}, where=[eq("member_id", member_id)]
            )
            if not rows:
                raise DatabaseError(f"Member not found: {member_id}", NOT_FOUND)
            self._invalidate_member(rows[0].get("line_id"), member_id)
            return OperationResult.ok(rows[0])

        return await self._run("update_member_stats", op)

    async def log_member_login(self, member_id: str, login_info: Optional[Dict[str, Any]] = None) -> OperationResult:
        async def op() -> OperationResult:
            now = self.clock()
            await self.store.insert(
                "member_login_logs", [{"member_id": member_id, "created_at": now, **(login_info or {})}]
            )
            members = await self.store.select("members", where=[eq("member_id", member_id)], limit=1)
            if not members:
                raise DatabaseError(f"Member not found: {member_id}", NOT_FOUND)
            login_count = (members[0].get("login_count") or 0) + 1
            rows = await self.store.update(
                "members",
                {"last_login_at": now, "login_count": login_count, "updated_at": now},
                where=[eq("member_id", member_id)],
            )
            self._invalidate_member(rows[0].get("line_id"), member_id)
            return OperationResult.ok(rows[0])

        return await self._run("log_member_login", op)

    async def register_member(self, profile: Dict[str, Any], login_info: Optional[Dict[str, Any]] = None) -> OperationResult:
        """Create the member for a platform profile on first sight, refresh it after."""
        line_id = profile.get("userId") or profile.get("line_id")
        if not line_id:
            raise DatabaseError("Profile is missing userId", VALIDATION_ERROR)

        current = await self.get_member_by_line_id(line_id)
        if not current.success:
            return current
        refreshed = {
            "line_id": line_id,
            "display_name": profile.get("displayName"),
            "picture_url": profile.get("pictureUrl"),
            "status_message": profile.get("statusMessage"),
        }
        if current.data:
            refreshed["member_id"] = current.data["member_id"]
        else:
            refreshed.update({
                "member_id": generate_id("member", self.clock),
                "member_level": MemberLevel.basic.value,
                "is_active": True,
                "preferences": dict(DEFAULT_PREFERENCES),
                "notification_settings": dict(DEFAULT_NOTIFICATION_SETTINGS),
                "total_tasks": 0,
                "completed_tasks": 0,
                "login_count": 0,
            })
        saved = await self.upsert_member(refreshed)
        if not saved.success:
            return saved
        logged = await self.log_member_login(refreshed["member_id"], login_info)
        if logged.success:
            logged.message = "updated" if current.data else "created"
        return logged

    async def _set_member_active(self, operation_name: str, member_id: str, active: bool) -> OperationResult:
        async def op() -> OperationResult:
            now = self.clock()
            values = {"is_active": active, "deactivated_at": None if active else now, "updated_at": now}
            rows = await self.store.update("members", values, where=[eq("member_id", member_id)])
            if not rows:
                raise DatabaseError(f"Member not found: {member_id}", NOT_FOUND)
            self._invalidate_member(rows[0].get("line_id"), member_id)
            return OperationResult.ok(rows[0])

        return await self._run(operation_name, op)

    async def deactivate_member(self, member_id: str) -> OperationResult:
        return await self._set_member_active("deactivate_member", member_id, False)

    async def reactivate_member(self, member_id: str) -> OperationResult:
        return await self._set_member_active("reactivate_member", member_id, True)

    # --- tasks ---

    @staticmethod
    def _is_valid_task(task: Dict[str, Any]) -> bool:
        return bool(task.get("line_user_id")) and bool(str(task.get("title") or "").strip())

    def _build_task_row(self, task_data: Dict[str, Any], now: datetime) -> Dict[str, Any]:
        completed = bool(task_data.get("completed", False))
        return {
            "task_id": task_data.get("task_id") or generate_id("task", self.clock),
            "line_user_id": task_data["line_user_id"],
            "member_id": task_data.get("member_id"),
            "title": str(task_data["title"]).strip(),
            "description": task_data.get("description"),
            "note": task_data.get("note"),
            "task_date": parse_date(task_data.get("task_date")),
            "task_time": task_data.get("task_time"),
            "completed": completed,
            "status": TaskStatus.completed.value if completed else TaskStatus.pending.value,
            "priority": task_data.get("priority"),
            "category": task_data.get("category"),
            "created_at": task_data.get("created_at") or now,
            "updated_at": now,
            "completed_at": now if completed else None,
        }

    async def log_task_history(self, task_id: str, member_id: Optional[str], action: str,
                               changes: Optional[Dict[str, Any]]) -> None:
        """Append to the audit trail. Single attempt; callers treat it as best-effort."""
        await self.store.insert("task_history", [{
            "task_id": task_id,
            "member_id": member_id,
            "action": action,
            "changes": _jsonable(changes),
            "created_by": "system",
            "created_at": self.clock(),
        }])

    async def create_task(self, task_data: Dict[str, Any]) -> OperationResult:
        if not self._is_valid_task(task_data):
            raise DatabaseError("Missing required field: line_user_id or title", VALIDATION_ERROR)

        async def op() -> OperationResult:
            rows = await self.store.insert("tasks", [self._build_task_row(task_data, self.clock())])
            task = rows[0]
            self._invalidate_tasks(task["line_user_id"])
            logger.info("Task saved: %s", task["task_id"])
            self.spawn_background(
                f"task_history:{task['task_id']}",
                self.log_task_history(task["task_id"], task.get("member_id"), "created", task_data),
            )
            return OperationResult.ok(task)

        return await self._run("create_task", op)

    async def create_tasks_batch(self, tasks: Sequence[Dict[str, Any]]) -> OperationResult:
        invalid = [
            {"index": idx, "task": task}
            for idx, task in enumerate(tasks)
            if not isinstance(task, dict) or not self._is_valid_task(task)
        ]
        if invalid:
            raise DatabaseError(
                f"{len(invalid)} task(s) missing required fields",
                VALIDATION_ERROR,
                details={"invalid_tasks": invalid},
            )

        async def op() -> OperationResult:
            now = self.clock()
            rows = await self.store.insert("tasks", [self._build_task_row(task, now) for task in tasks])
            for user_id in {row["line_user_id"] for row in rows}:
                self._invalidate_tasks(user_id)
            logger.info("Batch created %s task(s)", len(rows))
            return OperationResult.ok(rows)

        return await self._run("create_tasks_batch", op)

    async def get_user_tasks(self, user_id: str, date: Any = None, status: Optional[str] = None,
                             completed: Optional[bool] = None, limit: Optional[int] = None) -> OperationResult:
        task_date = parse_date(date)
        where: List[Condition] = [eq("line_user_id", user_id)]
        if task_date is not None:
            where.append(eq("task_date", task_date))
        if status:
            where.append(eq("status", status))
        if completed is not None:
            where.append(eq("completed", completed))
        params = {"user_id": user_id, "date": task_date, "status": status, "completed": completed, "limit": limit}

        async def op() -> OperationResult:
            rows = await self.store.select("tasks", where=where, order_by=[("created_at", True)], limit=limit)
            return OperationResult.ok(rows)

        return await self._cached("get_user_tasks", params, op)

    async def get_user_tasks_optimized(self, user_id: str, columns: Optional[Sequence[str]] = None,
                                       date: Any = None, date_range: Optional[Dict[str, Any]] = None,
                                       completed: Optional[bool] = None, limit: int = 50) -> OperationResult:
        selected = list(columns or OPTIMIZED_TASK_COLUMNS)
        where: List[Condition] = [eq("line_user_id", user_id)]
        task_date = parse_date(date)
        range_start = range_end = None
        if task_date is not None:
            where.append(eq("task_date", task_date))
        elif date_range:
            range_start, range_end = parse_date(date_range.get("start")), parse_date(date_range.get("end"))
            if range_start is not None:
                where.append(gte("task_date", range_start))
            if range_end is not None:
                where.append(lte("task_date", range_end))
        if completed is not None:
            where.append(eq("completed", completed))
        params = {
            "user_id": user_id, "columns": selected, "date": task_date,
            "start": range_start, "end": range_end, "completed": completed, "limit": limit,
        }

        async def op() -> OperationResult:
            rows = await self.store.select(
                "tasks", where=where, columns=selected,
                order_by=[("task_date", True), ("created_at", True)], limit=limit,
            )
            return OperationResult.ok(rows)

        return await self._cached("get_user_tasks_optimized", params, op)

    async def get_today_tasks(self, user_id: str) -> OperationResult:
        return await self.get_user_tasks_optimized(user_id, date=self.today())

    async def toggle_task_complete(self, task_id: str, line_user_id: Optional[str] = None) -> OperationResult:
        """Flip a task between pending and completed.

        With ``line_user_id`` set, a task owned by someone else counts as not found.
        """
        async def op() -> OperationResult:
            found = await self.store.select(
                "tasks", where=[eq("task_id", task_id)], columns=["completed", "line_user_id"], limit=1
            )
            if not found or (line_user_id is not None and found[0]["line_user_id"] != line_user_id):
                raise DatabaseError(f"Task not found: {task_id}", NOT_FOUND)
            now = self.clock()
            completed = not bool(found[0]["completed"])
            rows = await self.store.update("tasks", {
                "completed": completed,
                "status": TaskStatus.completed.value if completed else TaskStatus.pending.value,
                "completed_at": now if completed else None,
                "updated_at": now,
            }, where=[eq("task_id", task_id)])
            if not rows:
                raise DatabaseError(f"Task not found: {task_id}", NOT_FOUND)
            self._invalidate_tasks(found[0]["line_user_id"])
            logger.info("Task %s is now %s", task_id, rows[0]["status"])
            return OperationResult.ok(rows[0])

        return await self._run("toggle_task_complete", op)

    async def update_task(self, task_id: str, updates: Dict[str, Any]) -> OperationResult:
        values = {k: v for k, v in (updates or {}).items() if k not in ("id", "task_id", "created_at")}
        if "task_date" in values:
            values["task_date"] = parse_date(values["task_date"])
        # Keep completed/status in lock-step whichever one the caller sent.
        if "completed" in values:
            values["status"] = TaskStatus.completed.value if values["completed"] else TaskStatus.pending.value
        elif "status" in values:
            values["completed"] = values["status"] == TaskStatus.completed.value
        if "completed" in values and "completed_at" not in values:
            values["completed_at"] = self.clock() if values["completed"] else None

        async def op() -> OperationResult:
            rows = await self.store.update(
                "tasks", {**values, "updated_at": self.clock()}, where=[eq("task_id", task_id)]
            )
            if not rows:
                raise DatabaseError(f"Task not found: {task_id}", NOT_FOUND)
            task = rows[0]
            self._invalidate_tasks(task["line_user_id"])
            self.spawn_background(
                f"task_history:{task_id}",
                self.log_task_history(task_id, task.get("member_id"), "updated", updates),
            )
            return OperationResult.ok(task)

        return await self._run("update_task", op)

    async def delete_task(self, task_id: str) -> OperationResult:
        async def op() -> OperationResult:
            rows = await self.store.delete("tasks", where=[eq("task_id", task_id)])
            for row in rows:
                self._invalidate_tasks(row["line_user_id"])
            if rows:
                logger.info("Task deleted: %s", task_id)
            return OperationResult.ok(None, deleted_count=len(rows))

        return await self._run("delete_task", op)

    async def clear_today_tasks(self, user_id: str) -> OperationResult:
        today = self.today()

        async def op() -> OperationResult:
            rows = await self.store.delete("tasks", where=[eq("line_user_id", user_id), eq("task_date", today)])
            self._invalidate_tasks(user_id)
            logger.info("Cleared %s task(s) for %s... on %s", len(rows), user_id[:10], today)
            return OperationResult.ok(None, deleted_count=len(rows))

        return await self._run("clear_today_tasks", op)

    async def get_multi_day_tasks(self, user_id: str, start_date: Any, end_date: Any) -> OperationResult:
        where = [
            eq("line_user_id", user_id),
            gte("task_date", parse_date(start_date)),
            lte("task_date", parse_date(end_date)),
        ]

        async def op() -> OperationResult:
            rows = await self.store.select(
                "tasks", where=where, order_by=[("task_date", False), ("created_at", True)]
            )
            return OperationResult.ok(rows)

        return await self._run("get_multi_day_tasks", op)

    # --- reminders ---

    async def create_task_reminder(self, task_id: str, member_id: Optional[str], reminder_time: datetime) -> OperationResult:
        if not task_id or reminder_time is None:
            raise DatabaseError("Missing required field: task_id or reminder_time", VALIDATION_ERROR)

        async def op() -> OperationResult:
            rows = await self.store.insert("task_reminders", [{
                "task_id": task_id,
                "member_id": member_id,
                "reminder_time": reminder_time,
                "is_sent": False,
                "created_at": self.clock(),
            }])
            return OperationResult.ok(rows[0])

        return await self._run("create_task_reminder", op)

    async def get_pending_reminders(self) -> OperationResult:
        async def op() -> OperationResult:
            reminders = await self.store.select(
                "task_reminders",
                where=[eq("is_sent", False), lte("reminder_time", self.clock())],
                order_by=[("reminder_time", False)],
            )
            task_ids = sorted({r["task_id"] for r in reminders})
            tasks: Dict[str, Dict[str, Any]] = {}
            if task_ids:
                rows = await self.store.select("tasks", where=[in_("task_id", task_ids)], columns=list(REMINDER_TASK_COLUMNS))
                tasks = {row["task_id"]: row for row in rows}
            for reminder in reminders:
                reminder["task"] = tasks.get(reminder["task_id"])
            return OperationResult.ok(reminders)

        return await self._run("get_pending_reminders", op)

    async def mark_reminder_sent(self, reminder_id: int, error_message: Optional[str] = None) -> OperationResult:
        async def op() -> OperationResult:
            values: Dict[str, Any] = {"is_sent": True, "sent_at": self.clock()}
            if error_message:
                values["error_message"] = error_message
            rows = await self.store.update("task_reminders", values, where=[eq("id", reminder_id)])
            if not rows:
                raise DatabaseError(f"Reminder not found: {reminder_id}", NOT_FOUND)
            return OperationResult.ok(rows[0])

        return await self._run("mark_reminder_sent", op)

    # --- system ---

    async def get_system_stats(self) -> OperationResult:
        async def op() -> OperationResult:
            members = await self.store.select("members", where=[eq("is_active", True)], columns=["member_level"])
            tasks = await self.store.select("tasks", columns=["status", "completed"])
            completed = sum(1 for t in tasks if t.get("completed"))
            stats = {
                "total_members": len(members),
                "members_by_level": {
                    level.value: sum(1 for m in members if m.get("member_level") == level.value)
                    for level in MemberLevel
                },
                "total_tasks": len(tasks),
                "completed_tasks": completed,
                "pending_tasks": len(tasks) - completed,
                "completion_rate": round(completed / len(tasks) * 100) if tasks else 0,
            }
            return OperationResult.ok(stats)

        return await self._cached("get_system_stats", {}, op)

    async def test_connection(self) -> OperationResult:
        async def op() -> OperationResult:
            await self.store.select("system_settings", columns=["key"], limit=1)
            return OperationResult.ok(None, message="Store connection OK")

        return await self._run("test_connection", op, self.retry_policy.with_attempts(self.healthcheck_attempts))

    async def warmup_connection(self) -> OperationResult:
        result = await self.test_connection()
        if result.success:
            logger.info("Store connection warmed up")
        else:
            logger.error("Store warm-up failed: %s", result.error_message)
        return result

    async def count_rows(self, table: str) -> OperationResult:
        async def op() -> OperationResult:
            return OperationResult.ok(await self.store.count(table))

        return await self._run(f"count:{table}", op, self.retry_policy.with_attempts(1))

    async def get_connection_stats(self) -> Dict[str, Any]:
        return {
            "cache_size": len(self.cache),
            "cache_ttl_seconds": self.cache.ttl_seconds,
            "backend": self.store.name,
            "background_tasks": len(self._background),
            "timestamp": utc_now().isoformat(),
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def build_repository(app_settings, store: Optional[RowStore] = None) -> TodoRepository:
    from common.store import build_row_store

    return TodoRepository(
        store=store or build_row_store(app_settings),
        cache=QueryCache(ttl_seconds=app_settings.CACHE_TTL_SECONDS, max_entries=app_settings.CACHE_MAX_ENTRIES),
        retry_policy=RetryPolicy(
            max_attempts=app_settings.RETRY_MAX_ATTEMPTS,
            initial_delay=app_settings.RETRY_INITIAL_DELAY_SECONDS,
            max_delay=app_settings.RETRY_MAX_DELAY_SECONDS,
            backoff_multiplier=app_settings.RETRY_BACKOFF_MULTIPLIER,
        ),
        healthcheck_attempts=app_settings.HEALTHCHECK_MAX_ATTEMPTS,
        utc_offset=app_settings.local_timezone,
    )
