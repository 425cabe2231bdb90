"""Card (flex message) rendering for the task list reply."""
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from common.line import build_quick_reply

logger = logging.getLogger(__name__)

TOGGLE_POSTBACK_PREFIX = "complete_task_"
DEFAULT_OVERWHELMED_THRESHOLD = 5

LIST_SHORTCUT = "查看任務"
COMPLETE_SHORTCUT = "完成任務"

PUPPY_EMOJIS = {
    "working": "🦮",
    "sleepy": "😴🐕",
    "celebration": "🎉🐕",
    "overwhelmed": "😰🐕",
    "paw": "🐾",
    "bone": "🦴",
}

BROWN = "#8B4513"
MUTED = "#999999"
PROGRESS_FILL = "#90EE90"
PROGRESS_TRACK = "#E0E0E0"


def default_quick_reply() -> Dict[str, Any]:
    return build_quick_reply([LIST_SHORTCUT, COMPLETE_SHORTCUT])


def _task_date(task: Dict[str, Any]) -> Optional[date]:
    value = task.get("task_date")
    if value is None:
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def select_mood(total: int, completed: int, threshold: int = DEFAULT_OVERWHELMED_THRESHOLD) -> str:
    pending = total - completed
    if total == 0:
        return "sleepy"
    if pending == 0:
        return "celebration"
    if pending > threshold:
        return "overwhelmed"
    return "working"


def mood_text(mood: str, pending: int) -> str:
    if mood == "sleepy":
        return "今天沒有任務，小汪可以睡覺了～"
    if mood == "celebration":
        return "太棒了！今天的任務都完成了！"
    if mood == "overwhelmed":
        return "汪！今天任務有點多喔..."
    return f"還有 {pending} 個任務要完成，加油！"


def progress_percentage(total: int, completed: int) -> int:
    if total <= 0:
        return 0
    return round(completed / total * 100)


def _task_row(task: Dict[str, Any], index: int) -> Dict[str, Any]:
    done = bool(task.get("completed"))
    title = task.get("title") or "未命名任務"
    title_text: Dict[str, Any] = {
        "type": "text",
        "text": title,
        "flex": 1,
        "size": "sm",
        "wrap": True,
        "action": {
            "type": "postback",
            "data": f"{TOGGLE_POSTBACK_PREFIX}{task['task_id']}",
            "displayText": f"{'取消完成' if done else '完成'}「{title}」",
        },
    }
    if done:
        title_text["decoration"] = "line-through"
        title_text["color"] = MUTED

    column: List[Dict[str, Any]] = [title_text]
    note = task.get("note") or task.get("description")
    if note:
        column.append({"type": "text", "text": note, "size": "xxs", "color": MUTED, "wrap": True})

    return {
        "type": "box",
        "layout": "horizontal",
        "contents": [
            {"type": "text", "text": "✅" if done else "⬜", "flex": 0, "size": "sm"},
            {"type": "text", "text": f"{index}.", "flex": 0, "size": "sm", "color": BROWN},
            {"type": "box", "layout": "vertical", "flex": 1, "contents": column},
        ],
        "margin": "sm",
        "spacing": "sm",
    }


def _progress_bar(percentage: int) -> Dict[str, Any]:
    return {
        "type": "box",
        "layout": "vertical",
        "contents": [
            {
                "type": "box",
                "layout": "vertical",
                "contents": [],
                "height": "6px",
                "width": f"{percentage}%",
                "backgroundColor": PROGRESS_FILL if percentage > 0 else PROGRESS_TRACK,
                "cornerRadius": "3px",
            }
        ],
        "backgroundColor": PROGRESS_TRACK,
        "height": "6px",
        "margin": "sm",
        "cornerRadius": "3px",
    }


def _render(tasks: List[Dict[str, Any]], user_name: str, threshold: int) -> Dict[str, Any]:
    completed = [t for t in tasks if t.get("completed")]
    pending_count = len(tasks) - len(completed)
    mood = select_mood(len(tasks), len(completed), threshold)
    percentage = progress_percentage(len(tasks), len(completed))

    if tasks:
        body: List[Dict[str, Any]] = [_task_row(task, idx) for idx, task in enumerate(tasks, start=1)]
        body.append({"type": "separator", "margin": "md"})
    else:
        body = [{
            "type": "text",
            "text": f"{PUPPY_EMOJIS['paw']} 今天還沒有任務喔～",
            "size": "sm",
            "color": BROWN,
            "align": "center",
        }]

    body.append({
        "type": "box",
        "layout": "horizontal",
        "contents": [
            {"type": "text", "text": f"{PUPPY_EMOJIS['paw']} 今日進度", "flex": 0, "size": "xs", "color": BROWN},
            {"type": "text", "text": f"{len(completed)} / {len(tasks)} 完成", "flex": 1, "size": "xs", "color": BROWN, "align": "end"},
        ],
        "margin": "md",
    })
    body.append(_progress_bar(percentage))

    bubble = {
        "type": "bubble",
        "size": "kilo",
        "header": {
            "type": "box",
            "layout": "vertical",
            "contents": [
                {"type": "text", "text": f"{PUPPY_EMOJIS[mood]} 小汪的任務清單", "weight": "bold", "size": "lg", "color": BROWN},
                {"type": "text", "text": mood_text(mood, pending_count), "size": "xs", "color": "#8B6914", "margin": "sm"},
            ],
            "backgroundColor": "#DEB887",
            "paddingAll": "15px",
        },
        "body": {
            "type": "box",
            "layout": "vertical",
            "contents": body,
            "paddingAll": "10px",
            "backgroundColor": "#FFF8DC",
        },
        "footer": {
            "type": "box",
            "layout": "vertical",
            "contents": [
                {"type": "text", "text": f"{PUPPY_EMOJIS['bone']} {user_name}，記得完成任務喔！", "size": "xs", "color": BROWN, "align": "center"},
            ],
            "backgroundColor": "#FAEBD7",
            "paddingAll": "10px",
        },
        "styles": {"body": {"separator": True}},
    }
    return {
        "type": "flex",
        "altText": f"🐕 小汪提醒：今天有 {len(tasks)} 個任務，已完成 {len(completed)} 個",
        "contents": bubble,
        "quickReply": default_quick_reply(),
    }


def fallback_card() -> Dict[str, Any]:
    return {
        "type": "flex",
        "altText": "🐕 小汪的任務清單",
        "contents": {
            "type": "bubble",
            "body": {
                "type": "box",
                "layout": "vertical",
                "contents": [{"type": "text", "text": "🐕 汪汪！載入任務時遇到問題", "wrap": True}],
            },
        },
    }


def build_task_card(tasks: Sequence[Dict[str, Any]], user_name: str = "主人",
                    today: Optional[date] = None,
                    overwhelmed_threshold: int = DEFAULT_OVERWHELMED_THRESHOLD) -> Dict[str, Any]:
    """Render the task list card.

    When ``today`` is given only tasks dated that day are shown and counted.
    Never raises; a broken task row degrades to ``fallback_card()``.
    """
    try:
        scoped = list(tasks or [])
        if today is not None:
            scoped = [t for t in scoped if _task_date(t) == today]
        return _render(scoped, user_name, overwhelmed_threshold)
    except Exception as exc:
        logger.error(f"Task card rendering failed: {exc}")
        return fallback_card()

