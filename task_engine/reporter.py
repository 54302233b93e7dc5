"""
子操作描述文本

生成执行器标题和子操作开始时的进度提示（on_task_start_tip）。
"""
from typing import Any, Dict, Optional

from .models import ExecutionTask, TaskType


def type_str(task: ExecutionTask) -> str:
    return f"{task.type.value} / {task.sub_type}" if task.sub_type else task.type.value


def locate_param_str(locate: Optional[Dict[str, Any]]) -> str:
    if not locate:
        return ""
    return str(locate.get("prompt", ""))


def scroll_param_str(param: Optional[Dict[str, Any]]) -> str:
    if not param:
        return ""
    direction = param.get("direction") or "down"
    scroll_type = param.get("scrollType") or "once"
    distance = param.get("distance") or "distance-not-set"
    return f"{direction}, {scroll_type}, {distance}"


def task_title_str(action_type: str, prompt: str = "") -> str:
    return f"{action_type} - {prompt}" if prompt else action_type


def param_str(task: ExecutionTask) -> str:
    """
    子操作的关键参数

    Planning 取用户指令，Insight / Assert 取定位描述或断言文本，
    Action 取输入值 / 滚动参数 / 目标元素描述。
    """
    param = task.param or {}

    if task.type == TaskType.PLANNING:
        return str(param.get("userInstruction", ""))

    if task.type in (TaskType.INSIGHT, TaskType.ASSERT):
        value = param.get("prompt") or param.get("assertion") or param.get("demand") or ""
        return value if isinstance(value, str) else str(value)

    if task.sub_type == "Scroll":
        return scroll_param_str(param)
    if task.sub_type == "Sleep":
        return f"{param.get('timeMs', 0)}ms"
    if param.get("value") is not None:
        return str(param["value"])
    return locate_param_str(task.locate)


def task_tip(task: ExecutionTask) -> str:
    """进度提示：'Action / Tap - 登录按钮'"""
    value = param_str(task)
    return f"{type_str(task)} - {value}" if value else type_str(task)
