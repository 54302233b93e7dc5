"""
计划构建

- build_plans：为直接指定的动作（Tap / Input / Scroll ...）生成原子动作序列
- parse_json_content：解析推理服务返回的 JSON 文本
"""
import json
from typing import Any, Dict, List, Optional

from .models import PlanAction

# 需要目标元素的动作会先执行一次 Locate
LOCATE_ACTION = "Locate"


def build_plans(
    action_type: str,
    locate: Optional[Dict[str, Any]] = None,
    param: Optional[Dict[str, Any]] = None,
) -> List[PlanAction]:
    """
    生成原子动作序列

    Args:
        action_type: 动作类型，Locate 表示只定位不操作
        locate: 目标元素描述 {"prompt": ...}
        param: 动作参数

    Returns:
        List[PlanAction]: [Locate, 动作] 或 [动作] 或 [Locate]
    """
    if action_type == LOCATE_ACTION:
        if not locate:
            raise ValueError("missing locate prompt for Locate")
        return [PlanAction(type=LOCATE_ACTION, param=dict(locate), locate=dict(locate))]

    plans: List[PlanAction] = []
    if locate:
        plans.append(PlanAction(type=LOCATE_ACTION, param=dict(locate), locate=dict(locate)))
    plans.append(PlanAction(type=action_type, param=dict(param or {}), locate=locate))
    return plans


def parse_json_content(content: str) -> Any:
    """
    解析推理服务返回的 JSON

    处理可能的 markdown 代码块包裹，以及 JSON 前后的多余文本。

    Raises:
        ValueError: 无法解析出 JSON
    """
    text = content.strip()
    if "```" in text:
        start = text.find("```")
        end = text.rfind("```")
        if end > start:
            inner = text[start + 3:end]
            # 去掉代码块语言标记
            if inner.startswith("json"):
                inner = inner[4:]
            text = inner.strip()

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    for open_char, close_char in (("{", "}"), ("[", "]")):
        start = text.find(open_char)
        end = text.rfind(close_char) + 1
        if start != -1 and end > start:
            try:
                return json.loads(text[start:end])
            except json.JSONDecodeError:
                continue

    raise ValueError(f"failed to parse JSON from content: {content[:200]}")
