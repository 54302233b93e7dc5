"""
页面（执行环境）接口

具体的浏览器 / 移动端驱动不在本项目范围内，
驱动只需实现 AbstractPage 即可接入 PageAgent。
"""
import hashlib
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .models import LocatedElement, PlanAction


@dataclass
class PageSnapshot:
    """
    页面状态快照

    Attributes:
        url: 当前地址
        content: 页面文本内容（或驱动给出的结构化描述）
        elements: 可交互元素列表，每项为 LocatedElement.to_dict() 形状
    """
    url: str
    content: str = ""
    elements: List[Dict[str, Any]] = field(default_factory=list)

    def signature(self) -> str:
        """
        页面状态签名，作为缓存指纹的环境部分

        包含元素列表：定位结果的 rect / center 取自 elements，
        布局变化后必须失效。
        """
        elements = json.dumps(self.elements, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
        return hashlib.sha256(f"{self.url}\n{self.content}\n{elements}".encode("utf-8")).hexdigest()

    def find_element(self, element_id: str) -> Optional[LocatedElement]:
        for element in self.elements:
            if str(element.get("id")) == str(element_id):
                return LocatedElement.from_dict(element)
        return None

    def describe(self) -> str:
        """生成放入推理 prompt 的页面描述"""
        return (
            f"URL: {self.url}\n\n"
            f"Content:\n{self.content}\n\n"
            f"Elements:\n{json.dumps(self.elements, ensure_ascii=False)}"
        )


class AbstractPage(ABC):
    """页面驱动接口"""

    page_type: str = "abstract"

    @abstractmethod
    async def snapshot(self) -> PageSnapshot:
        pass

    @abstractmethod
    async def url(self) -> str:
        pass

    @abstractmethod
    async def perform(self, action: PlanAction, element: Optional[LocatedElement] = None) -> Any:
        """
        执行一个原子动作

        Args:
            action: Tap / Hover / Input / KeyboardPress / Scroll
            element: 前一个 Locate 子操作找到的目标元素，没有目标时为 None
        """
        pass

    async def destroy(self) -> None:
        pass
