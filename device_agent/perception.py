"""
感知模块 - 把设备界面转换为结构化 Snapshot

BasePerception 是 AgentLoop 依赖的接口；
AdbPerception 通过 uiautomator dump 获取界面 XML，
筛选可交互/有文字的节点并编号，生成面向 LLM 的 UI 描述。
"""
import asyncio
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

from loguru import logger

from config import settings
from .exceptions import DeviceError
from .executors.device import AdbDevice
from .models import Snapshot, UIElement

_EMPTY_SCREEN = "The screen is empty or contains no interactive elements."
_INTERACTIVE_FLAGS = ("clickable", "long-clickable", "checkable", "scrollable")


class BasePerception(ABC):
    """感知抽象基类"""

    @abstractmethod
    async def analyze(self) -> Snapshot:
        """采集当前界面，返回快照（可能阻塞等待设备可用）"""
        ...


def parse_hierarchy(xml_text: str) -> Tuple[str, Dict[int, UIElement]]:
    """
    解析 uiautomator XML

    Args:
        xml_text: uiautomator dump 输出

    Returns:
        (ui_representation, element_index)
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        logger.warning(f"⚠️ [Perception] UI XML 解析失败: {e}")
        return "", {}

    lines: List[str] = []
    index: Dict[int, UIElement] = {}
    next_id = 1
    for node in root.iter("node"):
        attrs = dict(node.attrib)
        text = attrs.get("text", "") or attrs.get("content-desc", "")
        interactive = any(attrs.get(flag) == "true" for flag in _INTERACTIVE_FLAGS)
        editable = attrs.get("class", "").endswith("EditText")
        if not (interactive or editable or text.strip()):
            continue

        class_name = attrs.get("class", "").replace("android.", "", 1)
        if interactive or editable:
            element = UIElement(element_id=next_id, attributes=attrs, text=text)
            index[next_id] = element
            flags = [flag for flag in _INTERACTIVE_FLAGS if attrs.get(flag) == "true"]
            if editable:
                flags.append("editable")
            label = f"[{next_id}] <{class_name}>"
            if text.strip():
                label += f" {text.strip()}"
            lines.append(f"{label} ({', '.join(flags)})")
            next_id += 1
        else:
            lines.append(f"    <{class_name}> {text.strip()}")
    return "\n".join(lines), index


def frame_representation(ui_representation: str, scrollable: bool = False) -> str:
    """
    给 UI 描述加上页面边界 / 可滚动提示

    uiautomator dump 不包含滚动偏移，存在可滚动容器时无法判断是否到顶/到底，
    只提示可以滚动，不声明页面边界。
    """
    if not ui_representation.strip():
        return _EMPTY_SCREEN
    if scrollable:
        return (
            "... scrollable content - scroll up to check for more above ...\n"
            f"{ui_representation}\n"
            "... scrollable content - scroll down to check for more below ..."
        )
    return f"[Start of page]\n{ui_representation}\n[End of page]"


class AdbPerception(BasePerception):
    """
    基于 adb uiautomator 的感知实现

    Args:
        device: adb 设备
        max_retry: UI dump 失败时的重试次数
        retry_delay: 重试间隔（秒）
    """

    def __init__(
        self,
        device: AdbDevice,
        max_retry: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ) -> None:
        self.device = device
        self.max_retry = max_retry if max_retry is not None else settings.perception_max_retry
        self.retry_delay = retry_delay if retry_delay is not None else settings.perception_retry_delay

    async def _dump_with_retry(self) -> str:
        for attempt in range(1, self.max_retry + 1):
            try:
                return await self.device.dump_ui()
            except DeviceError as e:
                logger.warning(f"⚠️ [Perception] UI dump 失败（第 {attempt}/{self.max_retry} 次）: {e}")
                if attempt < self.max_retry:
                    await asyncio.sleep(self.retry_delay)
        return '<hierarchy error="service not available"/>'

    async def analyze(self) -> Snapshot:
        xml_text = await self._dump_with_retry()
        activity, keyboard = await asyncio.gather(
            self.device.current_activity(), self.device.is_keyboard_open(),
            return_exceptions=True,
        )
        for outcome in (activity, keyboard):
            if isinstance(outcome, BaseException) and not isinstance(outcome, DeviceError):
                raise outcome
        if isinstance(activity, DeviceError):
            logger.warning(f"⚠️ [Perception] 获取 Activity 失败: {activity}")
            activity = "unknown"
        if isinstance(keyboard, DeviceError):
            logger.warning(f"⚠️ [Perception] 获取键盘状态失败: {keyboard}")
            keyboard = False

        ui_representation, element_index = parse_hierarchy(xml_text)
        scrollable = any(e.attributes.get("scrollable") == "true" for e in element_index.values())
        logger.debug(
            f"👀 [Perception] activity={activity}, elements={len(element_index)}, scrollable={scrollable}"
        )
        return Snapshot(
            activity_label=activity,
            ui_representation=frame_representation(ui_representation, scrollable),
            element_index=element_index,
            is_keyboard_open=keyboard,
            is_scrollable=scrollable,
        )
