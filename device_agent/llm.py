"""
决策 LLM - 把有序消息映射为 AgentOutput

BaseOracle 定义 AgentLoop 依赖的接口：generate(messages) → AgentOutput | None。
ChatCompletionOracle 通过 aiohttp 调用 OpenAI 兼容的 /v1/chat/completions：
- 网络 / HTTP 错误按指数退避重试 max_retry 次
- 响应解析失败（非 JSON、未知动作、参数错误）一律返回 None，不抛异常

决策失败后的重试和放弃策略由 AgentLoop 负责。
"""
import asyncio
import json
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger

from config import settings
from .actions import parse_actions
from .exceptions import ActionParseError
from .models import AgentOutput

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class BaseOracle(ABC):
    """决策 LLM 抽象基类"""

    @abstractmethod
    async def generate(self, messages: List[Dict[str, str]]) -> Optional[AgentOutput]:
        """返回下一步决策；暂时性失败返回 None"""
        ...


def _strip_fence(text: str) -> str:
    text = text.strip()
    match = _FENCE_RE.match(text)
    return match.group(1) if match else text


def parse_agent_output(text: Optional[str]) -> Optional[AgentOutput]:
    """
    把 LLM 文本输出解析为 AgentOutput

    Args:
        text: LLM 返回的 JSON 文本（允许 ```json 代码块包裹）

    Returns:
        AgentOutput，任何格式问题都返回 None
    """
    if not text:
        return None
    try:
        data = json.loads(_strip_fence(text))
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"⚠️ [Oracle] 响应不是合法 JSON: {e}")
        return None
    if not isinstance(data, dict):
        logger.warning(f"⚠️ [Oracle] 响应不是 JSON 对象: {type(data).__name__}")
        return None

    raw_actions = data.get("action", data.get("actions"))
    if not isinstance(raw_actions, list):
        logger.warning("⚠️ [Oracle] 响应缺少 action 列表")
        return None
    try:
        actions = parse_actions(raw_actions)
    except ActionParseError as e:
        logger.warning(f"⚠️ [Oracle] 动作解析失败: {e}")
        return None

    def _opt(key: str) -> Optional[str]:
        value = data.get(key)
        return str(value) if value is not None else None

    return AgentOutput(
        actions=actions,
        thinking=_opt("thinking"),
        evaluation_previous_goal=_opt("evaluation_previous_goal"),
        memory=_opt("memory"),
        next_goal=_opt("next_goal"),
    )


class ChatCompletionOracle(BaseOracle):
    """
    OpenAI 兼容接口的决策 LLM

    使用方式：
        oracle = ChatCompletionOracle()
        decision = await oracle.generate(memory.messages())
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[int] = None,
        max_retry: Optional[int] = None,
        backoff_base: float = 1.0,
    ) -> None:
        self.base_url = (base_url or settings.executor_llm_url).rstrip("/")
        self.model = model or settings.executor_llm_model
        self.token = token if token is not None else (settings.executor_llm_token or "")
        self.timeout = timeout or settings.llm_timeout
        self.max_retry = max_retry if max_retry is not None else settings.llm_max_retry
        self.backoff_base = backoff_base

    async def generate(self, messages: List[Dict[str, str]]) -> Optional[AgentOutput]:
        content = await self._call_with_retry(messages)
        if content is None:
            return None
        decision = parse_agent_output(content)
        if decision is not None:
            logger.debug(f"🤖 [Oracle] next_goal={decision.next_goal}, actions={len(decision.actions)}")
        return decision

    async def _call_with_retry(self, messages: List[Dict[str, str]]) -> Optional[str]:
        delay = self.backoff_base
        for attempt in range(1, self.max_retry + 1):
            content = await self._call_llm(messages)
            if content is not None:
                return content
            if attempt < self.max_retry:
                logger.warning(
                    f"⚠️ [Oracle] LLM 调用失败（第 {attempt}/{self.max_retry} 次），{delay:.1f}s 后重试"
                )
                await asyncio.sleep(delay)
                delay *= 2
        logger.error(f"❌ [Oracle] LLM 调用连续失败 {self.max_retry} 次")
        return None

    async def _call_llm(self, messages: List[Dict[str, str]]) -> Optional[str]:
        """
        调用 /v1/chat/completions

        Returns:
            str: assistant 消息内容，失败返回 None
        """
        url = f"{self.base_url}/v1/chat/completions"
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "response_format": {"type": "json_object"},
        }
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    url,
                    json=payload,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as resp:
                    if resp.status != 200:
                        error_text = await resp.text()
                        logger.warning(
                            f"⚠️ [Oracle] LLM API 返回 HTTP {resp.status}: {error_text[:200]}"
                        )
                        return None
                    data = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logger.error(f"❌ [Oracle] LLM 调用异常: {exc}")
            return None

        try:
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            logger.warning(f"⚠️ [Oracle] 响应结构异常: {str(data)[:200]}")
            return None
