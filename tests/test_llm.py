"""
决策 LLM 测试

测试内容：
- parse_agent_output（JSON 解析 / 代码块 / 非法输出）
- ChatCompletionOracle（aiohttp 被 mock）
"""
import json
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest


def _mock_session(status=200, payload=None, text="", post_side_effect=None):
    mock_resp = AsyncMock()
    mock_resp.status = status
    mock_resp.json = AsyncMock(return_value=payload)
    mock_resp.text = AsyncMock(return_value=text)

    mock_session = AsyncMock()
    if post_side_effect is not None:
        mock_session.post = MagicMock(side_effect=post_side_effect)
    else:
        mock_session.post = MagicMock(return_value=AsyncMock(
            __aenter__=AsyncMock(return_value=mock_resp),
            __aexit__=AsyncMock(return_value=False),
        ))
    return mock_session


def _client_session(mock_session):
    return AsyncMock(
        __aenter__=AsyncMock(return_value=mock_session),
        __aexit__=AsyncMock(return_value=False),
    )


def _completion(content):
    return {"choices": [{"message": {"content": content}}]}


VALID_OUTPUT = {
    "thinking": "需要打开设置",
    "evaluation_previous_goal": "Unknown",
    "memory": "on launcher",
    "next_goal": "open settings",
    "action": [{"open_app": {"app_name": "Settings"}}],
}


# ============================================================
# parse_agent_output
# ============================================================

class TestParseAgentOutput:
    """测试 LLM 文本 → AgentOutput"""

    def test_valid_output(self):
        from device_agent.actions import OpenApp
        from device_agent.llm import parse_agent_output
        output = parse_agent_output(json.dumps(VALID_OUTPUT))

        assert output.actions == (OpenApp(app_name="Settings"),)
        assert output.next_goal == "open settings"
        assert output.thinking == "需要打开设置"

    def test_fenced_output(self):
        from device_agent.llm import parse_agent_output
        text = "```json\n" + json.dumps(VALID_OUTPUT) + "\n```"
        assert parse_agent_output(text) is not None

    def test_actions_alias(self):
        from device_agent.actions import Back
        from device_agent.llm import parse_agent_output
        output = parse_agent_output(json.dumps({"actions": [{"back": {}}]}))
        assert output.actions == (Back(),)
        assert output.memory is None

    def test_empty_action_list_is_valid(self):
        from device_agent.llm import parse_agent_output
        output = parse_agent_output(json.dumps({"next_goal": "wait", "action": []}))
        assert output is not None
        assert output.actions == ()

    @pytest.mark.parametrize("text", [
        None,
        "",
        "not json",
        "[1, 2]",
        json.dumps({"next_goal": "x"}),
        json.dumps({"action": {"back": {}}}),
        json.dumps({"action": [{"teleport": {}}]}),
        json.dumps({"action": [{"tap_element": {}}]}),
        json.dumps({"action": [{"done": {"success": "yes", "text": "x"}}]}),
    ])
    def test_invalid_output_returns_none(self, text):
        from device_agent.llm import parse_agent_output
        assert parse_agent_output(text) is None


# ============================================================
# ChatCompletionOracle
# ============================================================

class TestChatCompletionOracle:
    """测试 OpenAI 兼容接口调用"""

    @pytest.mark.asyncio
    async def test_generate_success(self):
        from device_agent.llm import ChatCompletionOracle
        oracle = ChatCompletionOracle(base_url="http://llm.test/", model="m", token="secret", max_retry=1)
        mock_session = _mock_session(payload=_completion(json.dumps(VALID_OUTPUT)))

        with patch("aiohttp.ClientSession", return_value=_client_session(mock_session)):
            output = await oracle.generate([{"role": "system", "content": "SYSTEM"}])

        assert output is not None
        assert output.next_goal == "open settings"
        url = mock_session.post.call_args[0][0]
        kwargs = mock_session.post.call_args[1]
        assert url == "http://llm.test/v1/chat/completions"
        assert kwargs["json"]["model"] == "m"
        assert kwargs["json"]["messages"] == [{"role": "system", "content": "SYSTEM"}]
        assert kwargs["headers"]["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_http_error_returns_none(self):
        from device_agent.llm import ChatCompletionOracle
        oracle = ChatCompletionOracle(base_url="http://llm.test", max_retry=1)
        mock_session = _mock_session(status=500, text="internal error")

        with patch("aiohttp.ClientSession", return_value=_client_session(mock_session)):
            assert await oracle.generate([]) is None

    @pytest.mark.asyncio
    async def test_connection_error_retried_with_backoff(self):
        from device_agent.llm import ChatCompletionOracle
        oracle = ChatCompletionOracle(base_url="http://llm.test", max_retry=3, backoff_base=0.5)
        mock_session = _mock_session(post_side_effect=aiohttp.ClientError("连接失败"))

        with patch("aiohttp.ClientSession", return_value=_client_session(mock_session)), \
                patch("device_agent.llm.asyncio.sleep", AsyncMock()) as mock_sleep:
            assert await oracle.generate([]) is None

        assert mock_session.post.call_count == 3
        assert [c.args[0] for c in mock_sleep.await_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_unparseable_content_returns_none(self):
        from device_agent.llm import ChatCompletionOracle
        oracle = ChatCompletionOracle(base_url="http://llm.test", max_retry=1)
        mock_session = _mock_session(payload=_completion("I think you should tap the button"))

        with patch("aiohttp.ClientSession", return_value=_client_session(mock_session)):
            assert await oracle.generate([]) is None

    @pytest.mark.asyncio
    async def test_malformed_response_structure(self):
        from device_agent.llm import ChatCompletionOracle
        oracle = ChatCompletionOracle(base_url="http://llm.test", max_retry=1)
        mock_session = _mock_session(payload={"choices": []})

        with patch("aiohttp.ClientSession", return_value=_client_session(mock_session)):
            assert await oracle.generate([]) is None

    @pytest.mark.asyncio
    async def test_no_token_no_auth_header(self):
        from device_agent.llm import ChatCompletionOracle
        oracle = ChatCompletionOracle(base_url="http://llm.test", token="", max_retry=1)
        mock_session = _mock_session(payload=_completion(json.dumps(VALID_OUTPUT)))

        with patch("aiohttp.ClientSession", return_value=_client_session(mock_session)):
            await oracle.generate([])

        assert "Authorization" not in mock_session.post.call_args[1]["headers"]
