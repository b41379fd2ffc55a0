"""
Prompt 构建 - system prompt 与每一步的状态消息
"""
from typing import Optional

from .actions import describe_actions
from .models import Snapshot, StepInfo

_SYSTEM_PROMPT = """You are an autonomous agent operating an Android phone to complete the user's request.

At every step you receive:
- <agent_history>: what you did in previous steps and the results
- <user_request>: the task to complete
- <file_system>: files in your workspace
- <android_state>: the current screen, interactive elements are shown as [N]
- <read_state>: content you read in the previous step (shown only once)

Available actions:
{actions}

Available intents for launch_intent:
{intents}

Rules:
- Only interact with elements that have a numeric [N] index on the current screen.
- You may return several actions; they run in order and stop at the first error.
- Actions after one that changes the screen may target stale elements; prefer one screen-changing action per step.
- Never make payments or change account settings unless the user request asks for it.
- Call done as the last action when the task is complete or cannot be completed.

Respond with a single JSON object and nothing else:
{{
  "thinking": "your reasoning",
  "evaluation_previous_goal": "did the last step succeed",
  "memory": "what to remember",
  "next_goal": "the immediate next goal",
  "action": [{{"action_name": {{"param": "value"}}}}]
}}
"""

CORRECTIVE_NOTE = (
    "System Note: Your previous output was not valid JSON. "
    "Please ensure your response is correctly formatted."
)


def build_system_prompt(
    intents_description: str = "",
    override: Optional[str] = None,
    extend: Optional[str] = None,
) -> str:
    """
    生成 system prompt

    Args:
        intents_description: launch_intent 可用的 intents 目录
        override: 完全替换默认 prompt
        extend: 追加到默认 prompt 末尾
    """
    if override is not None:
        prompt = override
    else:
        prompt = _SYSTEM_PROMPT.format(
            actions=describe_actions(),
            intents=intents_description or "(none)",
        )
    if extend:
        prompt = f"{prompt}\n{extend}"
    return prompt


def build_state_message(
    task: str,
    snapshot: Snapshot,
    agent_history: str,
    step_info: Optional[StepInfo] = None,
    read_state: str = "",
    file_system: str = "",
    sensitive_data: Optional[str] = None,
) -> str:
    """生成当前步骤的 user 消息"""
    parts = [
        f"<agent_history>\n{agent_history}\n</agent_history>",
        f"<user_request>\n{task}\n</user_request>",
    ]
    if file_system:
        parts.append(f"<file_system>\n{file_system}\n</file_system>")
    if sensitive_data:
        parts.append(f"<sensitive_data>\n{sensitive_data}\n</sensitive_data>")

    step_text = ""
    if step_info is not None:
        step_text = f"Step {step_info.step_number} of {step_info.max_steps} max possible steps"
        if step_info.is_last_step():
            step_text += "\nThis is your last step: use done to report the result now."
    parts.append(f"<step_info>\n{step_text}\n</step_info>")

    keyboard = "open" if snapshot.is_keyboard_open else "closed"
    parts.append(
        "<android_state>\n"
        f"Current activity: {snapshot.activity_label}\n"
        f"Keyboard: {keyboard}\n"
        f"Interactive elements:\n{snapshot.ui_representation}\n"
        "</android_state>"
    )
    if read_state:
        parts.append(f"<read_state>\n{read_state}\n</read_state>")
    return "\n\n".join(parts)
