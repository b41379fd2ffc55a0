"""
device_agent 异常定义
"""


class DeviceAgentError(Exception):
    """device_agent 所有异常的基类"""


class DeviceError(DeviceAgentError):
    """设备操作失败（adb 调用失败 / 超时等）"""


class ActionParseError(DeviceAgentError, ValueError):
    """LLM 输出的动作无法解析（未知动作、参数缺失或类型错误）"""
