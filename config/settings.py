"""
Configuration settings for device_agent
"""
from pydantic_settings import BaseSettings
from typing import Optional
from enum import Enum


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    # Agent Loop Configuration
    agent_max_steps: int = 150
    agent_max_failures: int = 3
    agent_retry_delay: float = 1.0  # 决策失败后重试前的等待（秒）
    agent_step_delay: float = 1.0  # 每步之间的让出间隔（秒）
    agent_max_actions_per_step: int = 10
    agent_max_history_items: Optional[int] = None  # None 表示不截断 agent_history
    share_run_budget: bool = False  # True 时同一引擎上的多个任务共享步数/失败计数

    # Decision LLM Configuration (OpenAI 兼容 /v1/chat/completions)
    executor_llm_url: str = "http://localhost:8000"
    executor_llm_model: str = "default"
    executor_llm_token: Optional[str] = None
    llm_timeout: int = 60
    llm_max_retry: int = 3

    # Device Configuration
    adb_path: str = "adb"
    adb_serial: Optional[str] = None
    perception_max_retry: int = 3
    perception_retry_delay: float = 0.5

    # Workspace Configuration
    workspace_dir: str = "agent_workspace"

    # Application Configuration
    app_env: Environment = Environment.DEVELOPMENT
    debug: bool = True
    log_level: str = "INFO"
    log_file: Optional[str] = None  # e.g. "logs/agent_{time}.log"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()
