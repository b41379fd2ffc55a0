"""
Device Agent Launcher - 设备代理启动器
==========================================

把自然语言任务排队交给 AgentLoop，在连接的 Android 设备上执行。

使用方法:
  python main.py "打开设置" "打开相机"     # 依次执行多个任务
  python main.py -i                        # 交互模式：逐行输入任务
  python main.py --serial emulator-5554 "打开设置"
"""
import argparse
import asyncio
import signal
import sys
from typing import List, Optional

from loguru import logger

from config import settings
from device_agent import AgentLoop, MemoryManager, Orchestrator, TaskStatus
from device_agent.executors import ActionExecutor, AdbDevice, IntentRegistry
from device_agent.filesystem import FileSystem
from device_agent.llm import ChatCompletionOracle
from device_agent.perception import AdbPerception
from device_agent.prompts import build_system_prompt
from device_agent.telemetry import LoggingTelemetry


def setup_logging(level: Optional[str] = None) -> None:
    """配置日志：控制台 + 可选的文件"""
    logger.remove()
    logger.add(
        sys.stdout,
        level=level or settings.log_level,
        colorize=True,
    )
    if settings.log_file:
        logger.add(
            settings.log_file,
            rotation="1 day",
            retention="7 days",
            level="DEBUG" if settings.debug else settings.log_level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function}:{line} - {message}",
        )


async def _console_ask(question: str) -> str:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, input, f"❓ {question}\n> ")


async def _console_speak(message: str) -> None:
    print(f"🗣️ {message}")


def build_orchestrator(serial: Optional[str] = None, max_steps: Optional[int] = None) -> Orchestrator:
    """按配置组装 Orchestrator 及其依赖"""
    device = AdbDevice(serial=serial)
    intents = IntentRegistry()
    file_system = FileSystem(settings.workspace_dir)
    executor = ActionExecutor(
        device,
        file_system=file_system,
        intents=intents,
        speak=_console_speak,
        ask_user=_console_ask,
    )
    memory = MemoryManager(
        system_prompt=build_system_prompt(intents.describe()),
        file_system=file_system,
    )
    agent = AgentLoop(
        perception=AdbPerception(device),
        memory=memory,
        oracle=ChatCompletionOracle(),
        executor=executor,
        max_steps=max_steps,
    )
    return Orchestrator(agent, telemetry=LoggingTelemetry())


async def _read_tasks(orchestrator: Orchestrator, shutdown: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    print("输入任务后回车执行，输入 quit 退出")
    while not shutdown.is_set():
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line or line.strip().lower() in ("quit", "exit"):
            break
        orchestrator.enqueue(line.strip())
    shutdown.set()


async def main(argv: Optional[List[str]] = None) -> int:
    """主入口"""
    parser = argparse.ArgumentParser(description="Device Agent Launcher - 设备代理启动器")
    parser.add_argument("tasks", nargs="*", help="依次执行的自然语言任务")
    parser.add_argument("-i", "--interactive", action="store_true", help="交互模式：从标准输入读取任务")
    parser.add_argument("--serial", type=str, default=None, help="adb 设备序列号")
    parser.add_argument("--max-steps", type=int, default=None, help="每个任务的最大步数")
    parser.add_argument("--log-level", type=str, default=None, help="控制台日志级别")
    args = parser.parse_args(argv)

    setup_logging(args.log_level)

    if not args.tasks and not args.interactive:
        parser.print_help()
        return 1

    orchestrator = build_orchestrator(serial=args.serial or settings.adb_serial, max_steps=args.max_steps)
    await orchestrator.start()
    shutdown = asyncio.Event()

    def signal_handler():
        logger.info("Received shutdown signal...")
        orchestrator.stop()
        shutdown.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows 不支持 add_signal_handler
            pass

    for task in args.tasks:
        orchestrator.enqueue(task)

    if args.interactive:
        await _read_tasks(orchestrator, shutdown)

    await orchestrator.join()

    failed = [r for r in orchestrator.records if r.status != TaskStatus.SUCCESS]
    logger.info(f"🏁 共执行 {len(orchestrator.records)} 个任务，失败 {len(failed)} 个")
    return 1 if failed else 0


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
