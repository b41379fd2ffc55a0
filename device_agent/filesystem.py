"""
Agent 工作区文件系统

为 write_file / append_file / read_file 动作提供一个沙箱目录：
- todo.md 每次创建工作区时重新生成，旧的非空 todo.md 会被归档
- results.md 跨会话保留
- 文件名只能是工作区内的单层文件名
"""
import time
from pathlib import Path
from typing import Dict, List, Optional, Union

from loguru import logger

from config import settings

_ALLOWED_SUFFIXES = (".md", ".txt", ".json", ".csv")


class FileSystem:
    """
    Agent 工作区

    使用方式：
        fs = FileSystem("agent_workspace")
        fs.write_file("notes.md", "hello")
    """

    def __init__(self, workspace_dir: Optional[Union[str, Path]] = None) -> None:
        self.workspace_dir = Path(workspace_dir or settings.workspace_dir)
        if not self.workspace_dir.exists():
            self.workspace_dir.mkdir(parents=True)
            logger.info(f"📁 [FileSystem] 创建工作区: {self.workspace_dir}")
        else:
            logger.debug(f"📁 [FileSystem] 复用已有工作区: {self.workspace_dir}")

        self._archive_old_todo()
        self.todo_file = self.workspace_dir / "todo.md"
        self.results_file = self.workspace_dir / "results.md"
        self.todo_file.write_text("", encoding="utf-8")
        if not self.results_file.exists():
            self.results_file.write_text("", encoding="utf-8")

    def _archive_old_todo(self) -> None:
        old_todo = self.workspace_dir / "todo.md"
        if old_todo.exists() and old_todo.stat().st_size > 0:
            archive = self.workspace_dir / f"todo_ARCHIVED_{int(time.time() * 1000)}.md"
            old_todo.rename(archive)
            logger.info(f"📁 [FileSystem] 归档旧 todo.md → {archive.name}")

    def _resolve(self, file_name: str) -> Path:
        name = file_name.strip()
        if not name or "/" in name or "\\" in name or name.startswith("."):
            raise ValueError(f"Invalid file name '{file_name}'. Use a plain name like 'notes.md'.")
        if not name.endswith(_ALLOWED_SUFFIXES):
            raise ValueError(
                f"Invalid file extension for '{file_name}'. Allowed: {', '.join(_ALLOWED_SUFFIXES)}"
            )
        return self.workspace_dir / name

    def write_file(self, file_name: str, content: str) -> None:
        self._resolve(file_name).write_text(content, encoding="utf-8")

    def append_file(self, file_name: str, content: str) -> None:
        with self._resolve(file_name).open("a", encoding="utf-8") as f:
            f.write(content)

    def read_file(self, file_name: str) -> str:
        path = self._resolve(file_name)
        if not path.exists():
            raise FileNotFoundError(f"File '{file_name}' not found in workspace.")
        return path.read_text(encoding="utf-8")

    def list_files(self) -> List[str]:
        return sorted(p.name for p in self.workspace_dir.iterdir() if p.is_file())

    def describe(self) -> str:
        """生成 prompt 中的文件系统描述（每个文件只展示前 200 字符）"""
        parts: Dict[str, str] = {}
        for name in self.list_files():
            if name.startswith("todo_ARCHIVED_"):
                continue
            content = (self.workspace_dir / name).read_text(encoding="utf-8", errors="replace")
            parts[name] = content[:200] + ("..." if len(content) > 200 else "")
        if not parts:
            return "(empty)"
        return "\n".join(f"<file name=\"{k}\">\n{v}\n</file>" for k, v in parts.items())

    def todo_contents(self) -> str:
        return self.todo_file.read_text(encoding="utf-8") if self.todo_file.exists() else ""
