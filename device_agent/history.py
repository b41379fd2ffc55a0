"""
审计历史 - 只追加的步骤记录

AgentHistory 只提供 append / 读取接口：
条目一旦写入就不会被修改或删除（HistoryEntry 本身也是 frozen）。
"""
from typing import Iterator, List, Tuple

from .models import HistoryEntry


class AgentHistory:
    """
    单次运行的步骤记录

    使用方式：
        history = AgentHistory()
        history.append(HistoryEntry(decision, results, snapshot))
        for entry in history: ...
    """

    def __init__(self) -> None:
        self._entries: List[HistoryEntry] = []

    def append(self, entry: HistoryEntry) -> int:
        """
        追加一条记录

        Args:
            entry: 单步记录

        Returns:
            int: 新记录的下标
        """
        if not isinstance(entry, HistoryEntry):
            raise TypeError(f"AgentHistory only accepts HistoryEntry, got {type(entry).__name__}")
        self._entries.append(entry)
        return len(self._entries) - 1

    @property
    def entries(self) -> Tuple[HistoryEntry, ...]:
        return tuple(self._entries)

    @property
    def last(self) -> HistoryEntry:
        if not self._entries:
            raise IndexError("history is empty")
        return self._entries[-1]

    @property
    def is_done(self) -> bool:
        return bool(self._entries) and self._entries[-1].is_done

    @property
    def total_duration_seconds(self) -> float:
        return sum(
            e.metadata.duration_seconds for e in self._entries if e.metadata is not None
        )

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[HistoryEntry]:
        return iter(tuple(self._entries))

    def __getitem__(self, index):
        if isinstance(index, slice):
            return tuple(self._entries[index])
        return self._entries[index]

    def __repr__(self) -> str:
        return f"AgentHistory(steps={len(self._entries)})"
