# titlebot/core/group.py

import json
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from .errors import StoreError
from .renderer import join_segments

DEFAULT_DELIMITER = "|"
DEFAULT_TIMEZONE = "UTC"

_FIELDS = ("id", "enabled", "segments", "delimiter", "timezone", "last_title", "require_admin")


@dataclass
class GroupRecord:
    """
    一个群组的标题配置以及最近一次成功应用的标题。

    不变式：`segments` 永远不为空，所有修改片段的方法都会保证这一点。
    `last_title` 只是渲染结果的缓存，并非权威数据。
    """
    id: int
    enabled: bool = False
    segments: List[str] = field(default_factory=list)
    delimiter: str = DEFAULT_DELIMITER
    timezone: str = DEFAULT_TIMEZONE
    last_title: str = ""
    require_admin: bool = True

    def __post_init__(self):
        if not self.segments:
            raise ValueError("标题片段列表不能为空")

    @classmethod
    def default_for_chat(cls, chat_id: int, chat_title: Optional[str]) -> "GroupRecord":
        """根据群组当前的标题生成一条默认配置：未启用、UTC、单个片段、需要管理员权限。"""
        title = chat_title or f"Group {chat_id}"
        return cls(id=chat_id, segments=[title], last_title=title)

    # ---- 片段操作 ----

    def push_segment(self, segment: str) -> None:
        self.segments.append(segment)

    def push_front_segment(self, segment: str) -> None:
        self.segments.insert(0, segment)

    def pop_segment(self) -> bool:
        """移除最后一个片段；只剩一个片段时不做任何事。返回是否真的移除了。"""
        if len(self.segments) > 1:
            self.segments.pop()
            return True
        return False

    def pop_front_segment(self) -> bool:
        """移除第一个片段；只剩一个片段时不做任何事。返回是否真的移除了。"""
        if len(self.segments) > 1:
            del self.segments[0]
            return True
        return False

    def replace_segments(self, segment: str) -> None:
        """用单个片段替换全部片段。"""
        self.segments = [segment]

    def joined_template(self) -> str:
        return join_segments(self.segments, self.delimiter)

    # ---- 序列化 ----

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_bytes(self) -> bytes:
        return json.dumps(self.to_dict(), ensure_ascii=False, sort_keys=True).encode("utf-8")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GroupRecord":
        missing = [name for name in _FIELDS if name not in data]
        if missing:
            raise StoreError(f"群组记录缺少字段: {', '.join(missing)}")
        segments = data["segments"]
        if not isinstance(segments, list) or not segments:
            raise StoreError("群组记录的标题片段列表为空或格式错误")
        try:
            chat_id = int(data["id"])
        except (TypeError, ValueError) as e:
            raise StoreError(f"群组记录的 ID 无效: {data['id']!r}") from e
        return cls(
            id=chat_id,
            enabled=bool(data["enabled"]),
            segments=[str(s) for s in segments],
            delimiter=str(data["delimiter"]),
            timezone=str(data["timezone"]),
            last_title=str(data["last_title"]),
            require_admin=bool(data["require_admin"]),
        )

    @classmethod
    def from_bytes(cls, raw: bytes) -> "GroupRecord":
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StoreError(f"无法解码群组记录: {e}") from e
        if not isinstance(data, dict):
            raise StoreError("群组记录不是一个 JSON 对象")
        return cls.from_dict(data)

    def __repr__(self):
        return f"<GroupRecord(id={self.id}, enabled={self.enabled}, segments={self.segments!r})>"
