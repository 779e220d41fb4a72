# titlebot/core/store.py (群组配置存储)

# 设计说明:
# - GroupStore 在抽象的键值后端之上提供群组记录的读写，键为 `group-<chat_id>`。
# - 后端只需要实现 get / put / list_keys 三个方法，titlebot.database.SqlKeyValueStore 是默认实现。
# - 后端的读写失败应以 StoreError 抛出；SqlKeyValueStore 抛出的 SQLAlchemyError 由 GroupStore 统一包装。
# - 写入为覆盖语义，后写者胜出；并发的两个修改请求可能互相覆盖，这是已知且接受的限制。

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from .errors import GroupNotFound, StoreError
from .group import GroupRecord

logger = logging.getLogger(__name__)

KEY_PREFIX = "group-"


@dataclass
class KeyListPage:
    """按前缀列举的一页结果。`list_complete` 为 False 时，用 `cursor` 请求下一页。"""
    keys: List[str] = field(default_factory=list)
    cursor: Optional[str] = None
    list_complete: bool = True


class KeyValueBackend(Protocol):
    """
    键值存储后端的契约。

    实现方在读写失败时抛出 StoreError；其他异常类型不会被 GroupStore 识别为存储错误。
    """

    def get(self, key: str) -> Optional[bytes]: ...

    def put(self, key: str, value: bytes) -> None: ...

    def list_keys(self, prefix: str, cursor: Optional[str] = None) -> KeyListPage: ...


def group_key(chat_id: int) -> str:
    return f"{KEY_PREFIX}{chat_id}"


class GroupStore:
    """群组记录的持久化存储。"""

    def __init__(self, backend: KeyValueBackend):
        self.backend = backend

    def get(self, chat_id: int) -> GroupRecord:
        """
        读取一个群组的记录。

        Raises:
            GroupNotFound: 该群组从未配置过。
            StoreError: 后端读取失败，或存储的数据无法解码。
        """
        try:
            raw = self.backend.get(group_key(chat_id))
        except SQLAlchemyError as e:
            raise StoreError(f"读取群组 {chat_id} 的记录失败: {e}") from e
        if raw is None:
            raise GroupNotFound(chat_id)
        return GroupRecord.from_bytes(raw)

    def put(self, record: GroupRecord) -> None:
        """
        覆盖写入一个群组的记录。

        Raises:
            StoreError: 后端写入失败。
        """
        try:
            self.backend.put(group_key(record.id), record.to_bytes())
        except SQLAlchemyError as e:
            raise StoreError(f"保存群组 {record.id} 的记录失败: {e}") from e
        logger.debug(f"群组 {record.id} 的记录已保存。")

    def list_all_keys(self, prefix: str = KEY_PREFIX) -> List[str]:
        """
        列出所有已存储群组的标识（去掉前缀后的字符串）。

        会自动跟随分页游标，直到后端报告列举完成，返回一个完整的列表。
        """
        identifiers: List[str] = []
        cursor = None
        while True:
            try:
                page = self.backend.list_keys(prefix, cursor=cursor)
            except SQLAlchemyError as e:
                raise StoreError(f"列举前缀为 '{prefix}' 的键失败: {e}") from e
            identifiers.extend(key[len(prefix):] for key in page.keys)
            if page.list_complete or page.cursor is None:
                break
            cursor = page.cursor
        logger.debug(f"共列举到 {len(identifiers)} 个前缀为 '{prefix}' 的键。")
        return identifiers

    def get_or_create(self, chat_id: int, chat_title: Optional[str]) -> GroupRecord:
        """
        读取群组记录；不存在时根据群组当前标题创建一条默认记录并立即保存。

        保存默认记录失败时只记录日志，不向上抛出：内存中的默认记录对本次操作依然可用。
        """
        try:
            return self.get(chat_id)
        except GroupNotFound:
            pass

        record = GroupRecord.default_for_chat(chat_id, chat_title)
        logger.info(f"存储中未找到群组 {chat_id}，已创建默认配置。")
        try:
            self.put(record)
        except StoreError as e:
            logger.warning(f"保存群组 {chat_id} 的默认配置失败，本次操作继续使用内存中的配置: {e}")
        return record
