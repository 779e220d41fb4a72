# titlebot/database.py

# 设计说明:
# - 标题引擎只依赖一个逻辑上的键值存储：get / put / 按前缀分页列举。
# - 这里用 SQLAlchemy 在任意 SQL 数据库上实现这个契约，一张 `kv_entries` 表即可。
# - 分页采用键集分页 (keyset pagination)：游标就是上一页最后一个键，
#   这样即使在列举过程中有新键写入，也不会出现重复或遗漏已存在的键。

import logging
from typing import Optional

from sqlalchemy import (
    create_engine,
    Column,
    String,
    LargeBinary,
    DateTime,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.engine import Engine, make_url

from titlebot.core.store import KeyListPage
from titlebot.utils import session_scope

logger = logging.getLogger(__name__)

# ==================== SQLAlchemy 基类 ====================
Base = declarative_base()

DEFAULT_PAGE_SIZE = 1000


# ==================== 数据模型定义 ====================
class KeyValueEntry(Base):
    """
    模型类：键值存储中的一个条目。
    群组配置以 `group-<chat_id>` 为键、序列化后的字节串为值存放在这里。
    """
    __tablename__ = 'kv_entries'

    key = Column(String(512), primary_key=True, comment="条目的键")
    value = Column(LargeBinary, nullable=False, comment="序列化后的值")
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(),
                        comment="最近一次写入时间")

    def __repr__(self):
        return f"<KeyValueEntry(key='{self.key}', size={len(self.value or b'')})>"


# ==================== 键值存储后端 ====================

class SqlKeyValueStore:
    """基于 SQLAlchemy 的键值存储后端。所有操作都在独立的事务中完成。"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get(self, key: str) -> Optional[bytes]:
        """读取一个键的值；键不存在时返回 None。"""
        with session_scope(self.session_factory) as db:
            entry = db.get(KeyValueEntry, key)
            return bytes(entry.value) if entry is not None else None

    def put(self, key: str, value: bytes) -> None:
        """覆盖写入一个键（后写者胜出，不做并发控制）。"""
        with session_scope(self.session_factory) as db:
            entry = db.get(KeyValueEntry, key)
            if entry is None:
                entry = KeyValueEntry(key=key)
            entry.value = value
            db.add(entry)

    def list_keys(self, prefix: str, cursor: Optional[str] = None,
                  limit: int = DEFAULT_PAGE_SIZE) -> KeyListPage:
        """
        按键的升序列举带有指定前缀的键，一次最多返回 `limit` 个。

        Args:
            prefix: 键前缀，其中的 SQL 通配符会被转义。
            cursor: 上一页返回的游标；首页传 None。
            limit: 每页的最大键数量。

        Returns:
            KeyListPage: 本页的键、下一页的游标，以及列举是否已完成。
        """
        if limit < 1:
            raise ValueError("limit 必须是正整数")
        with session_scope(self.session_factory) as db:
            query = db.query(KeyValueEntry.key).filter(KeyValueEntry.key.startswith(prefix, autoescape=True))
            if cursor is not None:
                query = query.filter(KeyValueEntry.key > cursor)
            # 多取一行，用来判断后面是否还有数据
            rows = query.order_by(KeyValueEntry.key).limit(limit + 1).all()

        keys = [row[0] for row in rows[:limit]]
        if len(rows) > limit:
            return KeyListPage(keys=keys, cursor=keys[-1], list_complete=False)
        return KeyListPage(keys=keys, cursor=None, list_complete=True)


# ==================== 数据库初始化函数 ====================

def init_database(db_url: str) -> Engine:
    """
    初始化数据库连接并根据模型创建所有表。

    Args:
        db_url (str): 标准的 SQLAlchemy 数据库连接 URL。

    Returns:
        Engine: SQLAlchemy 的数据库引擎实例。
    """
    try:
        url_info = make_url(db_url)
        logger.info(f"正在初始化数据库连接 (类型: {url_info.drivername})...")
    except Exception:
        # 如果 URL 解析失败，记录一个通用消息，交给 create_engine 报告具体错误
        logger.info("正在初始化数据库连接...")

    # `echo=False` 避免在日志中打印所有 SQL 语句
    engine = create_engine(db_url, echo=False)
    # `Base.metadata.create_all` 会检查表是否存在，只创建不存在的表。
    Base.metadata.create_all(engine)
    logger.info("数据库表结构已验证/创建。")
    return engine


def get_session_factory(engine: Engine) -> sessionmaker:
    """
    基于给定的数据库引擎创建一个 session 工厂。

    Args:
        engine (Engine): SQLAlchemy 引擎实例。

    Returns:
        sessionmaker: 一个可用于创建新数据库会话的工厂函数。
    """
    return sessionmaker(bind=engine, autoflush=False)
