# tests/conftest.py

import pytest
from unittest.mock import MagicMock, AsyncMock

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from titlebot.database import Base, SqlKeyValueStore
from titlebot.core.store import GroupStore

@pytest.fixture(scope="function")
def test_db_session_factory():
    """
    提供一个基于内存的、干净的 SQLite 数据库会话工厂。
    'function' 作用域确保每个测试函数都获得一个全新的数据库。
    """
    # StaticPool 保证所有会话共享同一个内存数据库连接；
    # check_same_thread=False 允许 pytest-asyncio 在其他线程中访问该连接。
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(autoflush=False, bind=engine)
    yield factory
    Base.metadata.drop_all(engine)
    engine.dispose()

@pytest.fixture
def kv_backend(test_db_session_factory):
    """基于内存 SQLite 的键值存储后端。"""
    return SqlKeyValueStore(test_db_session_factory)

@pytest.fixture
def group_store(kv_backend):
    """基于内存 SQLite 的群组存储。"""
    return GroupStore(kv_backend)

@pytest.fixture
def mock_context(group_store):
    """
    提供一个模拟的 Telegram Context 对象。
    这个 context 被预先填充了群组存储和模拟的 bot 对象。
    """
    context = MagicMock()
    context.bot_data = {'group_store': group_store}
    context.bot = MagicMock()
    context.bot.set_chat_title = AsyncMock(return_value=True)
    context.bot.get_chat_member = AsyncMock(return_value=MagicMock(status='administrator'))
    context.error = None
    return context

@pytest.fixture
def mock_update():
    """提供一个模拟的群组消息 Update 对象，默认消息文本为空命令。"""
    update = MagicMock()

    mock_user = MagicMock()
    mock_user.id = 123
    mock_user.first_name = "Test"

    mock_chat = MagicMock()
    mock_chat.id = -1001
    mock_chat.type = "supergroup"
    mock_chat.title = "Team Chat"

    mock_message = MagicMock()
    mock_message.message_id = 9999
    mock_message.text = "/status"
    mock_message.reply_text = AsyncMock()
    mock_message.chat = mock_chat
    mock_message.from_user = mock_user

    update.effective_user = mock_user
    update.effective_chat = mock_chat
    update.effective_message = mock_message
    update.message = mock_message
    return update
