# tests/test_handlers.py

import pytest
from datetime import datetime, timezone
from unittest.mock import MagicMock, AsyncMock, patch

from telegram import Update
from telegram.error import Forbidden, NetworkError

from titlebot import __version__
from titlebot.bot.handlers import (
    start_handler, status_handler, enable_handler, disable_handler,
    set_template_handler, set_delimiter_handler, set_timezone_handler,
    push_handler, push_front_handler, pop_handler, pop_front_handler,
    error_handler, COMMAND_HANDLERS,
    GROUP_ONLY_REPLY, APPLY_FAILED_REPLY, GENERIC_ERROR_REPLY,
)
from titlebot.core.errors import MissingUser, StoreError
from titlebot.core.group import GroupRecord
from titlebot.core.store import group_key

pytestmark = pytest.mark.asyncio

INSTANT = datetime(2024, 3, 5, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def fixed_now():
    with patch('titlebot.bot.handlers.utc_now', return_value=INSTANT):
        yield


def _reply_text(update):
    update.message.reply_text.assert_called_once()
    return update.message.reply_text.call_args[0][0]


def _seed(group_store, **overrides):
    fields = dict(id=-1001, segments=["Team Chat"], last_title="Team Chat")
    fields.update(overrides)
    record = GroupRecord(**fields)
    group_store.put(record)
    return record


# =================== 群组限制 ===================

async def test_private_chat_is_rejected(mock_update, mock_context, group_store):
    """测试：在私聊中使用修改类命令时回复“仅限群组”，且不创建任何记录。"""
    mock_update.effective_chat.type = "private"
    mock_update.message.text = "/enable"

    await enable_handler(mock_update, mock_context)

    mock_update.message.reply_text.assert_called_once_with(GROUP_ONLY_REPLY)
    assert group_store.list_all_keys() == []
    mock_context.bot.set_chat_title.assert_not_called()


async def test_start_works_in_any_chat(mock_update, mock_context):
    mock_update.effective_chat.type = "private"
    await start_handler(mock_update, mock_context)
    mock_update.message.reply_text.assert_called_once_with(f"Title bot {__version__}")


# =================== enable / disable ===================

async def test_enable_applies_title_immediately(mock_update, mock_context, group_store):
    mock_update.message.text = "/enable"

    await enable_handler(mock_update, mock_context)

    mock_context.bot.set_chat_title.assert_awaited_once_with(chat_id=-1001, title="Team Chat")
    stored = group_store.get(-1001)
    assert stored.enabled is True
    assert stored.last_title == "Team Chat"
    assert _reply_text(mock_update) == "已启用自动标题更改，当前标题模板为： Team Chat"


async def test_enable_reverts_when_apply_fails(mock_update, mock_context, group_store):
    """测试：启用时应用标题失败，群组被回退为未启用并保存。"""
    mock_update.message.text = "/enable"
    mock_context.bot.set_chat_title.side_effect = Forbidden("not enough rights to change chat title")

    await enable_handler(mock_update, mock_context)

    assert group_store.get(-1001).enabled is False
    assert _reply_text(mock_update) == APPLY_FAILED_REPLY


async def test_enable_with_unrenderable_template_reverts(mock_update, mock_context, group_store):
    _seed(group_store, segments=["Team Chat", "{nope}"])
    mock_update.message.text = "/enable"

    await enable_handler(mock_update, mock_context)

    mock_context.bot.set_chat_title.assert_not_called()
    assert group_store.get(-1001).enabled is False
    assert _reply_text(mock_update) == APPLY_FAILED_REPLY


async def test_disable_does_not_render(mock_update, mock_context, group_store):
    _seed(group_store, enabled=True)
    mock_update.message.text = "/disable"

    await disable_handler(mock_update, mock_context)

    assert group_store.get(-1001).enabled is False
    mock_context.bot.set_chat_title.assert_not_called()
    assert _reply_text(mock_update) == "已禁用自动标题更改"


# =================== 片段操作 ===================

async def test_push_on_enabled_group_applies_new_title(mock_update, mock_context, group_store):
    _seed(group_store, enabled=True)
    mock_update.message.text = "/push {Y}-{m}-{d}"

    await push_handler(mock_update, mock_context)

    mock_context.bot.set_chat_title.assert_awaited_once_with(chat_id=-1001, title="Team Chat | 2024-03-05")
    stored = group_store.get(-1001)
    assert stored.segments == ["Team Chat", "{Y}-{m}-{d}"]
    assert stored.last_title == "Team Chat | 2024-03-05"
    assert _reply_text(mock_update) == "标题模板已被更改至： Team Chat | {Y}-{m}-{d}"


async def test_push_on_disabled_group_reports_preview_without_applying(mock_update, mock_context, group_store):
    """测试：群组未启用时依然保存并回复渲染预览，但不调用 setChatTitle。"""
    mock_update.message.text = "/push {Y}-{m}-{d}"

    await push_handler(mock_update, mock_context)

    mock_context.bot.set_chat_title.assert_not_called()
    stored = group_store.get(-1001)
    assert stored.segments == ["Team Chat", "{Y}-{m}-{d}"]
    assert stored.enabled is False
    reply = _reply_text(mock_update)
    assert "标题模板已被更改至： Team Chat | {Y}-{m}-{d}" in reply
    assert "预览：Team Chat | 2024-03-05" in reply


async def test_push_with_bad_placeholder_on_disabled_group_reports_problem(mock_update, mock_context, group_store):
    mock_update.message.text = "/push {oops}"

    await push_handler(mock_update, mock_context)

    assert group_store.get(-1001).segments == ["Team Chat", "{oops}"]
    assert "当前模板无法渲染为有效标题" in _reply_text(mock_update)


async def test_push_with_bad_placeholder_on_enabled_group_disables(mock_update, mock_context, group_store):
    _seed(group_store, enabled=True)
    mock_update.message.text = "/push {oops}"

    await push_handler(mock_update, mock_context)

    stored = group_store.get(-1001)
    assert stored.enabled is False
    assert stored.last_title == "Team Chat"
    mock_context.bot.set_chat_title.assert_not_called()
    assert _reply_text(mock_update) == APPLY_FAILED_REPLY


async def test_push_without_argument_is_rejected(mock_update, mock_context, group_store):
    record = _seed(group_store)
    before = group_store.backend.get(group_key(-1001))
    mock_update.message.text = "/push"

    await push_handler(mock_update, mock_context)

    assert _reply_text(mock_update) == "无效命令，没有发现新的标题片段"
    assert group_store.backend.get(group_key(-1001)) == before
    assert group_store.get(-1001) == record


async def test_push_with_bot_mention_uses_remainder(mock_update, mock_context, group_store):
    mock_update.message.text = "/push@title_bot 第 {yeshu} 年"

    await push_handler(mock_update, mock_context)

    assert group_store.get(-1001).segments == ["Team Chat", "第 {yeshu} 年"]


async def test_push_front_prepends(mock_update, mock_context, group_store):
    mock_update.message.text = "/push_front 📅"

    await push_front_handler(mock_update, mock_context)

    assert group_store.get(-1001).segments == ["📅", "Team Chat"]


async def test_pop_on_single_segment_is_noop(mock_update, mock_context, group_store):
    _seed(group_store)
    mock_update.message.text = "/pop"

    await pop_handler(mock_update, mock_context)

    assert group_store.get(-1001).segments == ["Team Chat"]
    mock_update.message.reply_text.assert_called_once()


async def test_pop_and_pop_front_remove_segments(mock_update, mock_context, group_store):
    _seed(group_store, segments=["a", "b", "c"], enabled=True)

    mock_update.message.text = "/pop"
    await pop_handler(mock_update, mock_context)
    assert group_store.get(-1001).segments == ["a", "b"]

    mock_update.message.text = "/pop_front"
    await pop_front_handler(mock_update, mock_context)
    assert group_store.get(-1001).segments == ["b"]

    assert mock_context.bot.set_chat_title.await_count == 2
    mock_context.bot.set_chat_title.assert_awaited_with(chat_id=-1001, title="b")


async def test_set_template_replaces_all_segments(mock_update, mock_context, group_store):
    _seed(group_store, segments=["a", "b"])
    mock_update.message.text = "/set_template Daily {F}"

    await set_template_handler(mock_update, mock_context)

    assert group_store.get(-1001).segments == ["Daily {F}"]


# =================== 分隔符与时区 ===================

async def test_set_delimiter(mock_update, mock_context, group_store):
    _seed(group_store, segments=["a", "b"], enabled=True)
    mock_update.message.text = "/set_delimiter ·"

    await set_delimiter_handler(mock_update, mock_context)

    assert group_store.get(-1001).delimiter == "·"
    mock_context.bot.set_chat_title.assert_awaited_once_with(chat_id=-1001, title="a · b")


async def test_set_delimiter_without_argument(mock_update, mock_context, group_store):
    _seed(group_store)
    mock_update.message.text = "/set_delimiter "

    await set_delimiter_handler(mock_update, mock_context)

    assert _reply_text(mock_update) == "无效命令，没有发现新的分隔符"
    assert group_store.get(-1001).delimiter == "|"


async def test_set_timezone(mock_update, mock_context, group_store):
    _seed(group_store, segments=["{H}:{M}"], enabled=True)
    mock_update.message.text = "/set_timezone Asia/Shanghai"

    await set_timezone_handler(mock_update, mock_context)

    assert group_store.get(-1001).timezone == "Asia/Shanghai"
    mock_context.bot.set_chat_title.assert_awaited_once_with(chat_id=-1001, title="18:00")
    assert _reply_text(mock_update) == "时区已变更至：Asia/Shanghai"


async def test_set_timezone_rejects_invalid_name(mock_update, mock_context, group_store):
    """测试：无法解析的时区名称在写入前就被拒绝，记录保持不变。"""
    _seed(group_store)
    mock_update.message.text = "/set_timezone Mars/Olympus_Mons"

    await set_timezone_handler(mock_update, mock_context)

    assert _reply_text(mock_update) == "无效命令，无法解析时区名称"
    assert group_store.get(-1001).timezone == "UTC"


async def test_set_timezone_rejects_zone_directory_name(mock_update, mock_context, group_store):
    _seed(group_store)
    mock_update.message.text = "/set_timezone America"

    await set_timezone_handler(mock_update, mock_context)

    assert _reply_text(mock_update) == "无效命令，无法解析时区名称"
    assert group_store.get(-1001).timezone == "UTC"


async def test_set_timezone_without_argument(mock_update, mock_context, group_store):
    mock_update.message.text = "/set_timezone"

    await set_timezone_handler(mock_update, mock_context)

    assert _reply_text(mock_update) == "无效命令，没有发现新的时区名称"


# =================== /status ===================

async def test_status_reports_configuration(mock_update, mock_context, group_store):
    _seed(group_store, segments=["Team Chat", "{F}"], timezone="Asia/Tokyo")

    await status_handler(mock_update, mock_context)

    reply = _reply_text(mock_update)
    assert "当前标题: Team Chat" in reply
    assert "群 ID: -1001" in reply
    assert "启用自动更改: False" in reply
    assert "标题片段: ['Team Chat', '{F}']" in reply
    assert "时区: Asia/Tokyo" in reply
    assert "需要管理权限: True" in reply


# =================== 权限 ===================

MUTATING_COMMANDS = [
    (enable_handler, "/enable"),
    (disable_handler, "/disable"),
    (set_template_handler, "/set_template x"),
    (set_delimiter_handler, "/set_delimiter -"),
    (set_timezone_handler, "/set_timezone Asia/Tokyo"),
    (push_handler, "/push {F}"),
    (push_front_handler, "/push_front {F}"),
    (pop_handler, "/pop"),
    (pop_front_handler, "/pop_front"),
    (status_handler, "/status"),
]


@pytest.mark.parametrize("handler, text", MUTATING_COMMANDS)
async def test_non_admin_cannot_change_anything(handler, text, mock_update, mock_context, group_store):
    """测试：require_admin 开启且用户只是普通成员时，存储的记录逐字节不变，且没有任何回复。"""
    _seed(group_store, segments=["a", "b"], enabled=True)
    before = group_store.backend.get(group_key(-1001))
    mock_context.bot.get_chat_member = AsyncMock(return_value=MagicMock(status='member'))
    mock_update.message.text = text

    await handler(mock_update, mock_context)

    assert group_store.backend.get(group_key(-1001)) == before
    mock_update.message.reply_text.assert_not_called()
    mock_context.bot.set_chat_title.assert_not_called()
    mock_context.bot.get_chat_member.assert_awaited_once_with(chat_id=-1001, user_id=123)


async def test_require_admin_off_lets_members_change_config(mock_update, mock_context, group_store):
    _seed(group_store, require_admin=False)
    mock_context.bot.get_chat_member = AsyncMock(return_value=MagicMock(status='member'))
    mock_update.message.text = "/push {F}"

    await push_handler(mock_update, mock_context)

    assert group_store.get(-1001).segments == ["Team Chat", "{F}"]
    mock_context.bot.get_chat_member.assert_not_called()


async def test_missing_user_propagates_and_leaves_record_unchanged(mock_update, mock_context, group_store):
    """测试：需要管理员权限但请求中没有用户时抛出 MissingUser，记录保持不变，由错误处理器回复。"""
    _seed(group_store, segments=["a", "b"], enabled=True)
    before = group_store.backend.get(group_key(-1001))
    mock_update.effective_user = None
    mock_update.message.text = "/pop"

    with pytest.raises(MissingUser) as exc_info:
        await pop_handler(mock_update, mock_context)

    assert group_store.backend.get(group_key(-1001)) == before
    mock_context.bot.get_chat_member.assert_not_called()
    mock_context.bot.set_chat_title.assert_not_called()
    mock_update.message.reply_text.assert_not_called()

    update = MagicMock(spec=Update)
    update.effective_message = mock_update.message
    mock_context.error = exc_info.value
    await error_handler(update, mock_context)
    mock_update.message.reply_text.assert_awaited_once_with(GENERIC_ERROR_REPLY)


async def test_membership_query_failure_propagates(mock_update, mock_context, group_store):
    mock_context.bot.get_chat_member = AsyncMock(side_effect=NetworkError("connection reset"))
    mock_update.message.text = "/enable"

    with pytest.raises(NetworkError):
        await enable_handler(mock_update, mock_context)
    mock_context.bot.set_chat_title.assert_not_called()


# =================== 存储错误与错误处理器 ===================

async def test_store_write_failure_is_surfaced(mock_update, mock_context, group_store):
    """测试：修改后的保存失败会向上抛出，由错误处理器给出通用回复。"""
    _seed(group_store)
    mock_update.message.text = "/disable"

    with patch.object(group_store, "put", side_effect=StoreError("disk full")):
        with pytest.raises(StoreError):
            await disable_handler(mock_update, mock_context)


async def test_error_handler_replies_generic_message(mock_context):
    update = MagicMock(spec=Update)
    update.effective_message = MagicMock()
    update.effective_message.reply_text = AsyncMock()
    mock_context.error = StoreError("disk full")

    await error_handler(update, mock_context)

    update.effective_message.reply_text.assert_awaited_once_with(GENERIC_ERROR_REPLY)


async def test_error_handler_ignores_non_update_objects(mock_context, caplog):
    mock_context.error = RuntimeError("boom")
    await error_handler("not an update", mock_context)
    assert "处理更新时发生错误" in caplog.text


async def test_command_table_lists_every_command():
    names = [name for name, _ in COMMAND_HANDLERS]
    assert names == [
        "start", "status", "enable", "disable", "set_template", "set_delimiter",
        "set_timezone", "push", "push_front", "pop", "pop_front",
    ]
    assert len(set(names)) == len(names)
