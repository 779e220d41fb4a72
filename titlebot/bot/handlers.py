# titlebot/bot/handlers.py (命令处理器模块)

# 设计说明:
# - 每个修改类命令都遵循同一流程：
#   1. 非群组聊天直接回复“仅限群组”；
#   2. 读取（或创建默认）群组记录；
#   3. 权限检查，不通过时静默结束，不做任何回复；
#   4. 校验参数并执行具体的修改；
#   5. 保存，并在修改影响标题时立即尝试渲染并应用。
# - 存储 (GroupStore) 通过 `context.bot_data['group_store']` 注入，Telegram 客户端即 `context.bot`，
#   处理器本身不持有任何全局状态。
# - 命令与处理器的对应关系由文件末尾的静态注册表 COMMAND_HANDLERS 描述，启动时一次性注册。

import logging
from typing import Callable, Optional

from telegram import Message, Update
from telegram.constants import ChatType
from telegram.error import TelegramError
from telegram.ext import ContextTypes

from titlebot import __version__
from titlebot.core.errors import InvalidTimezone, RenderFailure
from titlebot.core.group import GroupRecord
from titlebot.core.permissions import authorize
from titlebot.core.renderer import parse_timezone
from titlebot.core.store import GroupStore
from titlebot.core.title import apply_title, render_title
from titlebot.utils import utc_now

logger = logging.getLogger(__name__)

GROUP_CHAT_TYPES = (ChatType.GROUP, ChatType.SUPERGROUP, ChatType.CHANNEL)

GROUP_ONLY_REPLY = "该命令仅能在群组中使用。"
APPLY_FAILED_REPLY = "发生什么事了？未能成功更改群标题，请检查 bot 帐号权限"
GENERIC_ERROR_REPLY = "处理命令时发生内部错误，请稍后再试。"

# =================== 辅助函数 ===================

def _is_group_chat(update: Update) -> bool:
    chat = update.effective_chat
    return chat is not None and chat.type in GROUP_CHAT_TYPES


def _command_argument(message: Message) -> Optional[str]:
    """返回命令文本中第一个空格之后的全部内容；没有或只有空白时返回 None。"""
    parts = (message.text or "").split(' ', 1)
    if len(parts) < 2 or not parts[1].strip():
        return None
    return parts[1]


def _get_store(context: ContextTypes.DEFAULT_TYPE) -> GroupStore:
    return context.bot_data['group_store']


async def _load_authorized_group(update: Update, context: ContextTypes.DEFAULT_TYPE) -> Optional[GroupRecord]:
    """
    读取（或创建）当前群组的记录并做权限检查。

    Returns:
        GroupRecord | None: 权限检查不通过时返回 None，调用方应直接结束且不回复。
    """
    chat = update.effective_chat
    record = _get_store(context).get_or_create(chat.id, chat.title)
    if not await authorize(record, update.effective_user, chat.id, context.bot):
        user_id = update.effective_user.id if update.effective_user else None
        logger.info(f"用户 {user_id} 无权修改群组 {chat.id} 的配置，已忽略。")
        return None
    return record


def _preview(record: GroupRecord) -> str:
    try:
        return f"预览：{render_title(record, utc_now())}"
    except RenderFailure as e:
        return f"当前模板无法渲染为有效标题：{e}"


async def _apply_and_save(update: Update, context: ContextTypes.DEFAULT_TYPE, record: GroupRecord,
                          success_reply: Optional[str] = None) -> bool:
    """
    保存修改后的记录；群组已启用时先立即应用新标题。

    应用失败时会把群组改为未启用再保存，并回复失败提示：
    一个群组在确认应用失败后不能继续保持启用状态。
    """
    store = _get_store(context)
    if record.enabled:
        if not await apply_title(record, context.bot, utc_now()):
            record.enabled = False
            store.put(record)
            logger.warning(f"群组 {record.id} 应用新标题失败，已自动禁用。")
            await update.message.reply_text(APPLY_FAILED_REPLY)
            return False
        store.put(record)
        reply = success_reply or f"标题模板已被更改至： {record.joined_template()}"
    else:
        store.put(record)
        reply = success_reply or f"标题模板已被更改至： {record.joined_template()}\n{_preview(record)}"

    logger.info(f"已回复群组 {record.id}: {reply!r}")
    await update.message.reply_text(reply)
    return True


async def _segment_command(update: Update, context: ContextTypes.DEFAULT_TYPE,
                           mutate: Callable[[GroupRecord, str], None]) -> None:
    """push / push_front / set_template 的公共流程。"""
    if not _is_group_chat(update):
        await update.message.reply_text(GROUP_ONLY_REPLY)
        return
    record = await _load_authorized_group(update, context)
    if record is None:
        return

    segment = _command_argument(update.message)
    if segment is None:
        await update.message.reply_text("无效命令，没有发现新的标题片段")
        return

    mutate(record, segment)
    await _apply_and_save(update, context, record)


async def _pop_command(update: Update, context: ContextTypes.DEFAULT_TYPE,
                       mutate: Callable[[GroupRecord], bool]) -> None:
    """pop / pop_front 的公共流程。只剩一个片段时不做修改。"""
    if not _is_group_chat(update):
        await update.message.reply_text(GROUP_ONLY_REPLY)
        return
    record = await _load_authorized_group(update, context)
    if record is None:
        return

    if not mutate(record):
        logger.debug(f"群组 {record.id} 只剩一个标题片段，忽略移除操作。")
    await _apply_and_save(update, context, record)


# =================== 命令处理器 ===================

async def start_handler(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """处理 /start 命令，回复机器人版本。"""
    reply = f"Title bot {__version__}"
    logger.info(f"已回复: {reply!r}")
    await update.message.reply_text(reply)


async def status_handler(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """处理 /status 命令，显示当前群组的标题配置。"""
    if not _is_group_chat(update):
        return await update.message.reply_text(GROUP_ONLY_REPLY)
    record = await _load_authorized_group(update, context)
    if record is None:
        return

    message = (
        f"当前标题: {update.effective_chat.title}\n"
        f"群 ID: {record.id}\n"
        f"启用自动更改: {record.enabled}\n"
        f"标题片段: {record.segments}\n"
        f"分隔符: {record.delimiter}\n"
        f"时区: {record.timezone}\n"
        f"需要管理权限: {record.require_admin}"
    )
    await update.message.reply_text(message)


async def enable_handler(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """处理 /enable 命令：启用自动标题并立即应用一次，失败则回退为未启用。"""
    if not _is_group_chat(update):
        return await update.message.reply_text(GROUP_ONLY_REPLY)
    record = await _load_authorized_group(update, context)
    if record is None:
        return

    store = _get_store(context)
    record.enabled = True
    if not await apply_title(record, context.bot, utc_now()):
        record.enabled = False
        store.put(record)
        logger.warning(f"群组 {record.id} 启用时应用标题失败，已回退为未启用。")
        return await update.message.reply_text(APPLY_FAILED_REPLY)

    store.put(record)
    logger.info(f"群组 {record.id} 已启用自动标题更改。")
    await update.message.reply_text(f"已启用自动标题更改，当前标题模板为： {record.joined_template()}")


async def disable_handler(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """处理 /disable 命令。不做任何渲染。"""
    if not _is_group_chat(update):
        return await update.message.reply_text(GROUP_ONLY_REPLY)
    record = await _load_authorized_group(update, context)
    if record is None:
        return

    record.enabled = False
    _get_store(context).put(record)
    logger.info(f"群组 {record.id} 已禁用自动标题更改。")
    await update.message.reply_text("已禁用自动标题更改")


async def set_delimiter_handler(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """处理 /set_delimiter <分隔符> 命令。"""
    if not _is_group_chat(update):
        return await update.message.reply_text(GROUP_ONLY_REPLY)
    record = await _load_authorized_group(update, context)
    if record is None:
        return

    delimiter = _command_argument(update.message)
    if delimiter is None:
        return await update.message.reply_text("无效命令，没有发现新的分隔符")

    record.delimiter = delimiter
    await _apply_and_save(update, context, record)


async def set_timezone_handler(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """处理 /set_timezone <IANA 时区名> 命令。"""
    if not _is_group_chat(update):
        return await update.message.reply_text(GROUP_ONLY_REPLY)
    record = await _load_authorized_group(update, context)
    if record is None:
        return

    timezone_name = _command_argument(update.message)
    if timezone_name is None:
        return await update.message.reply_text("无效命令，没有发现新的时区名称")
    try:
        tz = parse_timezone(timezone_name.strip())
    except InvalidTimezone as e:
        logger.info(f"群组 {record.id} 提交了无效的时区: {e}")
        return await update.message.reply_text("无效命令，无法解析时区名称")

    record.timezone = tz.key
    await _apply_and_save(update, context, record, success_reply=f"时区已变更至：{record.timezone}")


async def set_template_handler(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """处理 /set_template <模板> 命令：用一个片段替换全部片段。"""
    await _segment_command(update, context, GroupRecord.replace_segments)


async def push_handler(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """处理 /push <片段> 命令：在末尾追加一个片段。"""
    await _segment_command(update, context, GroupRecord.push_segment)


async def push_front_handler(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """处理 /push_front <片段> 命令：在开头插入一个片段。"""
    await _segment_command(update, context, GroupRecord.push_front_segment)


async def pop_handler(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """处理 /pop 命令：移除最后一个片段。"""
    await _pop_command(update, context, GroupRecord.pop_segment)


async def pop_front_handler(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """处理 /pop_front 命令：移除第一个片段。"""
    await _pop_command(update, context, GroupRecord.pop_front_segment)


# =================== 错误处理器 ===================

async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE):
    """
    应用级错误处理器。
    处理器中未捕获的存储错误、权限查询错误等都会到这里：记录日志，并给出一条通用的失败回复。
    """
    logger.error(f"处理更新时发生错误: {context.error}", exc_info=context.error)
    if isinstance(update, Update) and update.effective_message:
        try:
            await update.effective_message.reply_text(GENERIC_ERROR_REPLY)
        except TelegramError as e:
            logger.warning(f"发送错误提示失败: {e}")


# =================== 命令注册表 ===================
# 启动时由 main.py 一次性注册为 CommandHandler。

COMMAND_HANDLERS = (
    ("start", start_handler),
    ("status", status_handler),
    ("enable", enable_handler),
    ("disable", disable_handler),
    ("set_template", set_template_handler),
    ("set_delimiter", set_delimiter_handler),
    ("set_timezone", set_timezone_handler),
    ("push", push_handler),
    ("push_front", push_front_handler),
    ("pop", pop_handler),
    ("pop_front", pop_front_handler),
)
