# titlebot/core/title.py (标题应用流程)

# 设计说明:
# - apply_title 是处理器和定时任务共用的“渲染 -> 校验长度 -> 调用 setChatTitle”流程。
# - 它只在成功时更新 record.last_title，从不修改 record.enabled：
#   失败后是否禁用群组、是否保存，由调用方决定。

import logging
from datetime import datetime

from telegram import Bot
from telegram.error import BadRequest, TelegramError

from .errors import InvalidLength, RenderFailure
from .group import GroupRecord
from .renderer import render

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 255


def render_title(record: GroupRecord, instant: datetime) -> str:
    """
    按记录当前的片段、分隔符和时区渲染标题，并校验长度。

    Raises:
        InvalidTemplate: 模板中存在无法解析的占位符。
        InvalidLength: 渲染结果为空或超过 255 个字符。
    """
    title = render(record.segments, record.delimiter, instant, record.timezone)
    if not 1 <= len(title) <= MAX_TITLE_LENGTH:
        raise InvalidLength(f"标题长度 {len(title)} 不在 1 到 {MAX_TITLE_LENGTH} 之间")
    return title


async def apply_title(record: GroupRecord, bot: Bot, instant: datetime) -> bool:
    """
    渲染并应用群组标题。

    Args:
        record: 群组记录，成功时其 `last_title` 会被更新。
        bot: 用于调用 setChatTitle 的 Telegram Bot。
        instant: 渲染所用的时间点。

    Returns:
        bool: 标题是否成功应用。渲染失败、长度不合法、API 返回失败或网络错误都返回 False。
    """
    try:
        title = render_title(record, instant)
    except RenderFailure as e:
        logger.warning(f"群组 {record.id} 的标题渲染失败: {e}")
        return False

    logger.info(f"正在为群组 {record.id} 应用标题: {title}")
    try:
        ok = await bot.set_chat_title(chat_id=record.id, title=title)
    except BadRequest as e:
        # 标题与当前一致时 Telegram 会返回 "not modified"，对调用方而言等同于成功
        if "not modified" not in str(e).lower():
            logger.warning(f"群组 {record.id} 的 setChatTitle 请求被拒绝: {e}")
            return False
        logger.debug(f"群组 {record.id} 的标题未变化，无需更新。")
        ok = True
    except TelegramError as e:
        logger.warning(f"为群组 {record.id} 调用 setChatTitle 时出错: {e}")
        return False

    if not ok:
        logger.warning(f"群组 {record.id} 的 setChatTitle 返回失败。")
        return False

    record.last_title = title
    return True
