# titlebot/core/permissions.py

import logging
from typing import Optional

from telegram import Bot, User as TelegramUser

from .errors import MissingUser
from .group import GroupRecord

logger = logging.getLogger(__name__)

ADMIN_STATUSES = ('creator', 'administrator')


async def authorize(record: GroupRecord, user: Optional[TelegramUser], chat_id: int, bot: Bot) -> bool:
    """
    判断发起请求的用户是否可以修改该群组的配置。

    `require_admin` 关闭时任何人都可以修改；否则只有群主和管理员可以。
    查询成员状态时的网络或 API 错误会直接向上抛出，而不是被当作“拒绝”。

    Raises:
        MissingUser: 需要校验权限，但请求中没有用户信息。
    """
    if not record.require_admin:
        return True
    if user is None:
        raise MissingUser("无法获取发起请求的用户信息")

    member = await bot.get_chat_member(chat_id=chat_id, user_id=user.id)
    logger.debug(f"用户 {user.id} 在群组 {chat_id} 中的身份: {member.status}")
    return member.status in ADMIN_STATUSES
