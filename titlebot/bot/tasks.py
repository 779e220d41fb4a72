# titlebot/bot/tasks.py

import logging

from telegram.ext import ContextTypes

from titlebot.core.errors import GroupNotFound, StoreError
from titlebot.core.store import GroupStore
from titlebot.core.title import apply_title
from titlebot.utils import utc_now

logger = logging.getLogger(__name__)


async def refresh_group_titles(context: ContextTypes.DEFAULT_TYPE):
    """
    一个计划任务，为所有已启用的群组重新渲染并应用标题。

    群组按顺序逐个处理，任何一个群组的失败都只记录日志，不会中断对其他群组的处理。
    与交互式的 /enable 不同，这里应用失败时不会禁用群组，下一次运行时会再次尝试。
    """
    logger.info("正在执行群组标题刷新任务...")
    store: GroupStore = context.bot_data['group_store']
    try:
        identifiers = store.list_all_keys()
    except StoreError as e:
        logger.error(f"列举群组失败，本次标题刷新任务中止: {e}", exc_info=True)
        return

    now = utc_now()
    attempted = 0
    succeeded = 0
    for identifier in identifiers:
        try:
            chat_id = int(identifier)
        except ValueError:
            # 键都由本程序写入，出现这种情况说明存储已损坏
            logger.info(f"群组 ID '{identifier}' 无效，跳过。")
            continue

        try:
            record = store.get(chat_id)
            if not record.enabled:
                logger.debug(f"群组 {chat_id} 未启用，跳过。")
                continue

            attempted += 1
            if await apply_title(record, context.bot, now):
                store.put(record)
                succeeded += 1
                logger.debug(f"群组 {chat_id} 的标题已更新。")
            else:
                logger.warning(f"群组 {chat_id} 的标题更新失败，将在下次运行时重试。")
        except (GroupNotFound, StoreError) as e:
            logger.warning(f"读写群组 {chat_id} 的记录时失败: {e}")
        except Exception as e:
            # 捕获其他所有意外错误，保证一个群组的失败不影响其他群组
            logger.error(f"刷新群组 {chat_id} 的标题时发生未知错误: {e}", exc_info=True)

    logger.info(f"群组标题刷新任务完成。成功更新了 {succeeded}/{attempted} 个已启用的群组。")
