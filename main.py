# main.py
# =======================================
# 应用程序主入口 (Application Entry Point)
# =======================================

import asyncio
import logging
import os
from dotenv import load_dotenv

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from telegram import Update
from telegram.ext import Application, CommandHandler, JobQueue, filters

# --- 内部模块导入 ---
from titlebot.database import init_database, get_session_factory, SqlKeyValueStore
from titlebot.core.store import GroupStore
from titlebot.bot.handlers import COMMAND_HANDLERS, error_handler
from titlebot.bot.tasks import refresh_group_titles

# ==================== 日志配置 ====================
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=logging.INFO
)
# APScheduler 和 httpx 的日志非常冗长，将其级别调整为 WARNING，以保持日志清爽
logging.getLogger('apscheduler').setLevel(logging.WARNING)
logging.getLogger('httpx').setLevel(logging.WARNING)
logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL = 60
REFRESH_JOB_ID = 'refresh_titles'


# ==================== 核心函数 ====================

def parse_refresh_interval(raw: str | None) -> int | None:
    """解析 TITLE_REFRESH_INTERVAL（秒）；未设置时使用默认值，非法时返回 None。"""
    if raw is None or raw.strip() == "":
        return DEFAULT_REFRESH_INTERVAL
    try:
        interval = int(raw)
    except ValueError:
        return None
    return interval if interval > 0 else None


def register_handlers(application: Application) -> None:
    """按静态注册表注册所有命令处理器以及错误处理器。只处理新消息，忽略编辑过的消息。"""
    for command, callback in COMMAND_HANDLERS:
        application.add_handler(CommandHandler(command, callback, filters=filters.UpdateType.MESSAGE))
    application.add_error_handler(error_handler)


async def main():
    """
    应用程序的主入口函数。
    负责初始化所有组件（数据库、调度器、机器人应用）并开始运行。
    """
    # 从 .env 文件加载环境变量，便于本地开发
    load_dotenv()

    # --- 1. 加载配置 ---
    token = os.getenv("TELEGRAM_TOKEN")
    db_url = os.getenv("DATABASE_URL")
    log_level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").upper())
    logging.getLogger().setLevel(log_level if isinstance(log_level, int) else logging.INFO)

    if not token:
        logger.critical("关键错误: 未在环境变量中找到 TELEGRAM_TOKEN，机器人无法启动。")
        return

    if not db_url:
        logger.critical("关键错误: 未在环境变量中找到 DATABASE_URL，机器人无法启动。")
        return

    refresh_interval = parse_refresh_interval(os.getenv("TITLE_REFRESH_INTERVAL"))
    if refresh_interval is None:
        logger.critical("关键错误: TITLE_REFRESH_INTERVAL 必须是正整数（秒），机器人无法启动。")
        return

    # --- 2. 初始化数据库与群组存储 ---
    engine = init_database(db_url)
    session_factory = get_session_factory(engine)
    group_store = GroupStore(SqlKeyValueStore(session_factory))

    # --- 3. 初始化计划任务调度器 (APScheduler) 和 JobQueue ---
    logger.info("正在设置计划任务调度器...")
    scheduler = AsyncIOScheduler(timezone="UTC")
    job_queue = JobQueue()
    job_queue.scheduler = scheduler

    # --- 4. 初始化 Telegram Bot Application ---
    logger.info("正在启动机器人应用...")
    application = Application.builder().token(token).job_queue(job_queue).build()

    # --- 5. 依赖注入：处理器和计划任务通过 bot_data 取得群组存储 ---
    application.bot_data['group_store'] = group_store

    # --- 6. 注册所有命令处理器 ---
    logger.info("正在注册命令处理器...")
    register_handlers(application)

    # --- 7. 启动一切 ---
    try:
        async with application:
            job_queue = application.job_queue
            # 同一时间最多只有一次刷新在运行，错过的运行合并为一次
            job_queue.run_repeating(
                refresh_group_titles,
                interval=refresh_interval,
                first=0,
                job_kwargs={
                    'id': REFRESH_JOB_ID,
                    'coalesce': True,
                    'max_instances': 1,
                    'misfire_grace_time': refresh_interval,
                }
            )
            logger.info(f"已添加每 {refresh_interval} 秒运行一次的 '{REFRESH_JOB_ID}' 计划任务。")

            logger.info("机器人已完成启动，开始轮询接收更新...")
            await application.start()
            await application.updater.start_polling(allowed_updates=[Update.MESSAGE])
            try:
                # 创建一个永远不会完成的 Future，以使主协程永久运行。
                await asyncio.Future()
            finally:
                # `async with application` 退出前必须先停止 Updater 和 Application
                await application.updater.stop()
                await application.stop()
    except (KeyboardInterrupt, SystemExit):
        logger.info("接收到关闭信号 (如 Ctrl+C)，程序正在优雅地关闭...")
    finally:
        logger.info("清理完成，程序即将退出。")


if __name__ == '__main__':
    asyncio.run(main())
