"""
titlebot: 定时自动维护 Telegram 群组标题的机器人。

群组管理员通过命令配置一组带日期占位符的标题片段，
机器人会按固定周期重新渲染并应用群组标题。
"""

__version__ = "0.2.0"
