# titlebot/core/errors.py

"""
标题引擎的异常体系。

权限不足 (PermissionDenied) 不是异常：权限检查直接返回 False，
处理器静默结束，不给出任何区别于“未知命令”的回复。
"""


class TitleBotError(Exception):
    """所有标题引擎异常的基类。"""


class GroupNotFound(TitleBotError):
    """存储中不存在该群组的记录（从未配置过）。"""

    def __init__(self, chat_id: int):
        super().__init__(f"群组 {chat_id} 的配置不存在")
        self.chat_id = chat_id


class InvalidInput(TitleBotError):
    """命令参数格式错误，例如无法解析的时区名称。"""


class InvalidTimezone(InvalidInput):
    """时区名称为空或不在 IANA 时区数据库中。"""


class RenderFailure(TitleBotError):
    """标题渲染失败的基类。"""


class InvalidTemplate(RenderFailure):
    """模板中存在无法解析的占位符。"""


class InvalidLength(RenderFailure):
    """渲染结果的长度不在 [1, 255] 范围内。"""


class StoreError(TitleBotError):
    """键值存储读写失败，或存储中的数据已损坏。"""


class MissingUser(TitleBotError):
    """需要校验权限，但请求中没有可识别的用户。"""
