# titlebot/core/renderer.py (标题模板渲染器)

# 设计说明:
# - 渲染器是一个纯函数：相同的片段、分隔符、时间点和时区，永远得到相同的标题。
# - 占位符的语法为 `{key}`，花括号内两侧的空白会被忽略。
# - 未知占位符一律抛出 InvalidTemplate，而不是原样保留。
# - 不构成占位符的花括号（例如单独的 `{` 或 `{}`）原样保留。
# - 月份/星期名称固定为英文，不受进程 locale 影响。

import logging
import re
from datetime import datetime, timezone
from typing import Dict, List, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import InvalidTemplate, InvalidTimezone

logger = logging.getLogger(__name__)

# `yeshu` 说明符的纪元年份
EPOCH_YEAR = 1988

PLACEHOLDER_PATTERN = re.compile(r"\{\s*([^{}\s]+)\s*\}")

_MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]
_WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def parse_timezone(name: str) -> ZoneInfo:
    """
    将 IANA 时区名称解析为 ZoneInfo。

    Raises:
        InvalidTimezone: 名称为空、格式非法或时区数据库中不存在。
    """
    if not name:
        raise InvalidTimezone("时区名称为空")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError) as e:
        raise InvalidTimezone(f"无法解析时区名称 '{name}': {e}") from e


def resolve_timezone(name: str) -> ZoneInfo:
    """解析已持久化的时区名称；无法解析时回退到 UTC，而不是报错。"""
    try:
        return parse_timezone(name)
    except InvalidTimezone:
        logger.warning(f"无法解析已保存的时区 '{name}'，回退到 UTC。")
        return ZoneInfo("UTC")


def _utc_offset(local: datetime, separator: str = "") -> str:
    offset = local.utcoffset()
    total_minutes = int(offset.total_seconds() // 60) if offset is not None else 0
    sign = "-" if total_minutes < 0 else "+"
    hours, minutes = divmod(abs(total_minutes), 60)
    return f"{sign}{hours:02d}{separator}{minutes:02d}"


def build_template_context(instant: datetime, tz: ZoneInfo) -> Dict[str, str]:
    """
    为给定时间点生成模板上下文：说明符 -> 字符串值。

    Args:
        instant: 带时区信息的时间点；不带时区时按 UTC 处理。精度截断到秒。
        tz: 目标时区。

    Returns:
        Dict[str, str]: 每次渲染临时生成，不做持久化。
    """
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    local = instant.replace(microsecond=0).astimezone(tz)

    year, month, day = local.year, local.month, local.day
    hour, minute, second = local.hour, local.minute, local.second
    iso_year, iso_week, iso_weekday = local.isocalendar()
    yday = local.timetuple().tm_yday
    hour12 = hour % 12 or 12
    month_name = _MONTH_NAMES[month - 1]
    weekday_name = _WEEKDAY_NAMES[local.weekday()]
    # 星期日 = 0
    sunday_based = iso_weekday % 7

    ctx = {
        "Y": f"{year:04d}",
        "C": f"{year // 100:02d}",
        "y": f"{year % 100:02d}",
        "m": f"{month:02d}",
        "b": month_name[:3],
        "B": month_name,
        "h": month_name[:3],
        "d": f"{day:02d}",
        "e": f"{day:2d}",
        "a": weekday_name[:3],
        "A": weekday_name,
        "w": str(sunday_based),
        "u": str(iso_weekday),
        "U": f"{(yday - 1 + 7 - sunday_based) // 7:02d}",
        "W": f"{(yday - 1 + 7 - (iso_weekday - 1)) // 7:02d}",
        "G": f"{iso_year:04d}",
        "g": f"{iso_year % 100:02d}",
        "V": f"{iso_week:02d}",
        "j": f"{yday:03d}",
        "H": f"{hour:02d}",
        "k": f"{hour:2d}",
        "I": f"{hour12:02d}",
        "l": f"{hour12:2d}",
        "P": "am" if hour < 12 else "pm",
        "p": "AM" if hour < 12 else "PM",
        "M": f"{minute:02d}",
        "S": f"{second:02d}",
        "f": "000000000",
        "Z": local.tzname() or "",
        "z": _utc_offset(local),
        ":z": _utc_offset(local, ":"),
        "+": local.isoformat(),
        "s": str(int(local.timestamp())),
        "yeshu": str(year - EPOCH_YEAR),
    }
    ctx["D"] = ctx["x"] = f"{ctx['m']}/{ctx['d']}/{ctx['y']}"
    ctx["F"] = f"{ctx['Y']}-{ctx['m']}-{ctx['d']}"
    ctx["v"] = f"{ctx['e']}-{ctx['b']}-{ctx['Y']}"
    ctx["R"] = f"{ctx['H']}:{ctx['M']}"
    ctx["T"] = ctx["X"] = f"{ctx['H']}:{ctx['M']}:{ctx['S']}"
    ctx["r"] = f"{ctx['I']}:{ctx['M']}:{ctx['S']} {ctx['p']}"
    ctx["c"] = f"{ctx['a']} {ctx['b']} {ctx['e']} {ctx['T']} {ctx['Y']}"
    return ctx


def join_segments(segments: Sequence[str], delimiter: str) -> str:
    """用 `" " + delimiter + " "` 连接所有片段。"""
    return f" {delimiter} ".join(segments)


def substitute(template: str, context: Dict[str, str]) -> str:
    """
    将模板中所有 `{key}` 占位符替换为上下文中的值。

    Raises:
        InvalidTemplate: 模板中存在上下文里没有的占位符。
    """
    unknown: List[str] = []

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key not in context:
            unknown.append(key)
            return match.group(0)
        return context[key]

    result = PLACEHOLDER_PATTERN.sub(_replace, template)
    if unknown:
        raise InvalidTemplate(f"无法解析的占位符: {', '.join(unknown)}")
    return result


def render(segments: Sequence[str], delimiter: str, instant: datetime, timezone_name: str) -> str:
    """
    渲染群组标题。

    渲染器本身不限制结果长度，长度校验由调用方（应用流程）负责。

    Args:
        segments: 有序的标题片段。
        delimiter: 分隔符，渲染时两侧各加一个空格。
        instant: 渲染所用的时间点。
        timezone_name: IANA 时区名称，无法解析时回退到 UTC。

    Returns:
        str: 渲染后的标题字面值。
    """
    context = build_template_context(instant, resolve_timezone(timezone_name))
    return substitute(join_segments(segments, delimiter), context)
