"""
Exports the title engine for easy access throughout the application.

This allows for clean imports such as:
from titlebot.core import GroupRecord, GroupStore, apply_title
"""

from .errors import (
    TitleBotError,
    GroupNotFound,
    InvalidInput,
    InvalidTimezone,
    RenderFailure,
    InvalidTemplate,
    InvalidLength,
    StoreError,
    MissingUser,
)
from .group import GroupRecord
from .permissions import authorize
from .renderer import render, parse_timezone
from .store import GroupStore
from .title import apply_title, render_title

__all__ = [
    "TitleBotError",
    "GroupNotFound",
    "InvalidInput",
    "InvalidTimezone",
    "RenderFailure",
    "InvalidTemplate",
    "InvalidLength",
    "StoreError",
    "MissingUser",
    "GroupRecord",
    "GroupStore",
    "authorize",
    "render",
    "parse_timezone",
    "apply_title",
    "render_title",
]
