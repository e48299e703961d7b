# ride_dispatch/common/__init__.py
"""
Общие утилиты, константы и логгер.
"""

from ride_dispatch.common.logger import get_logger, log_info, log_error, log_warning
from ride_dispatch.common.constants import TypeMsg, ActionOutcome
from ride_dispatch.common.localization import get_text, load_lang_dict

__all__ = [
    "get_logger",
    "log_info",
    "log_error",
    "log_warning",
    "TypeMsg",
    "ActionOutcome",
    "get_text",
    "load_lang_dict",
]
