import inspect
import re
import time
from datetime import datetime
from typing import Any

from loguru import logger

from core.config import PromptContextConfig

PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")
WEEKDAYS = ["一", "二", "三", "四", "五", "六", "日"]


class PromptContext:
    """Fills {{name}} placeholders in prompt templates.

    Built-in variables cover date and time plus the configured location and
    names. Extra variables can be plain values, functions, or coroutine
    functions; callables are evaluated on every render.
    """

    def __init__(self, config: PromptContextConfig):
        self.config = config
        self._custom: dict[str, Any] = {}

    def set(self, key: str, value: Any) -> None:
        self._custom[key] = value

    async def get_variables(self) -> dict[str, Any]:
        now = datetime.now()
        variables: dict[str, Any] = {
            "date": now.strftime("%Y/%m/%d"),
            "time": now.strftime("%H:%M:%S"),
            "datetime": now.strftime("%Y/%m/%d %H:%M:%S"),
            "timestamp": int(time.time() * 1000),
            "day_of_week": WEEKDAYS[now.weekday()],
            "location": self.config.location or "未设置",
            "user_name": self.config.user_name or "用户",
            "assistant_name": self.config.assistant_name or "助手",
        }

        for key, value in self._custom.items():
            if callable(value):
                try:
                    value = value()
                    if inspect.isawaitable(value):
                        value = await value
                except Exception as e:
                    logger.error("Prompt variable '{}' failed: {}", key, e)
                    value = ""
            variables[key] = value

        return variables

    async def render(self, template: str) -> str:
        """Replace known placeholders; unknown ones are left as written."""
        if not template:
            return template

        variables = await self.get_variables()

        def substitute(match: re.Match) -> str:
            name = match.group(1)
            if name in variables:
                return str(variables[name])
            return match.group(0)

        return PLACEHOLDER.sub(substitute, template)


def current_hour():
    return lambda: datetime.now().hour


def greeting():
    def _greeting() -> str:
        hour = datetime.now().hour
        if hour < 6:
            return "深夜好"
        if hour < 9:
            return "早上好"
        if hour < 12:
            return "上午好"
        if hour < 14:
            return "中午好"
        if hour < 18:
            return "下午好"
        if hour < 22:
            return "晚上好"
        return "夜深了"

    return _greeting
