import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from core.config import WakeupConfig

WHITESPACE = re.compile(r"\s+")
PUNCTUATION = re.compile(r"[，。,.!?！？]")
LEADING_NOISE = re.compile(r"^[，。,.!?！？:：\s]+")


class CommandKind(str, Enum):
    STOP = "stop"
    ENTER_AI_MODE = "enter_ai_mode"
    EXIT_AI_MODE = "exit_ai_mode"
    AI_QUERY = "ai_query"
    IGNORE = "ignore"      # Let the speaker answer on its own


@dataclass
class VoiceCommand:
    kind: CommandKind
    intent: str = ""
    keyword: Optional[str] = None

    @property
    def is_noop(self) -> bool:
        """An AI query whose intent turned out empty: handled, nothing to do."""
        return self.kind == CommandKind.AI_QUERY and not self.intent


def normalize_text(text: str) -> str:
    """Drop whitespace and common punctuation for phrase comparisons."""
    text = WHITESPACE.sub("", str(text or "").strip())
    return PUNCTUATION.sub("", text)


def _matches_any(normalized: str, phrases: list[str]) -> bool:
    return any(normalized == p for p in map(normalize_text, phrases) if p)


def is_stop_command(normalized: str, wakeup: WakeupConfig) -> bool:
    return any(p in normalized for p in map(normalize_text, wakeup.stop_keywords) if p)


def is_enter_ai_mode(normalized: str, wakeup: WakeupConfig) -> bool:
    return _matches_any(normalized, wakeup.enter_ai_mode)


def is_exit_ai_mode(normalized: str, wakeup: WakeupConfig) -> bool:
    return _matches_any(normalized, wakeup.exit_ai_mode)


def find_keyword(text: str, keywords: list[str]) -> Optional[str]:
    """First configured wake keyword contained in the raw text."""
    for keyword in keywords:
        if keyword and keyword in text:
            return keyword
    return None


def extract_intent(text: str, keyword: str) -> str:
    """The part of the utterance after the first occurrence of `keyword`."""
    rest = text[text.index(keyword) + len(keyword):].strip()
    return LEADING_NOISE.sub("", rest)


def classify(text: str, wakeup: WakeupConfig, ai_mode: bool) -> VoiceCommand:
    """Decide what a recognized utterance means.

    Stop and mode phrases are compared on normalized text; wake keywords
    are searched in the raw text.
    """
    text = str(text or "")
    normalized = normalize_text(text)

    if is_stop_command(normalized, wakeup):
        return VoiceCommand(CommandKind.STOP)
    if is_enter_ai_mode(normalized, wakeup):
        return VoiceCommand(CommandKind.ENTER_AI_MODE)
    if is_exit_ai_mode(normalized, wakeup):
        return VoiceCommand(CommandKind.EXIT_AI_MODE)

    keyword = find_keyword(text, wakeup.keywords)
    if keyword is not None:
        return VoiceCommand(CommandKind.AI_QUERY, extract_intent(text, keyword), keyword)
    if ai_mode:
        return VoiceCommand(CommandKind.AI_QUERY, text.strip())
    return VoiceCommand(CommandKind.IGNORE)


def is_story_request(intent: str, trigger_pattern: str) -> bool:
    return bool(trigger_pattern) and re.search(trigger_pattern, intent) is not None
