"""
Bot mention detection and mention limiting for comment text.
"""

import re
from collections import defaultdict
from typing import Any, Dict, List, Tuple

from app.utils.logging import get_logger

logger = get_logger(__name__)

# GitHub logins: alphanumerics joined by single hyphens
MENTION_PATTERN = re.compile(r"@(\w+(?:-\w+)*)")

BOT_ACCOUNT_SUFFIX = "[bot]"


def _mention_patterns(bot_name: str) -> List[re.Pattern]:
    """Build the accepted ways of addressing the bot."""
    full = re.escape(bot_name)
    base, _, qualifier = bot_name.partition("-")
    base = re.escape(base)

    patterns = [
        rf"@{full}",
        rf"@{base}",
        rf"{full}\b",
        rf"\b{base}\b",
    ]
    if qualifier:
        patterns.append(rf"{base}\s+{re.escape(qualifier)}\b")

    return [re.compile(p, re.IGNORECASE) for p in patterns]


def is_bot_mentioned(comment_text: str, bot_name: str) -> bool:
    """
    Decide whether a comment addresses the bot.

    Matching is deliberately loose: "@xibe-review", "@xibe", "xibe review",
    "xibe-review" and a bare "xibe" all count, case-insensitively.

    Args:
        comment_text: Raw comment body
        bot_name: Hyphenated bot name, e.g. "xibe-review"

    Returns:
        True if any accepted pattern occurs in the text
    """
    if not comment_text or not bot_name:
        return False

    return any(p.search(comment_text) for p in _mention_patterns(bot_name.lower()))


def is_from_bot_self(author_login: str, bot_name: str) -> bool:
    """True when the comment was written by the bot's own app account."""
    if not author_login or not bot_name:
        return False
    name = bot_name.lower()
    base = name.partition("-")[0]
    login = author_login.lower()
    return login in (f"{name}{BOT_ACCOUNT_SUFFIX}", f"{base}{BOT_ACCOUNT_SUFFIX}")


def should_trigger_review(comment_text: str, author_login: str, bot_name: str) -> bool:
    """A comment triggers a review when it mentions the bot and is not the bot's own."""
    return is_bot_mentioned(comment_text, bot_name) and not is_from_bot_self(author_login, bot_name)


def limit_mentions(text: Any, max_per_user: int = 2) -> Any:
    """
    Keep at most ``max_per_user`` @mentions of each username.

    The earliest occurrences are kept; later ones are cut out of the text.
    All other text is left untouched. Non-string or empty input is returned
    unchanged.
    """
    if not text or not isinstance(text, str):
        return text

    occurrences: Dict[str, List[Tuple[int, int]]] = defaultdict(list)
    for match in MENTION_PATTERN.finditer(text):
        occurrences[match.group(1)].append(match.span())

    excess: List[Tuple[int, int]] = []
    for spans in occurrences.values():
        excess.extend(spans[max_per_user:])

    if not excess:
        return text

    exceeded = sorted(user for user, spans in occurrences.items() if len(spans) > max_per_user)
    logger.warning(
        f"Limiting mentions: {', '.join(exceeded)} mentioned more than {max_per_user} times"
    )

    # Cut from the end so earlier offsets stay valid
    result = text
    for start, end in sorted(excess, reverse=True):
        result = result[:start] + result[end:]

    return result
