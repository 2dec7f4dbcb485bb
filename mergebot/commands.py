"""Parsing of bot commands from pull request comments."""

from __future__ import annotations

import re

_BOT_MENTION = re.compile(r"@bot\s+(\w+)")


class CommandProcessor:
    """Extracts the command addressed to the bot from a comment body."""

    def __init__(self) -> None:
        self._mention = _BOT_MENTION

    def parse_command(self, comment_body: str) -> str | None:
        """Return the lower-cased command after the first ``@bot`` mention, if any."""
        match = self._mention.search(comment_body)
        if match is None:
            return None
        return match.group(1).lower()