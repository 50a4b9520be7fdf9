"""
Unit tests for bot mention detection and mention limiting.
"""

import pytest

from app.utils.mentions import (
    is_bot_mentioned,
    is_from_bot_self,
    limit_mentions,
    should_trigger_review,
)

BOT = "xibe-review"


class TestIsBotMentioned:
    """Test the accepted ways of addressing the bot."""

    @pytest.mark.parametrize("text", [
        "please @xibe-review this",
        "xibe review this PR",
        "@xibe can you take a look?",
        "Hey XIBE-REVIEW, thoughts?",
        "ping Xibe",
    ])
    def test_mentioned(self, text):
        assert is_bot_mentioned(text, BOT) is True

    @pytest.mark.parametrize("text", [
        "no mention here",
        "",
        "xibereview without separator",
    ])
    def test_not_mentioned(self, text):
        assert is_bot_mentioned(text, BOT) is False

    def test_bot_name_is_case_insensitive(self):
        assert is_bot_mentioned("@xibe-review please", "Xibe-Review") is True

    def test_regex_characters_in_name_are_escaped(self):
        assert is_bot_mentioned("@bot.v2 review", "bot.v2") is True
        assert is_bot_mentioned("@botxv2 review", "bot.v2") is False

    def test_name_without_qualifier(self):
        assert is_bot_mentioned("hello reviewer", "reviewer") is True
        assert is_bot_mentioned("hello there", "reviewer") is False


class TestBotSelfDetection:
    """Test that the bot never triggers itself."""

    def test_own_app_account(self):
        assert is_from_bot_self("xibe-review[bot]", BOT) is True
        assert is_from_bot_self("Xibe-Review[bot]", BOT) is True

    def test_base_name_app_account(self):
        assert is_from_bot_self("xibe[bot]", BOT) is True

    def test_human_account(self):
        assert is_from_bot_self("xibe-review", BOT) is False
        assert is_from_bot_self("octocat", BOT) is False
        assert is_from_bot_self("", BOT) is False

    def test_own_comment_never_triggers(self):
        text = "@xibe-review xibe review xibe"
        assert should_trigger_review(text, "xibe-review[bot]", BOT) is False
        assert should_trigger_review(text, "octocat", BOT) is True


class TestLimitMentions:
    """Test per-user mention capping."""

    def test_excess_mentions_removed(self):
        text = "@bob first, @alice once, @bob second, @bob third"
        result = limit_mentions(text, 2)

        assert result.count("@bob") == 2
        assert result.count("@alice") == 1
        assert result == "@bob first, @alice once, @bob second,  third"

    def test_noop_within_limit(self):
        text = "@bob and @bob, also @alice"
        assert limit_mentions(text, 2) == text

    def test_hyphenated_logins_are_distinct(self):
        text = "@john-doe @john-smith @john-doe @john-doe"
        result = limit_mentions(text, 2)

        assert result.count("@john-doe") == 2
        assert result.count("@john-smith") == 1
        assert "-doe" not in result.replace("@john-doe", "")

    def test_default_limit_is_two(self):
        assert limit_mentions("@a @a @a @a").count("@a") == 2

    def test_other_text_preserved(self):
        text = "Thanks @dev!\n\n@dev please fix.\n@dev ping. Email: a@b.c"
        result = limit_mentions(text, 1)

        assert result.startswith("Thanks @dev!\n\n")
        assert result.count("@dev") == 1
        assert result.endswith("Email: a@b.c")

    @pytest.mark.parametrize("value", [None, "", 42, ["@bob"]])
    def test_non_string_or_empty_unchanged(self, value):
        assert limit_mentions(value) == value
