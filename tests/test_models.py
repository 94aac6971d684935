from __future__ import annotations

from types import SimpleNamespace

from core.models import (
    Conversation,
    PersuasionConfig,
    Role,
    Standpoint,
    Strategy,
    create_message,
    last_user_text,
)
from core.token_tracker import TokenTracker


class TestEnums:
    def test_parse_known_values(self):
        assert Standpoint.parse(" Opposing ") == Standpoint.OPPOSING
        assert Strategy.parse("suggestion") == Strategy.SUGGESTION

    def test_parse_unknown_values(self):
        assert Standpoint.parse("neutral") == Standpoint.UNSET
        assert Standpoint.parse(None) == Standpoint.UNSET
        assert Strategy.parse(42) == Strategy.UNSET


class TestMessages:
    def test_sender_by_role(self):
        assert create_message(Role.USER, "hi").sender == "You"
        assert create_message("assistant", "hi").sender == "Bot"

    def test_ids_unique(self):
        assert create_message(Role.USER, "a").id != create_message(Role.USER, "a").id

    def test_last_user_text(self):
        history = [
            create_message(Role.USER, "first"),
            create_message(Role.ASSISTANT, "reply"),
            create_message(Role.USER, "  "),
        ]
        assert last_user_text(history) == "first"
        assert last_user_text([]) == ""


class TestConversation:
    def test_config_resolves_loose_values(self):
        conversation = Conversation(standpoint="supporting", strategy="whatever")
        assert conversation.config == PersuasionConfig(standpoint=Standpoint.SUPPORTING)
        assert conversation.config.is_bound

    def test_user_title_wins(self):
        conversation = Conversation(auto_title="Auto", user_title="Mine")
        assert conversation.title == "Mine"


class TestTokenTracker:
    def test_singleton_accumulates(self):
        TokenTracker().record(SimpleNamespace(input_tokens=1500, output_tokens=500), model="m")
        tracker = TokenTracker()
        assert tracker.total_tokens == 2000
        assert tracker.api_calls == 1
        assert "Total: 2.0K" in tracker.summary()

    def test_summary_lists_models(self):
        tracker = TokenTracker()
        tracker.record(SimpleNamespace(input_tokens=1500, output_tokens=500), model="chat-model")
        tracker.record(SimpleNamespace(input_tokens=100, output_tokens=20), model="title-model")

        assert tracker.summary().endswith("(chat-model 2.0K, title-model 120)")

    def test_summary_single_model_has_no_breakdown(self):
        TokenTracker().record(SimpleNamespace(input_tokens=10, output_tokens=5), model="chat-model")
        assert "(" not in TokenTracker().summary()
