"""Tests for transcript reconciliation."""

import pytest

from webchat.models import Message, MessageRole, MessageStatus, SessionOffsets
from webchat.protocol import HistoryEntry, parse_info
from webchat.transcript import MessageStore, TranscriptReconciler, merge_range, show_tool_placeholder


@pytest.fixture
def store():
    return MessageStore()


@pytest.fixture
def reconciler(store):
    return TranscriptReconciler(store)


def contents(store):
    return [m.content for m in store]


class TestMergeRange:
    """Tests for merging streamed chunks into stored text."""

    @pytest.mark.parametrize("existing", ["", "Hello", "partial answ"])
    def test_offset_zero_replaces(self, existing):
        assert merge_range(existing, "fresh", 0) == "fresh"

    def test_offset_at_end_appends(self):
        assert merge_range("Hel", "lo", 3) == "Hello"

    def test_offset_past_end_appends(self):
        assert merge_range("Hel", "lo", 10) == "Hello"

    def test_offset_inside_splices(self):
        """A chunk starting inside the text overwrites the provisional tail."""
        assert merge_range("Hello wrld", "world", 6) == "Hello world"

    def test_negative_offset_replaces(self):
        assert merge_range("abc", "xyz", -1) == "xyz"


class TestToolPlaceholder:
    """Tests for the one-entry lookahead placeholder rule."""

    def test_last_tool_call_without_text(self):
        assert show_tool_placeholder(True, "", None) is True

    def test_tool_call_followed_by_empty_entry(self):
        assert show_tool_placeholder(True, "", HistoryEntry(role="agent", text="")) is True

    def test_tool_call_followed_by_text(self):
        assert show_tool_placeholder(True, "", HistoryEntry(role="agent", text="hello")) is False

    def test_tool_call_with_own_text(self):
        assert show_tool_placeholder(True, "Checking", None) is False

    def test_plain_entry(self):
        assert show_tool_placeholder(False, "", None) is False

    def test_lookahead_in_history(self, store, reconciler):
        """Entry 0 shows a placeholder only while the next entry has no text."""
        info = parse_info(
            {
                "history": [
                    {"role": "agent", "text": "", "isToolCall": True},
                    {"role": "agent", "text": ""},
                ],
                "running": True,
            }
        )
        reconciler.apply(info, full_refresh=True)

        assert store.get(0).is_tool_placeholder is True
        assert reconciler.pending_tool_index == 0

        store.clear()
        reconciler.reset()
        info = parse_info(
            {
                "history": [
                    {"role": "agent", "text": "", "isToolCall": True},
                    {"role": "agent", "text": "hello"},
                ],
                "running": True,
            }
        )
        reconciler.apply(info, full_refresh=True)

        assert store.get(0).is_tool_placeholder is False
        assert reconciler.pending_tool_index is None

    def test_placeholder_cleared_when_text_arrives(self, store, reconciler):
        first = parse_info(
            {"history": [{"role": "agent", "text": "", "isToolCall": True}], "running": True}
        )
        result = reconciler.apply(first, full_refresh=True)
        assert reconciler.pending_tool_index == 0
        assert result.offsets == SessionOffsets(history=1, text=0)

        second = parse_info({"history": [{"role": "agent", "text": "Found it"}], "running": True})
        reconciler.apply(second, full_refresh=False, requested=result.offsets)

        assert store.get(0).is_tool_placeholder is False
        assert reconciler.pending_tool_index is None
        assert contents(store) == ["", "Found it"]

    def test_placeholders_cleared_when_agent_stops(self, store, reconciler):
        info = parse_info(
            {"history": [{"role": "agent", "text": "", "isToolCall": True}], "running": False}
        )
        reconciler.apply(info, full_refresh=True)

        assert store.get(0).is_tool_placeholder is False
        assert reconciler.pending_tool_index is None


class TestRebuild:
    """Tests for full refresh."""

    def test_rebuild_replaces_store(self, store, reconciler):
        store.add(Message(role=MessageRole.AGENT, content="stale"))
        info = parse_info(
            {
                "history": [
                    {"role": "user", "text": "Hi", "dateTime": "2024-05-01T10:00:00Z"},
                    {"role": "assistant", "text": "Hello &amp; welcome"},
                ],
                "running": False,
            }
        )

        result = reconciler.apply(info, full_refresh=True)

        assert contents(store) == ["Hi", "Hello & welcome"]
        assert store.get(0).role is MessageRole.USER
        assert store.get(0).status is MessageStatus.SENT
        assert store.get(0).timestamp.year == 2024
        assert store.get(1).role is MessageRole.AGENT
        assert result.rebuilt is True
        assert result.offsets == SessionOffsets(history=2, text=0)

    def test_rebuild_consumes_echoed_local_message(self, store, reconciler):
        store.add(
            Message(role=MessageRole.USER, content="Hi", status=MessageStatus.PENDING, local_only=True)
        )
        info = parse_info({"history": [{"role": "user", "text": "Hi"}], "running": False})

        reconciler.apply(info, full_refresh=True)

        assert store.count() == 1
        assert store.get(0).local_only is False

    def test_rebuild_keeps_unechoed_local_message(self, store, reconciler):
        store.add(
            Message(role=MessageRole.USER, content="Later", status=MessageStatus.PENDING, local_only=True)
        )
        info = parse_info({"history": [{"role": "agent", "text": "Hello"}], "running": False})

        reconciler.apply(info, full_refresh=True)

        assert contents(store) == ["Hello", "Later"]
        assert store.get(1).local_only is True
        assert reconciler.should_rebuild() is True

    def test_server_offsets_win(self, reconciler):
        info = parse_info(
            {
                "history": [{"role": "agent", "text": "Hel"}],
                "offsets": {"history": 0, "text": 3},
                "running": True,
            }
        )

        result = reconciler.apply(info, full_refresh=True)

        assert result.offsets == SessionOffsets(history=0, text=3)
        assert result.running is True


class TestMerge:
    """Tests for incremental merges."""

    def test_streaming_continuation(self, store, reconciler):
        first = parse_info(
            {
                "history": [{"role": "agent", "text": "Hel"}],
                "offsets": {"history": 0, "text": 3},
                "running": True,
            }
        )
        result = reconciler.apply(first, full_refresh=False, requested=SessionOffsets())
        assert store.get(0).is_streaming_placeholder is True
        assert reconciler.typing_index == 0

        second = parse_info({"history": [{"role": "agent", "text": "lo"}], "running": False})
        reconciler.apply(second, full_refresh=False, requested=result.offsets)

        assert contents(store) == ["Hello"]
        assert store.get(0).is_streaming_placeholder is False
        assert reconciler.typing_index is None

    def test_page_continues_then_appends(self, store, reconciler):
        """Only the first entry of a page uses the text offset."""
        first = parse_info(
            {
                "history": [{"role": "user", "text": "Hi"}, {"role": "agent", "text": "Hel"}],
                "offsets": {"history": 1, "text": 3},
                "running": True,
            }
        )
        result = reconciler.apply(first, full_refresh=True)

        second = parse_info(
            {
                "history": [{"role": "agent", "text": "lo"}, {"role": "agent", "text": "Anything else?"}],
                "offsets": {"history": 3, "text": 0},
                "running": False,
            }
        )
        result = reconciler.apply(second, full_refresh=False, requested=result.offsets)

        assert contents(store) == ["Hi", "Hello", "Anything else?"]
        assert result.offsets == SessionOffsets(history=3, text=0)

    def test_splice_offset_counts_encoded_text(self, store, reconciler):
        """The text offset points into the server text, entities included."""
        first = parse_info(
            {
                "history": [{"role": "agent", "text": "Tom &amp; Jerry are"}],
                "offsets": {"history": 0, "text": 10},
                "running": True,
            }
        )
        result = reconciler.apply(first, full_refresh=True)
        assert contents(store) == ["Tom & Jerry are"]

        second = parse_info({"history": [{"role": "agent", "text": "Jerry were"}], "running": False})
        reconciler.apply(second, full_refresh=False, requested=result.offsets)

        assert contents(store) == ["Tom & Jerry were"]
        assert store.get(0).raw_content == "Tom &amp; Jerry were"

    def test_entity_split_across_chunks(self, store, reconciler):
        first = parse_info(
            {
                "history": [{"role": "agent", "text": "Tom &am"}],
                "offsets": {"history": 0, "text": 7},
                "running": True,
            }
        )
        result = reconciler.apply(first, full_refresh=False, requested=SessionOffsets())

        second = parse_info({"history": [{"role": "agent", "text": "p; Jerry"}], "running": False})
        reconciler.apply(second, full_refresh=False, requested=result.offsets)

        assert contents(store) == ["Tom & Jerry"]

    def test_resent_entry_is_replaced(self, store, reconciler):
        first = parse_info({"history": [{"role": "agent", "text": "Draft"}], "running": True})
        reconciler.apply(first, full_refresh=True)

        second = parse_info({"history": [{"role": "agent", "text": "Final answer"}], "running": False})
        reconciler.apply(second, full_refresh=False, requested=SessionOffsets(history=0, text=0))

        assert contents(store) == ["Final answer"]

    def test_merge_adopts_local_user_message(self, store, reconciler):
        store.add(
            Message(role=MessageRole.USER, content="Hi", status=MessageStatus.PENDING, local_only=True)
        )
        info = parse_info({"history": [{"role": "user", "text": "Hi"}], "running": True})

        reconciler.apply(info, full_refresh=False, requested=SessionOffsets())

        assert store.count() == 1
        assert store.get(0).local_only is False
        assert store.get(0).status is MessageStatus.SENT
        assert reconciler.history_map.get(0) == 0

    def test_merge_after_removal(self, store, reconciler):
        """History positions stay mapped after a local removal."""
        info = parse_info(
            {
                "history": [
                    {"role": "agent", "text": "one"},
                    {"role": "agent", "text": "tw"},
                ],
                "offsets": {"history": 1, "text": 2},
                "running": True,
            }
        )
        result = reconciler.apply(info, full_refresh=True)
        store.remove(0)

        more = parse_info({"history": [{"role": "agent", "text": "o"}], "running": False})
        reconciler.apply(more, full_refresh=False, requested=result.offsets)

        assert contents(store) == ["two"]

    def test_missing_offsets_keep_current(self, reconciler):
        info = parse_info({"history": [], "running": False})
        current = SessionOffsets(history=4, text=2)

        result = reconciler.apply(info, full_refresh=False, requested=current, current=current)

        assert result.offsets == current

    def test_streaming_flag_not_set_on_user_message(self, store, reconciler):
        info = parse_info({"history": [{"role": "user", "text": "Hi"}], "running": True})

        reconciler.apply(info, full_refresh=True)

        assert store.get(0).is_streaming_placeholder is False
        assert reconciler.typing_index is None
