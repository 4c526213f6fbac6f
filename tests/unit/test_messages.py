"""Tests for the message access layer."""

import json

import pytest

from cc_index.history import HistoryCache
from cc_index.messages import MessageCache


@pytest.fixture
def session_file(projects_dir, make_record, write_jsonl):
    return write_jsonl(
        projects_dir / "proj" / "s1.jsonl",
        [make_record("s1", 1), make_record("s1", 2, type_="assistant"), make_record("s1", 3)],
    )


@pytest.fixture
def cache(projects_dir, clock):
    return MessageCache(projects_dir, clock=clock)


def test_message_list(cache, session_file):
    result = cache.get_message_list("proj", "s1")

    assert result.total == 3
    assert [m.number for m in result.messages] == [1, 2, 3]
    assert [m.id for m in result.messages] == ["s1-1", "s1-2", "s1-3"]
    assert result.messages[1].type == "assistant"
    assert result.messages[0].timestamp == "2024-01-15T10:00:01Z"
    assert result.last_user_prompt is None


def test_get_message_by_number(cache, session_file):
    message = cache.get_message_by_number("proj", "s1", 2)

    assert message["uuid"] == "s1-2"
    assert message["message"]["content"] == "message 2"
    assert cache.get_message_by_number("proj", "s1", 5) is None
    assert cache.get_message_by_number("proj", "s1", 0) is None
    assert cache.message_exists("proj", "s1", 3)
    assert not cache.message_exists("proj", "s1", 4)
    assert cache.get_message_count("proj", "s1") == 3



def test_callers_cannot_alter_cached_messages(cache, session_file):
    first = cache.get_message_by_number("proj", "s1", 2)
    first["uuid"] = "changed"
    second = cache.get_message_by_number("proj", "s1", 2)
    second.pop("message")

    third = cache.get_message_by_number("proj", "s1", 2)
    assert third["uuid"] == "s1-2"
    assert third["message"]["content"] == "message 2"


def test_message_ids_fall_back(cache, projects_dir, make_record, write_jsonl):
    with_id = {**make_record("s2", 2, type_="assistant"), "id": "msg-abc"}
    del with_id["uuid"]
    bare = make_record("s2", 3)
    del bare["uuid"]
    write_jsonl(projects_dir / "proj" / "s2.jsonl", [make_record("s2", 1), with_id, bare])

    result = cache.get_message_list("proj", "s2")

    assert [m.id for m in result.messages] == ["s2-1", "msg-abc", "msg_3"]
    assert [m.type for m in result.messages] == ["user", "assistant", "user"]
    assert result.messages[2].timestamp == "2024-01-15T10:00:03Z"

def test_unknown_session_is_empty(cache, projects_dir):
    assert cache.get_message_list("missing", "nope").total == 0
    assert cache.get_message_by_number("missing", "nope", 1) is None


def test_body_cache_is_bounded(projects_dir, session_file, clock):
    cache = MessageCache(projects_dir, max_messages=2, clock=clock)
    for number in (1, 2, 3):
        cache.get_message_by_number("proj", "s1", number)

    assert list(cache._bodies.keys()) == [("proj", "s1", 2), ("proj", "s1", 3)]
    assert cache.get_cache_stats()["body_evictions"] == 1

    # A hit refreshes recency, so 2 outlives 3
    cache.get_message_by_number("proj", "s1", 2)
    cache.get_message_by_number("proj", "s1", 1)
    assert list(cache._bodies.keys()) == [("proj", "s1", 2), ("proj", "s1", 1)]


def test_session_list_cache_is_bounded(projects_dir, make_record, write_jsonl, clock):
    for sid in ("a", "b", "c"):
        write_jsonl(projects_dir / "proj" / f"{sid}.jsonl", [make_record(sid, 1)])
    cache = MessageCache(projects_dir, max_sessions=2, clock=clock)

    cache.get_message_by_number("proj", "a", 1)
    cache.get_message_list("proj", "b")
    cache.get_message_list("proj", "a")
    cache.get_message_list("proj", "c")

    # Eviction follows build order; the evicted session's bodies go with it
    assert list(cache._lists.keys()) == [("proj", "b"), ("proj", "c")]
    assert len(cache._bodies) == 0


def test_forced_refresh_drops_cached_bodies(
    cache, session_file, make_record, write_jsonl, set_mtime
):
    assert cache.get_message_by_number("proj", "s1", 2)["uuid"] == "s1-2"
    original_mtime = session_file.stat().st_mtime_ns

    # Rewrite with an earlier message; keep the mtime so only force notices
    early = {**make_record("s1", 0), "uuid": "s1-early"}
    write_jsonl(
        session_file,
        [early, make_record("s1", 1), make_record("s1", 2, type_="assistant"), make_record("s1", 3)],
    )
    set_mtime(session_file, original_mtime)

    assert cache.get_message_list("proj", "s1").total == 3
    assert cache.get_message_list("proj", "s1", force_refresh=True).total == 4
    assert cache.get_message_by_number("proj", "s1", 2)["uuid"] == "s1-1"
    assert cache.get_message_by_number("proj", "s1", 1)["uuid"] == "s1-early"


def test_mtime_change_rebuilds_list(cache, session_file, make_record, write_jsonl, bump_mtime):
    assert cache.get_message_count("proj", "s1") == 3

    write_jsonl(session_file, [make_record("s1", 4)], mode="a")
    bump_mtime(session_file)

    assert cache.get_message_count("proj", "s1") == 4
    assert cache.get_message_by_number("proj", "s1", 4)["uuid"] == "s1-4"


def test_list_ttl_rebuilds(cache, session_file, clock):
    first = cache.get_message_list("proj", "s1")
    clock.advance(30)
    assert cache.get_message_list("proj", "s1").cached_at == first.cached_at

    clock.advance(31)
    cache.get_message_list("proj", "s1")
    assert cache._lists.age(("proj", "s1")) == 0


def test_range_is_sorted_and_clamped(cache, session_file):
    cache.get_message_by_number("proj", "s1", 2)

    found = cache.get_messages_by_range("proj", "s1", 0, 10)

    assert [m["number"] for m in found] == [1, 2, 3]
    assert [m["uuid"] for m in found] == ["s1-1", "s1-2", "s1-3"]
    assert cache.get_messages_by_range("proj", "s1", 5, 9) == []
    assert cache.get_messages_by_range("proj", "s1", 3, 1) == []


def test_invalidate_cache(cache, session_file):
    cache.get_message_by_number("proj", "s1", 1)
    cache.get_message_by_number("proj", "s1", 2)

    cache.invalidate_cache("proj", "s1")

    assert ("proj", "s1") not in cache._lists
    assert len(cache._bodies) == 0
    assert cache.get_cache_stats()["session_count"] == 0


def test_body_expires_while_list_is_fresh(
    projects_dir, session_file, make_record, write_jsonl, set_mtime, clock
):
    cache = MessageCache(projects_dir, message_ttl=10, clock=clock)
    cache.get_message_by_number("proj", "s1", 1)
    original_mtime = session_file.stat().st_mtime_ns
    write_jsonl(
        session_file,
        [
            make_record("s1", 1, text="MESSAGE 1"),
            make_record("s1", 2, type_="assistant"),
            make_record("s1", 3),
        ],
    )
    set_mtime(session_file, original_mtime)

    clock.advance(11)

    assert cache.get_message_by_number("proj", "s1", 1)["message"]["content"] == "MESSAGE 1"


def test_stale_offset_returns_none(cache, session_file, make_record, write_jsonl, set_mtime):
    cache.get_message_list("proj", "s1")
    original_mtime = session_file.stat().st_mtime_ns

    # A longer first line pushes message 2's old offset into the middle of it
    write_jsonl(
        session_file,
        [make_record("s1", 1, text="x" * 500), make_record("s1", 2), make_record("s1", 3)],
    )
    set_mtime(session_file, original_mtime)

    assert cache.get_message_by_number("proj", "s1", 2) is None
    assert ("proj", "s1", 2) not in cache._bodies


def test_offset_pointing_at_other_session_is_stale(
    cache, session_file, make_record, write_jsonl, set_mtime
):
    cache.get_message_list("proj", "s1")
    original_mtime = session_file.stat().st_mtime_ns

    write_jsonl(
        session_file,
        [make_record("s1", 1), make_record("zz", 2, type_="assistant"), make_record("s1", 3)],
    )
    set_mtime(session_file, original_mtime)

    assert cache.get_message_by_number("proj", "s1", 2) is None


def test_messages_merged_across_files(cache, projects_dir, make_record, write_jsonl):
    write_jsonl(projects_dir / "proj" / "s1.jsonl", [make_record("s1", 1), make_record("s1", 3)])
    write_jsonl(
        projects_dir / "proj" / "resumed.jsonl",
        [make_record("s1", 2), make_record("other", 1), make_record("s1", 4)],
    )
    write_jsonl(projects_dir / "proj" / "agent-x.jsonl", [make_record("s1", 5)])

    result = cache.get_message_list("proj", "s1")

    assert [m.id for m in result.messages] == ["s1-1", "s1-2", "s1-3", "s1-4"]
    assert cache.get_message_by_number("proj", "s1", 4)["uuid"] == "s1-4"


class FailingHistory:
    def get_session_prompts(self, session_id):
        raise RuntimeError("history unavailable")


def test_history_failure_is_not_fatal(projects_dir, session_file, clock):
    cache = MessageCache(projects_dir, history=FailingHistory(), clock=clock)

    result = cache.get_message_list("proj", "s1")

    assert result.total == 3
    assert result.last_user_prompt is None


def test_last_user_prompt_from_history(projects_dir, session_file, temp_dir, clock):
    history_file = temp_dir / "history.jsonl"
    history_file.write_text(
        "\n".join(
            json.dumps(entry)
            for entry in [
                {"display": "first", "sessionId": "s1", "timestamp": 1000},
                {"display": "latest", "sessionId": "s1", "timestamp": 2000},
                {"display": "elsewhere", "sessionId": "s9", "timestamp": 3000},
            ]
        )
        + "\n"
    )
    cache = MessageCache(projects_dir, history=HistoryCache(history_file, clock=clock), clock=clock)

    result = cache.get_message_list("proj", "s1")

    assert result.last_user_prompt.prompt == "latest"


def test_cache_stats(cache, session_file):
    cache.get_message_by_number("proj", "s1", 1)

    stats = cache.get_cache_stats()

    assert stats["session_count"] == 1
    assert stats["total_messages"] == 3
    assert stats["cached_bodies"] == 1
    assert stats["sessions"][0]["key"] == "proj:s1"

    cache.clear_all()
    assert cache.get_cache_stats()["cached_bodies"] == 0
