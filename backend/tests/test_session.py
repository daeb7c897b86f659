"""
Tests for SessionManager: pairing, grace period, heartbeat, explicit leave, sweeps.
"""
import threading

import pytest

from duelroom.errors import AlreadyInMatch, InvalidRequest
from duelroom.wait_queue import WaitQueue


def pair(sessions, user_id):
    return sessions.pair(user_id, user_id.title(), f"c-{user_id}")


def assert_single_membership(sessions, user_ids):
    for uid in user_ids:
        assert not (uid in sessions.queue and sessions.matches.has_match(uid)), uid


class TestPairing:
    def test_first_user_waits(self, sessions, transport):
        result = pair(sessions, "alice")
        assert result.status == "waiting"
        assert result.position == 1
        assert transport.types("c-alice") == ["waiting_for_match"]

    def test_second_user_gets_matched(self, sessions, transport):
        pair(sessions, "alice")
        result = pair(sessions, "bob")
        assert result.status == "matched"
        m = result.match

        host = transport.last("c-alice")
        guest = transport.last("c-bob")
        assert host["type"] == guest["type"] == "match_found"
        assert host["match_id"] == guest["match_id"] == m.id
        assert host["opponent_id"] == "bob"
        assert host["opponent_name"] == "Bob"
        assert guest["opponent_id"] == "alice"
        assert {host["role"], guest["role"]} == {"host", "client"}
        assert host["role"] == "host"
        assert len(sessions.queue) == 0

    def test_fifo_fairness(self, sessions):
        users = [f"u{i}" for i in range(7)]
        matches = [pair(sessions, uid).match for uid in users]
        pairs = [(m.player_a.user_id, m.player_b.user_id) for m in matches if m]
        assert pairs == [("u0", "u1"), ("u2", "u3"), ("u4", "u5")]
        assert sessions.check_queue_status("u6") == {"in_queue": True, "position": 1}
        assert_single_membership(sessions, users)

    def test_repeat_request_is_refresh(self, sessions, transport):
        pair(sessions, "alice")
        result = sessions.pair("alice", "Alice", "c-alice-2")
        assert result.status == "refreshed"
        assert len(sessions.queue) == 1
        assert sessions.queue.get("alice").connection_id == "c-alice-2"
        assert len(sessions.matches) == 0
        # Повторно waiting_for_match не шлётся
        assert transport.types("c-alice") == ["waiting_for_match"]
        assert transport.sent["c-alice-2"] == []

    def test_never_matched_with_itself(self, sessions):
        for _ in range(3):
            pair(sessions, "alice")
        assert len(sessions.matches) == 0
        assert sessions.check_queue_status("alice")["in_queue"]

    def test_already_in_match(self, sessions):
        pair(sessions, "alice")
        m = pair(sessions, "bob").match
        with pytest.raises(AlreadyInMatch) as exc:
            pair(sessions, "alice")
        assert exc.value.match_id == m.id
        assert exc.value.match_info["role"] == "host"
        assert exc.value.match_info["opponent_id"] == "bob"
        assert len(sessions.matches) == 1
        assert "alice" not in sessions.queue

    def test_missing_user_id(self, sessions):
        with pytest.raises(InvalidRequest):
            sessions.pair("", "Nobody", "c-x")

    def test_empty_display_name_gets_fallback(self, sessions):
        sessions.pair("abcdefghijkl", "", "c-1")
        assert sessions.queue.get("abcdefghijkl").display_name == "user_abcdefgh"

    def test_polling_client_without_connection(self, sessions, transport):
        sessions.pair("alice", "Alice")
        result = sessions.pair("bob", "Bob")
        assert result.status == "matched"
        assert not transport.sent

    def test_self_dequeue_is_pushed_back(self, sessions, transport):
        # Очередь, которая "не видит" уже стоящего пользователя: pair доходит до dequeue
        class BlindQueue(WaitQueue):
            def __contains__(self, user_id):
                return False

        sessions.queue = BlindQueue(is_matched=sessions.matches.has_match)
        pair(sessions, "alice")
        result = sessions.pair("alice", "Alice", "c-alice-2")

        assert result.status == "waiting"
        assert len(sessions.matches) == 0
        assert len(sessions.queue) == 1
        assert sessions.queue.get("alice").connection_id == "c-alice-2"
        assert sessions.queue.get("alice").enqueued_at == 1000.0
        assert transport.types("c-alice-2") == ["waiting_for_match"]


def run_concurrently(fns):
    barrier = threading.Barrier(len(fns))
    results, errors = [], []

    def worker(fn):
        barrier.wait()
        try:
            results.append(fn())
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(fn,)) for fn in fns]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)
    return results, errors


class TestConcurrentPairing:
    def test_same_user_pairs_once(self, sessions):
        results, errors = run_concurrently(
            [lambda i=i: sessions.pair("alice", "Alice", f"c-alice-{i}") for i in range(8)]
        )
        assert errors == []
        assert len(sessions.queue) == 1
        assert len(sessions.matches) == 0
        assert sorted(r.status for r in results) == ["refreshed"] * 7 + ["waiting"]
        assert_single_membership(sessions, ["alice"])

    def test_distinct_users_each_end_up_in_one_place(self, sessions):
        users = [f"u{i}" for i in range(9)]
        results, errors = run_concurrently([lambda uid=uid: pair(sessions, uid) for uid in users])
        assert errors == []
        assert len(sessions.matches) == 4
        assert len(sessions.queue) == 1
        assert sum(r.status == "matched" for r in results) == 4
        for uid in users:
            places = (uid in sessions.queue) + sessions.matches.has_match(uid)
            assert places == 1, uid
        assert_single_membership(sessions, users)


class TestDisconnect:
    @pytest.fixture
    def match(self, sessions):
        pair(sessions, "alice")
        return pair(sessions, "bob").match

    def test_disconnect_inside_grace_keeps_match(self, sessions, transport, clock, match):
        clock.advance(sessions.config.disconnect_grace_window - 1)
        sessions.connection_closed("c-alice")
        assert match.id in sessions.matches
        assert not sessions.registry.is_reachable("alice")
        assert transport.types("c-bob") == ["match_found"]

    def test_disconnect_after_grace_ends_match(self, sessions, transport, clock, match):
        clock.advance(sessions.config.disconnect_grace_window + 1)
        sessions.connection_closed("c-alice")
        assert match.id not in sessions.matches
        assert transport.last("c-bob") == {
            "type": "opponent_left",
            "match_id": match.id,
            "reason": "disconnect",
        }
        status = sessions.check_match_status(match.id, "bob")
        assert status["match_active"] is False

    def test_disconnect_exactly_at_grace_boundary(self, sessions, clock, match):
        clock.advance(sessions.config.disconnect_grace_window)
        sessions.connection_closed("c-alice")
        assert match.id not in sessions.matches

    def test_reconnect_within_grace(self, sessions, clock, match):
        clock.advance(5)
        sessions.connection_closed("c-alice")
        sessions.register_connection("c-alice-2", "alice")
        clock.advance(60)
        assert sessions.check_opponent_connection(match.id, "bob")["status"] == "active"

    def test_superseded_connection_close_is_ignored(self, sessions, transport, clock, match):
        clock.advance(60)
        assert sessions.register_connection("c-alice-2", "alice") == "c-alice"
        sessions.connection_closed("c-alice")
        assert match.id in sessions.matches
        assert sessions.registry.connection_for("alice") == "c-alice-2"

    def test_disconnect_while_queued_removes_entry(self, sessions):
        pair(sessions, "carol")
        sessions.connection_closed("c-carol")
        assert "carol" not in sessions.queue

    def test_unknown_connection(self, sessions):
        sessions.connection_closed("nope")
        assert sessions.stats() == {"queued": 0, "matches": 0, "connections": 0}

    def test_delivery_failure_does_not_roll_back(self, sessions, transport, clock, match):
        transport.broken.add("c-bob")
        clock.advance(30)
        sessions.connection_closed("c-alice")
        assert match.id not in sessions.matches


class TestExplicitLeave:
    @pytest.fixture
    def match(self, sessions):
        pair(sessions, "alice")
        return pair(sessions, "bob").match

    def test_leave_ends_match_immediately(self, sessions, transport, match):
        assert sessions.leave_match(match.id, "alice")
        assert match.id not in sessions.matches
        assert transport.last("c-bob")["reason"] == "player_quit"
        assert transport.last("c-alice") == {
            "type": "match_ended",
            "match_id": match.id,
            "reason": "quit",
        }

    def test_leave_twice_is_idempotent(self, sessions, transport, match):
        sessions.leave_match(match.id, "alice")
        before = {k: list(v) for k, v in transport.sent.items()}
        assert sessions.leave_match(match.id, "alice") is False
        assert {k: list(v) for k, v in transport.sent.items()} == before
        assert sessions.stats()["matches"] == 0

    def test_leave_by_outsider_is_noop(self, sessions, match):
        assert sessions.leave_match(match.id, "mallory") is False
        assert match.id in sessions.matches

    def test_leave_requires_ids(self, sessions):
        with pytest.raises(InvalidRequest):
            sessions.leave_match("", "alice")

    def test_cancel_wait_twice(self, sessions):
        pair(sessions, "carol")
        assert sessions.cancel_wait("carol")
        assert not sessions.cancel_wait("carol")
        assert sessions.check_queue_status("carol") == {"in_queue": False, "position": None}

    def test_cancel_wait_by_connection(self, sessions):
        pair(sessions, "carol")
        assert sessions.cancel_wait(connection_id="c-carol")
        assert "carol" not in sessions.queue

    def test_remove_player_from_match(self, sessions, transport, match):
        assert sessions.remove_player("bob")
        assert match.id not in sessions.matches
        assert transport.last("c-alice")["type"] == "opponent_left"
        assert sessions.remove_player("bob") is False

    def test_player_can_queue_again_after_leaving(self, sessions, match):
        sessions.leave_match(match.id, "alice")
        assert pair(sessions, "alice").status == "waiting"


class TestHeartbeat:
    @pytest.fixture
    def match(self, sessions):
        sessions.pair("alice", "Alice")
        return sessions.pair("bob", "Bob").match

    def test_regular_heartbeats_keep_match(self, sessions, clock, match):
        for _ in range(12):
            clock.advance(5)
            assert sessions.heartbeat(match.id, "alice")["match_active"]
            assert sessions.heartbeat(match.id, "bob")["match_active"]
        assert match.id in sessions.matches

    def test_silent_player_times_out(self, sessions, clock, match):
        for _ in range(12):
            clock.advance(5)
            sessions.heartbeat(match.id, "alice")
            sessions.heartbeat(match.id, "bob")
        alice_last = clock.now
        while True:
            clock.advance(5)
            status = sessions.heartbeat(match.id, "bob")
            if not status["match_active"]:
                break
        assert clock.now - alice_last > sessions.config.heartbeat_timeout - 5
        assert status["both_players_left"] is True
        assert status["reason"] == "heartbeat_timeout"
        assert match.id not in sessions.matches

    def test_status_check_without_heartbeat(self, sessions, clock, match):
        clock.advance(10)
        assert sessions.check_match_status(match.id, "alice")["match_active"]
        clock.advance(10)
        status = sessions.check_match_status(match.id, "alice")
        assert status["match_active"] is False

    def test_unknown_match(self, sessions):
        status = sessions.check_match_status("missing", "alice")
        assert status == {
            "match_id": "missing",
            "match_active": False,
            "both_players_left": True,
            "reason": "not_found",
        }


class TestOpponentConnectionCheck:
    @pytest.fixture
    def match(self, sessions):
        pair(sessions, "alice")
        return pair(sessions, "bob").match

    def test_opponent_connected(self, sessions, match):
        assert sessions.check_opponent_connection(match.id, "alice")["status"] == "active"

    def test_opponent_loading_inside_grace(self, sessions, clock, match):
        sessions.connection_closed("c-bob")
        clock.advance(3)
        status = sessions.check_opponent_connection(match.id, "alice")
        assert status["match_active"] is True
        assert status["status"] == "loading"

    def test_opponent_gone_after_grace(self, sessions, transport, clock, match):
        sessions.connection_closed("c-bob")
        clock.advance(sessions.config.disconnect_grace_window)
        status = sessions.check_opponent_connection(match.id, "alice")
        assert status["match_active"] is False
        assert status["reason"] == "opponent_disconnect"
        assert match.id not in sessions.matches
        assert transport.last("c-alice")["type"] == "match_ended"


class TestSweeps:
    def test_stale_queue_entry_evicted_silently(self, sessions, transport, clock):
        pair(sessions, "alice")
        clock.advance(sessions.config.queue_stale_timeout)
        assert sessions.sweep_stale_queue() == 1
        assert sessions.check_queue_status("alice")["in_queue"] is False
        assert transport.types("c-alice") == ["waiting_for_match"]

    def test_fresh_queue_entry_survives(self, sessions, clock):
        pair(sessions, "alice")
        clock.advance(sessions.config.queue_stale_timeout - 1)
        assert sessions.sweep_stale_queue() == 0
        assert "alice" in sessions.queue

    def test_stale_match_evicted_and_notified(self, sessions, transport, clock):
        pair(sessions, "alice")
        m = pair(sessions, "bob").match
        clock.advance(sessions.config.match_stale_timeout)
        assert [x.id for x in sessions.sweep_stale_matches()] == [m.id]
        assert transport.last("c-alice")["reason"] == "match_timeout"
        assert transport.last("c-bob")["reason"] == "match_timeout"
        assert not sessions.matches.has_match("alice")
