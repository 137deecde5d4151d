import json

from rendezvous.session import ConnectionRole

from conftest import FakeOutbox, join


async def _connect(dispatcher, count, **kwargs):
    peers = []
    for _ in range(count):
        outbox = FakeOutbox(**kwargs)
        record = await dispatcher.connect(outbox)
        peers.append((record.conn_id, outbox))
    return peers


async def _room(dispatcher, session_id, count):
    """Connect ``count`` peers, join them all, then clear their outboxes."""
    peers = await _connect(dispatcher, count)
    for conn_id, _ in peers:
        await dispatcher.handle(conn_id, join(session_id))
    for _, outbox in peers:
        outbox.clear()
    return peers


# =========================================================================
# Join
# =========================================================================

async def test_two_peers_join_the_same_session(dispatcher):
    (c1, o1), (c2, o2) = await _connect(dispatcher, 2)

    await dispatcher.handle(c1, join("s1"))
    assert o1.messages() == [
        {"type": "joined", "payload": {"sessionId": "s1", "participants": []}},
    ]

    await dispatcher.handle(c2, join("s1"))
    assert o2.messages() == [
        {"type": "joined", "payload": {"sessionId": "s1", "participants": [c1]}},
    ]
    assert o1.messages()[1] == {
        "type": "peer-joined",
        "payload": {"socketId": c2, "from": c2},
    }
    assert dispatcher.members("s1") == {c1, c2}


async def test_joined_snapshot_excludes_the_joiner(dispatcher):
    peers = await _room(dispatcher, "s1", 3)
    (c4, o4), = await _connect(dispatcher, 1)

    await dispatcher.handle(c4, join("s1"))

    joined = o4.messages()[0]
    assert sorted(joined["payload"]["participants"]) == sorted(c for c, _ in peers)
    for _, outbox in peers:
        assert outbox.messages() == [
            {"type": "peer-joined", "payload": {"socketId": c4, "from": c4}},
        ]
    assert o4.types() == ["joined"]


async def test_join_without_session_id_is_an_error(dispatcher):
    (c1, o1), = await _connect(dispatcher, 1)

    await dispatcher.handle(c1, json.dumps({"type": "join"}))

    assert o1.messages() == [
        {"type": "error", "payload": {"code": "SESSION_ID_REQUIRED", "message": "sessionId required"}},
    ]
    assert dispatcher.session_count == 0


async def test_join_with_wrong_secret_is_rejected(secret_dispatcher):
    (c1, o1), (c2, o2) = await _connect(secret_dispatcher, 2)
    await secret_dispatcher.handle(c1, join("s1", secret="s3cret"))

    await secret_dispatcher.handle(c2, join("s1", secret="wrong"))
    await secret_dispatcher.handle(c2, join("s1"))

    assert o2.messages() == [
        {"type": "error", "payload": {"code": "INVALID_SECRET", "message": "invalid secret"}},
    ] * 2
    assert secret_dispatcher.members("s1") == {c1}
    assert o1.types() == ["joined"]


async def test_join_with_right_secret(secret_dispatcher):
    (c1, o1), = await _connect(secret_dispatcher, 1)

    await secret_dispatcher.handle(c1, join("s1", secret="s3cret"))

    assert o1.types() == ["joined"]
    assert secret_dispatcher.members("s1") == {c1}


async def test_rejoining_current_session_only_resends_snapshot(dispatcher):
    (c1, o1), (c2, o2) = await _room(dispatcher, "s1", 2)

    await dispatcher.handle(c1, join("s1"))

    assert o1.messages() == [
        {"type": "joined", "payload": {"sessionId": "s1", "participants": [c2]}},
    ]
    assert o2.messages() == []
    assert dispatcher.members("s1") == {c1, c2}


async def test_joining_another_session_leaves_the_first(dispatcher):
    (c1, o1), (c2, o2) = await _room(dispatcher, "s1", 2)

    await dispatcher.handle(c1, join("s2"))

    assert o2.messages() == [
        {"type": "peer-left", "payload": {"socketId": c1, "from": c1}},
    ]
    assert dispatcher.members("s1") == {c2}
    assert dispatcher.members("s2") == {c1}
    assert dispatcher.session_of(c1) == "s2"
    assert dispatcher.get_connection(c1).session_id == "s2"


# =========================================================================
# Relay
# =========================================================================

async def test_directed_offer_reaches_only_the_target(dispatcher):
    (c1, o1), (c2, o2), (c3, o3) = await _room(dispatcher, "s1", 3)

    await dispatcher.handle(c1, json.dumps({
        "type": "offer",
        "sessionId": "s1",
        "payload": {"sdp": "X"},
        "targetConnId": c2,
    }))

    assert o2.messages() == [
        {"type": "offer", "payload": {"from": c1, "payload": {"sdp": "X"}}},
    ]
    assert o1.messages() == []
    assert o3.messages() == []


async def test_broadcast_excludes_the_sender(dispatcher):
    (c1, o1), (c2, o2), (c3, o3) = await _room(dispatcher, "s1", 3)

    await dispatcher.handle(c1, json.dumps({"type": "candidate", "candidate": "cand-1"}))

    expected = [{"type": "candidate", "payload": {"from": c1, "candidate": "cand-1"}}]
    assert o2.messages() == expected
    assert o3.messages() == expected
    assert o1.messages() == []


async def test_sender_identity_is_never_taken_from_the_message(dispatcher):
    (c1, _), (c2, o2) = await _room(dispatcher, "s1", 2)

    await dispatcher.handle(c1, json.dumps({"type": "answer", "sdp": "Y", "from": c2}))

    assert o2.messages()[0]["payload"]["from"] == c1


async def test_unicast_to_member_of_other_session_is_dropped(dispatcher):
    (c1, o1), (c2, o2) = await _room(dispatcher, "s1", 2)
    (c3, o3), = await _room(dispatcher, "s2", 1)

    await dispatcher.handle(c1, json.dumps({"type": "offer", "sdp": "X", "targetConnId": c3}))
    await dispatcher.handle(c1, json.dumps({"type": "offer", "sdp": "X", "targetConnId": "gone"}))

    assert o1.messages() == []
    assert o2.messages() == []
    assert o3.messages() == []


async def test_legacy_ice_event_is_relayed_as_candidate(dispatcher):
    (c1, _), (c2, o2) = await _room(dispatcher, "s1", 2)

    await dispatcher.handle(c1, json.dumps({"type": "ice", "candidate": "c"}))

    assert o2.types() == ["candidate"]


async def test_relay_requires_membership(dispatcher):
    (c1, o1), (c2, o2) = await _room(dispatcher, "s1", 2)
    (c3, _), = await _connect(dispatcher, 1)

    # Not in any session
    await dispatcher.handle(c3, json.dumps({"type": "offer", "sdp": "X"}))
    # Names a session it is not part of
    await dispatcher.handle(c3, json.dumps({"type": "offer", "sessionId": "s1", "sdp": "X"}))

    assert o1.messages() == []
    assert o2.messages() == []


async def test_relay_with_empty_body_is_dropped(dispatcher):
    (c1, _), (c2, o2) = await _room(dispatcher, "s1", 2)

    await dispatcher.handle(c1, json.dumps({"type": "offer", "sessionId": "s1"}))

    assert o2.messages() == []


async def test_unknown_and_malformed_messages_are_dropped(dispatcher):
    (c1, o1), (c2, o2) = await _room(dispatcher, "s1", 2)

    await dispatcher.handle(c1, json.dumps({"type": "peer-joined", "socketId": "fake"}))
    await dispatcher.handle(c1, json.dumps({"type": "shout", "sessionId": "s9"}))
    await dispatcher.handle(c1, b"\x00garbage")
    await dispatcher.handle(c1, '{"sessionId": "s1"}')
    await dispatcher.handle(c1, b"[" * 100000)

    assert o1.messages() == []
    assert o2.messages() == []
    assert dispatcher.session_count == 1
    assert dispatcher.members("s1") == {c1, c2}


async def test_full_queue_does_not_block_other_recipients(dispatcher):
    (c1, _), (c2, o2), (c3, o3) = await _room(dispatcher, "s1", 3)
    o2.full = True

    delivered = await dispatcher.dispatch(c1, "s1", "offer", {"sdp": "X"})

    assert delivered == 1
    assert o3.messages() == [{"type": "offer", "payload": {"sdp": "X", "from": c1}}]


async def test_dispatch_refuses_unknown_event_types(dispatcher):
    (c1, _), (c2, o2) = await _room(dispatcher, "s1", 2)

    assert await dispatcher.dispatch(c1, "s1", "joined", {"participants": []}) == 0
    assert await dispatcher.dispatch(c1, "s1", "error", {}) == 0
    assert o2.messages() == []


async def test_dispatch_unicast_precision(dispatcher):
    (c1, _), (c2, o2), (c3, o3) = await _room(dispatcher, "s1", 3)

    assert await dispatcher.dispatch(c1, "s1", "answer", {"sdp": "A"}, target_conn_id=c3) == 1
    assert await dispatcher.dispatch(c1, "missing", "answer", {"sdp": "A"}, target_conn_id=c3) == 0

    assert o2.messages() == []
    assert o3.types() == ["answer"]


# =========================================================================
# Leave / disconnect
# =========================================================================

async def test_leave_notifies_remaining_members(dispatcher):
    (c1, o1), (c2, o2) = await _room(dispatcher, "s1", 2)

    await dispatcher.handle(c2, json.dumps({"type": "leave"}))

    assert o1.messages() == [
        {"type": "peer-left", "payload": {"socketId": c2, "from": c2}},
    ]
    assert o2.messages() == []
    assert dispatcher.members("s1") == {c1}
    assert dispatcher.session_of(c2) is None


async def test_last_member_leaving_removes_the_session(dispatcher):
    (c1, o1), = await _room(dispatcher, "s1", 1)

    await dispatcher.handle(c1, json.dumps({"type": "leave"}))
    await dispatcher.handle(c1, json.dumps({"type": "leave"}))

    assert dispatcher.session_count == 0
    assert o1.messages() == []


async def test_disconnect_cleans_up_membership(dispatcher):
    (c1, o1), (c2, o2) = await _room(dispatcher, "s1", 2)

    await dispatcher.disconnect(c2)

    assert dispatcher.get_connection(c2) is None
    assert dispatcher.connection_count == 1
    assert dispatcher.members("s1") == {c1}
    assert o1.types() == ["peer-left"]

    await dispatcher.disconnect(c1)
    await dispatcher.disconnect(c1)
    assert dispatcher.connection_count == 0
    assert dispatcher.session_count == 0


async def test_messages_from_unknown_connection_are_ignored(dispatcher):
    await dispatcher.handle("nobody", join("s1"))
    await dispatcher.handle("nobody", json.dumps({"type": "offer", "sdp": "X"}))

    assert dispatcher.session_count == 0


async def test_connect_records_role(dispatcher):
    record = await dispatcher.connect(FakeOutbox(), role=ConnectionRole.INITIATOR)

    assert dispatcher.get_connection(record.conn_id).role is ConnectionRole.INITIATOR
    assert record.session_id is None
