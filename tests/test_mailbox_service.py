import pytest

from mailroom import EMPTY_READ, MailboxFull, MessageNotFound

pytestmark = pytest.mark.anyio

S, R = "alice", "bob"


async def _fill(service, sender=S, recipient=R, count=10) -> list[str]:
    return [
        await service.write_message(sender, recipient, bytes([0x80 + i])) for i in range(count)
    ]


async def test_unknown_mailbox_reads_empty(service):
    assert await service.read_from(R, S) == EMPTY_READ
    assert await service.read_next_sender(R) == EMPTY_READ
    assert await service.count_pending(R, S) == 0
    assert await service.count_active_senders(R) == 0


async def test_written_message_is_readable_by_recipient(service, clock):
    msg_id = await service.write_message(S, R, b"\xaa")

    result = await service.read_from(R, S)

    assert result.id == msg_id
    assert result.sender == S
    assert result.payload == b"\xaa"
    assert result.sent_at == clock.now
    assert result

    # Nothing from someone else, nothing in someone else's mailbox.
    assert await service.read_from(R, "carol") == EMPTY_READ
    assert await service.read_from("carol", S) == EMPTY_READ


async def test_read_is_idempotent(service):
    await service.write_message(S, R, b"one")
    await service.write_message(S, R, b"two")

    first = await service.read_from(R, S)
    second = await service.read_from(R, S)

    assert first == second
    assert first.payload == b"one"
    assert await service.count_pending(R, S) == 2


async def test_eleventh_write_fails_and_leaves_state_unchanged(service, storage):
    ids = await _fill(service)
    assert await service.count_pending(R, S) == 10
    keys_before = storage.keys()

    with pytest.raises(MailboxFull) as exc_info:
        await service.write_message(S, R, b"\xff")

    assert exc_info.value.capacity == 10
    assert storage.keys() == keys_before
    assert await service.count_pending(R, S) == 10
    assert await service.pending_ids(R, S) == tuple(ids)


async def test_capacity_is_per_sender_recipient_pair(service):
    await _fill(service)

    await service.write_message("carol", R, b"x")
    await service.write_message(S, "dave", b"x")

    assert await service.count_pending(R, "carol") == 1
    assert await service.count_pending("dave", S) == 1


async def test_acknowledge_yields_messages_in_write_order(service):
    ids = await _fill(service)

    seen = []
    for expected_remaining in range(9, -1, -1):
        result = await service.read_from(R, S)
        seen.append(result.id)
        more = await service.acknowledge(R, result.id)
        assert more is (expected_remaining > 0)
        assert await service.count_pending(R, S) == expected_remaining

    assert seen == ids
    assert await service.read_from(R, S) == EMPTY_READ


async def test_capacity_recovers_after_acknowledge(service):
    ids = await _fill(service)
    with pytest.raises(MailboxFull):
        await service.write_message(S, R, b"A10")

    await service.acknowledge(R, ids[0])
    assert await service.count_pending(R, S) == 9

    await service.write_message(S, R, b"A10")
    assert await service.count_pending(R, S) == 10
    assert (await service.read_from(R, S)).id == ids[1]

    with pytest.raises(MailboxFull):
        await service.write_message(S, R, b"A11")


@pytest.mark.parametrize("k", [1, 3, 10])
async def test_k_acknowledges_permit_exactly_k_writes(service, k):
    ids = await _fill(service)
    for msg_id in ids[:k]:
        await service.acknowledge(R, msg_id)

    for i in range(k):
        await service.write_message(S, R, f"new-{i}".encode())

    with pytest.raises(MailboxFull):
        await service.write_message(S, R, b"overflow")


async def test_acknowledge_twice_fails(service):
    msg_id = await service.write_message(S, R, b"x")
    await service.acknowledge(R, msg_id)

    with pytest.raises(MessageNotFound):
        await service.acknowledge(R, msg_id)


async def test_acknowledge_unknown_id_fails(service):
    await service.write_message(S, R, b"x")

    with pytest.raises(MessageNotFound):
        await service.acknowledge(R, "0" * 64)
    with pytest.raises(MessageNotFound):
        await service.acknowledge(R, "")


async def test_only_the_recipient_can_acknowledge(service):
    msg_id = await service.write_message(S, R, b"x")

    with pytest.raises(MessageNotFound):
        await service.acknowledge("mallory", msg_id)

    assert await service.count_pending(R, S) == 1


async def test_acknowledged_message_is_a_tombstone(service, storage):
    msg_id = await service.write_message(S, R, b"secret")
    await service.acknowledge(R, msg_id)

    record = await storage.get(f"mailroom:{R}:msg:{msg_id}")

    assert record == {"sender": S, "payload": "", "written_at": 0}


async def test_acknowledge_out_of_order(service):
    first, second, third = [await service.write_message(S, R, bytes([i])) for i in range(3)]

    assert await service.acknowledge(R, second) is True

    assert await service.pending_ids(R, S) == (first, third)
    assert (await service.read_next_sender(R)).id == first
    await service.check_invariants(R)


async def test_same_content_in_same_tick_is_rejected(storage, notifications):
    from mailroom import DuplicateMessage, MailboxService

    service = MailboxService(storage=storage, notifications=notifications, clock=lambda: 42)
    await service.write_message(S, R, b"x")

    with pytest.raises(DuplicateMessage):
        await service.write_message(S, R, b"x")

    # Different content in the same tick is a different message.
    await service.write_message(S, R, b"y")
    assert await service.count_pending(R, S) == 2


async def test_clock_stepping_backwards_does_not_reorder_timestamps(storage, notifications):
    from mailroom import MailboxService

    readings = iter([5_000, 4_000, 4_500, 6_000])
    service = MailboxService(
        storage=storage, notifications=notifications, clock=lambda: next(readings)
    )
    for payload in (b"a", b"b", b"c", b"d"):
        await service.write_message(S, R, payload)

    updates = await notifications.list_updates()
    assert [u.timestamp for u in updates] == [5_000, 5_000, 5_000, 6_000]
    assert [u.pending for u in updates] == [1, 2, 3, 4]
    assert (await service.read_from(R, S)).payload == b"a"
    assert (await service.read_from(R, S)).sent_at == 5_000


async def test_clear_drops_all_pending_messages(service):
    ids = await _fill(service, count=4)
    await service.write_message("carol", R, b"c")

    cleared = await service.clear(R, S)

    assert cleared == 4
    assert await service.count_pending(R, S) == 0
    assert await service.read_from(R, S) == EMPTY_READ
    assert await service.active_senders(R) == ("carol",)
    for msg_id in ids:
        with pytest.raises(MessageNotFound):
            await service.acknowledge(R, msg_id)
    await service.check_invariants(R)


async def test_clear_of_idle_sender_is_a_noop(service, notifications):
    assert await service.clear(R, S) == 0
    assert await notifications.list_updates() == ()


async def test_sender_can_write_again_after_clear(service):
    await _fill(service)
    await service.clear(R, S)

    await _fill(service)

    assert await service.count_pending(R, S) == 10
    assert await service.count_active_senders(R) == 1


async def test_payload_must_be_bytes(service):
    with pytest.raises(TypeError):
        await service.write_message(S, R, "text")  # type: ignore[arg-type]
    assert await service.count_pending(R, S) == 0


async def test_identities_must_be_non_empty(service):
    with pytest.raises(ValueError):
        await service.write_message("", R, b"x")
    with pytest.raises(ValueError):
        await service.write_message(S, "", b"x")


async def test_custom_capacity(storage, notifications, clock):
    from mailroom import MailboxService

    service = MailboxService(storage=storage, notifications=notifications, clock=clock, capacity=2)
    await service.write_message(S, R, b"1")
    await service.write_message(S, R, b"2")

    with pytest.raises(MailboxFull):
        await service.write_message(S, R, b"3")
    assert service.capacity == 2


async def test_capacity_must_be_positive(storage):
    from mailroom import MailboxService

    with pytest.raises(ValueError):
        MailboxService(storage=storage, capacity=0)


async def test_release_keeps_busy_mailboxes(service):
    msg_id = await service.write_message(S, R, b"x")

    assert await service.release(R) is False
    assert R in service.recipients

    await service.acknowledge(R, msg_id)
    assert await service.release(R) is True
    assert R not in service.recipients

    # The mailbox comes back lazily and its history is intact.
    with pytest.raises(MessageNotFound):
        await service.acknowledge(R, msg_id)


async def test_stats_count_successful_calls(service):
    msg_id = await service.write_message(S, R, b"x")
    await service.acknowledge(R, msg_id)
    with pytest.raises(MessageNotFound):
        await service.acknowledge(R, msg_id)

    assert service.stats(R) == {"writes": 1, "acknowledgements": 1}
    assert service.stats("nobody") == {"writes": 0, "acknowledgements": 0}
