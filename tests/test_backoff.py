from aquarium.backoff import PeerConnection


def test_retry_delay_doubles_up_to_cap(clock):
    conn = PeerConnection("PUMP", "water", clock=clock)
    waits = []

    for _ in range(6):
        assert conn.can_attempt()
        conn.record_failure(ConnectionError("down"))
        waits.append(conn.next_retry_at_ms - clock())
        clock.advance(waits[-1])

    assert waits == [1000, 2000, 4000, 8000, 15000, 15000]
    assert conn.reachable is False


def test_gate_blocks_until_due(clock):
    conn = PeerConnection("PUMP", "water", clock=clock)
    conn.record_failure()

    clock.advance(999)
    assert conn.can_attempt() is False
    clock.advance(1)
    assert conn.can_attempt() is True


def test_success_resets_policy(clock):
    conn = PeerConnection("PUMP", "water", clock=clock)
    for _ in range(3):
        conn.record_failure()
        clock.advance(conn.next_retry_at_ms - clock())

    assert conn.record_success() is True
    assert conn.reachable is True
    assert conn.retry_delay_ms == 1000
    assert conn.next_retry_at_ms is None

    conn.record_failure()
    assert conn.next_retry_at_ms - clock() == 1000


def test_only_transitions_are_reported(clock):
    conn = PeerConnection("WATER", "filterpump", clock=clock)

    assert conn.record_success() is True
    assert conn.record_success() is False
    assert conn.record_failure() is True
    assert conn.record_failure() is False
    assert conn.record_success() is True


def test_first_failure_counts_as_transition(clock):
    conn = PeerConnection("PUMP", "water", clock=clock)
    assert conn.record_failure() is True
