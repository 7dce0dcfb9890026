"""Tests for the connection state machine and disconnect classification."""

import pytest

from notifier.core.connection.state import (
    ConnectionEvent,
    ConnectionSession,
    ConnectionState,
    DisconnectReason,
    InvalidTransitionError,
    backoff_delay,
    classify_disconnect,
    get_valid_events,
    is_in_flight,
    transition,
)


class TestTransitions:
    """Test the transition table."""

    def test_connect_from_disconnected(self):
        assert (
            transition(ConnectionState.DISCONNECTED, ConnectionEvent.CONNECT_REQUESTED)
            == ConnectionState.CONNECTING
        )

    def test_challenge_moves_to_awaiting_pairing(self):
        assert (
            transition(ConnectionState.CONNECTING, ConnectionEvent.CHALLENGE_ISSUED)
            == ConnectionState.AWAITING_PAIRING
        )

    def test_refreshed_challenge_stays_awaiting(self):
        assert (
            transition(ConnectionState.AWAITING_PAIRING, ConnectionEvent.CHALLENGE_ISSUED)
            == ConnectionState.AWAITING_PAIRING
        )

    def test_open_after_pairing(self):
        assert (
            transition(ConnectionState.AWAITING_PAIRING, ConnectionEvent.OPENED)
            == ConnectionState.CONNECTED
        )

    def test_close_goes_to_backoff(self):
        for state in (
            ConnectionState.CONNECTING,
            ConnectionState.AWAITING_PAIRING,
            ConnectionState.CONNECTED,
        ):
            assert transition(state, ConnectionEvent.CLOSED) == ConnectionState.BACKOFF_WAIT

    def test_reconnect_from_backoff(self):
        assert (
            transition(ConnectionState.BACKOFF_WAIT, ConnectionEvent.CONNECT_REQUESTED)
            == ConnectionState.CONNECTING
        )

    def test_reset_from_any_state(self):
        for state in ConnectionState:
            assert transition(state, ConnectionEvent.RESET) == ConnectionState.DISCONNECTED

    def test_no_second_connect_while_connecting(self):
        """Test a second attempt cannot start while one is in flight."""
        with pytest.raises(InvalidTransitionError):
            transition(ConnectionState.CONNECTING, ConnectionEvent.CONNECT_REQUESTED)

    def test_no_connect_while_connected(self):
        with pytest.raises(InvalidTransitionError):
            transition(ConnectionState.CONNECTED, ConnectionEvent.CONNECT_REQUESTED)

    def test_invalid_transition_message(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            transition(ConnectionState.DISCONNECTED, ConnectionEvent.OPENED)
        assert exc_info.value.state == ConnectionState.DISCONNECTED
        assert exc_info.value.event == ConnectionEvent.OPENED

    def test_valid_events_for_connected(self):
        events = get_valid_events(ConnectionState.CONNECTED)
        assert ConnectionEvent.CLOSED in events
        assert ConnectionEvent.CONNECT_REQUESTED not in events

    def test_in_flight_states(self):
        assert is_in_flight(ConnectionState.CONNECTING)
        assert is_in_flight(ConnectionState.AWAITING_PAIRING)
        assert is_in_flight(ConnectionState.CONNECTED)
        assert not is_in_flight(ConnectionState.DISCONNECTED)
        assert not is_in_flight(ConnectionState.BACKOFF_WAIT)


class TestClassifyDisconnect:
    """Test disconnect classification."""

    def test_logged_out(self):
        assert classify_disconnect(401, "Connection Failure", 0, 5) == DisconnectReason.LOGGED_OUT

    def test_logged_out_wins_over_critical(self):
        assert classify_disconnect(401, None, 9, 5) == DisconnectReason.LOGGED_OUT

    def test_restart_required_code(self):
        assert classify_disconnect(515, None, 0, 5) == DisconnectReason.REPAIRING_RESTART

    def test_stream_errored_message(self):
        reason = classify_disconnect(None, "Stream Errored (restart required)", 0, 5)
        assert reason == DisconnectReason.REPAIRING_RESTART

    def test_critical_after_max_retries(self):
        assert classify_disconnect(408, "timed out", 5, 5) == DisconnectReason.CRITICAL

    def test_transient(self):
        assert classify_disconnect(408, "timed out", 2, 5) == DisconnectReason.TRANSIENT

    def test_unknown_close_is_transient(self):
        assert classify_disconnect(None, None, 0, 5) == DisconnectReason.TRANSIENT


class TestBackoffDelay:
    """Test exponential backoff."""

    def test_grows_exponentially(self):
        assert backoff_delay(1, 2.0, 60.0) == 4.0
        assert backoff_delay(2, 2.0, 60.0) == 8.0
        assert backoff_delay(3, 2.0, 60.0) == 16.0

    def test_capped(self):
        assert backoff_delay(10, 2.0, 60.0) == 60.0


class TestConnectionSession:
    """Test the session snapshot."""

    def test_defaults(self):
        session = ConnectionSession()
        assert session.state == ConnectionState.DISCONNECTED
        assert session.retry_count == 0
        assert session.last_challenge is None

    def test_to_dict(self):
        session = ConnectionSession(
            state=ConnectionState.BACKOFF_WAIT,
            retry_count=2,
            last_failure_reason=DisconnectReason.TRANSIENT,
        )

        d = session.to_dict()

        assert d["state"] == "backoff_wait"
        assert d["retry_count"] == 2
        assert d["last_failure_reason"] == "transient"
        assert d["paired_identity"] is None
