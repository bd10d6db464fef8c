"""
tests/test_session.py
Unit tests for codewatch.session.state_machine.ExtractionSession.
"""

from codewatch.session.state_machine import ExtractionSession, SessionState


class TestLiveMode:
    def test_tick_cycle_returns_to_idle(self):
        s = ExtractionSession()
        s.begin_live_tick()
        assert s.state is SessionState.CAPTURING
        s.awaiting_backend(live=True)
        assert s.state is SessionState.AWAITING_BACKEND
        s.end_live_tick()
        assert s.state is SessionState.IDLE

    def test_monitoring_flag(self):
        s = ExtractionSession()
        s.set_monitoring(True)
        assert s.monitoring
        s.begin_live_tick()
        s.set_monitoring(False)
        assert not s.monitoring
        assert s.state is SessionState.IDLE

    def test_live_tick_does_not_override_manual(self):
        s = ExtractionSession()
        assert s.begin_manual()
        s.awaiting_backend(live=False)
        s.begin_live_tick()
        s.awaiting_backend(live=True)
        s.end_live_tick()
        assert s.state is SessionState.AWAITING_BACKEND
        assert s.manual_in_flight


class TestManualMode:
    def test_success_path(self):
        s = ExtractionSession()
        assert s.begin_manual()
        assert s.state is SessionState.CAPTURING
        s.awaiting_backend(live=False)
        s.complete_manual(accepted=2)
        assert s.state is SessionState.SUCCEEDED
        assert s.snapshot()["last_accepted"] == 2
        assert not s.manual_in_flight

    def test_failure_path_keeps_message(self):
        s = ExtractionSession()
        s.begin_manual()
        s.fail_manual("Failed to process text.")
        assert s.state is SessionState.FAILED
        assert s.error_message == "Failed to process text."

    def test_second_submission_rejected_while_in_flight(self):
        s = ExtractionSession()
        assert s.begin_manual()
        assert not s.begin_manual()
        assert s.state is SessionState.CAPTURING

    def test_new_submission_clears_previous_error(self):
        s = ExtractionSession()
        s.begin_manual()
        s.fail_manual("boom")
        assert s.begin_manual()
        assert s.error_message is None

    def test_reset_ignored_while_in_flight(self):
        s = ExtractionSession()
        s.begin_manual()
        s.reset()
        assert s.state is SessionState.CAPTURING

    def test_reset_after_failure(self):
        s = ExtractionSession()
        s.begin_manual()
        s.fail_manual("boom")
        s.reset()
        assert s.state is SessionState.IDLE
        assert s.error_message is None


class TestSnapshot:
    def test_snapshot_keys(self):
        snap = ExtractionSession().snapshot()
        assert snap == {
            "state":            "IDLE",
            "monitoring":       False,
            "manual_in_flight": False,
            "error":            None,
            "last_accepted":    0,
        }
