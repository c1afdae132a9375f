"""Unit tests for core/telemetry.py."""

import pytest

from core.telemetry import DISTINCT_ID, RequestTelemetry, capture_event, report_telemetry

# ---------------------------------------------------------------------------
# RequestTelemetry
# ---------------------------------------------------------------------------


class TestRequestTelemetry:
    def test_track_step_records_duration(self):
        t = RequestTelemetry()
        with t.track_step("test_step"):
            pass
        assert "test_step" in t.steps
        assert t.steps["test_step"].duration_ms >= 0
        assert t.steps["test_step"].success is True

    def test_track_step_records_exception(self):
        t = RequestTelemetry()
        with pytest.raises(ValueError):
            with t.track_step("failing_step"):
                raise ValueError("boom")
        assert t.steps["failing_step"].success is False
        assert t.steps["failing_step"].error_type == "ValueError"

    def test_record_api_call_known_service(self):
        t = RequestTelemetry()
        t.record_api_call("emby")
        assert t.api_calls["emby"] == 1
        t.record_api_call("emby")
        assert t.api_calls["emby"] == 2
        assert t.api_calls["tmdb"] == 0

    def test_counters_cover_upstream_services(self):
        assert RequestTelemetry().api_calls == {"emby": 0, "tmdb": 0, "bgm": 0}

    def test_record_api_call_unknown_service(self):
        t = RequestTelemetry()
        t.record_api_call("unknown_service")
        assert "unknown_service" not in t.api_calls

    def test_get_total_duration_ms(self):
        t = RequestTelemetry()
        duration = t.get_total_duration_ms()
        assert duration >= 0

    def test_get_step_timings(self):
        t = RequestTelemetry()
        with t.track_step("step_a"):
            pass
        with t.track_step("step_b"):
            pass
        timings = t.get_step_timings()
        assert "step_a_ms" in timings
        assert "step_b_ms" in timings

    def test_send_to_posthog_step_events(self, mock_posthog_client):
        t = RequestTelemetry()
        with t.track_step("provision"):
            pass
        t.send_to_posthog(mock_posthog_client, "registration_completed")

        calls = mock_posthog_client.capture.call_args_list
        step_call = calls[0]
        assert step_call[1]["event"] == "registration_completed_provision"
        assert step_call[1]["properties"]["step"] == "provision"
        assert step_call[1]["distinct_id"] == DISTINCT_ID

    def test_send_to_posthog_summary_event(self, mock_posthog_client):
        t = RequestTelemetry()
        with t.track_step("s"):
            pass
        t.send_to_posthog(mock_posthog_client, "metadata_batch_fetched", {"total": 3})

        calls = mock_posthog_client.capture.call_args_list
        summary_call = calls[-1]
        assert summary_call[1]["event"] == "metadata_batch_fetched"
        assert summary_call[1]["properties"]["total"] == 3
        assert "api_calls" in summary_call[1]["properties"]


# ---------------------------------------------------------------------------
# capture_event / report_telemetry
# ---------------------------------------------------------------------------


class TestCaptureEvent:
    def test_sends_event(self, mock_posthog_client):
        capture_event(mock_posthog_client, "account_deleted", {"a": 1})
        mock_posthog_client.capture.assert_called_once_with(
            distinct_id=DISTINCT_ID, event="account_deleted", properties={"a": 1}
        )

    def test_noop_without_client(self):
        capture_event(None, "account_deleted")  # should not raise

    def test_posthog_failure_ignored(self, mock_posthog_client):
        mock_posthog_client.capture.side_effect = RuntimeError("queue full")
        capture_event(mock_posthog_client, "account_deleted")  # should not raise


class TestReportTelemetry:
    def test_sends_steps_and_summary(self, mock_posthog_client):
        t = RequestTelemetry()
        with t.track_step("persist"):
            pass
        report_telemetry(mock_posthog_client, t, "registration_completed")
        assert mock_posthog_client.capture.call_count == 2

    def test_noop_without_client(self):
        report_telemetry(None, RequestTelemetry(), "registration_completed")

    def test_posthog_failure_ignored(self, mock_posthog_client):
        mock_posthog_client.capture.side_effect = RuntimeError("queue full")
        t = RequestTelemetry()
        with t.track_step("s"):
            pass
        report_telemetry(mock_posthog_client, t, "registration_completed")
