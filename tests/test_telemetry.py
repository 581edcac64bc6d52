"""Prometheus helpers and Sentry scrubbing."""

from prometheus_client import generate_latest

from app.telemetry import record_job_run, record_lock_skip, record_seed_items
from app.telemetry.sentry import capture_exception, scrub_sensitive_data, sentry_job_context


class TestMetrics:
    def test_job_and_lock_metrics_exposed(self):
        record_job_run("upsert-live-fixtures", "success", 120.0)
        record_lock_skip("upsert-live-fixtures", "not_acquired")
        record_seed_items("fixture", "success", 3)

        text = generate_latest().decode()

        assert 'job_runs_total{job="upsert-live-fixtures",status="success"}' in text
        assert 'job_lock_skips_total{job="upsert-live-fixtures",reason="not_acquired"}' in text
        assert 'seed_items_total{entity="fixture",status="success"}' in text

    def test_zero_seed_items_not_recorded(self):
        record_seed_items("zero-check", "failed", 0)
        assert 'seed_items_total{entity="zero-check",status="failed"}' not in generate_latest().decode()


class TestSentry:
    def test_scrubs_tokens_and_headers(self):
        event = {
            "request": {
                "headers": {"Authorization": "secret-token", "Accept": "application/json"},
                "query_string": "page=2&api_token=abc123",
            },
            "exception": {"values": [{"value": "GET https://api/x?api_token=abc123 failed"}]},
        }

        scrubbed = scrub_sensitive_data(event, {})

        assert scrubbed["request"]["headers"]["Authorization"] == "[REDACTED]"
        assert scrubbed["request"]["headers"]["Accept"] == "application/json"
        assert scrubbed["request"]["query_string"] == "page=2&api_token=[REDACTED]"
        assert "abc123" not in scrubbed["exception"]["values"][0]["value"]

    def test_noop_when_not_initialized(self):
        with sentry_job_context("upsert-live-fixtures", instance="host:1") as scope:
            assert scope is None
        capture_exception(RuntimeError("not sent"))
