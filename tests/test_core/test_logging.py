"""Tests for structured log formatting and context ids."""
import json
import logging

from sportsrecon.core.logging import (
    JSONFormatter, clear_correlation_id, clear_job_id, set_correlation_id, set_job_id,
)


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("sportsrecon.test", logging.INFO, __file__, 1, "unit %s done", ("t1",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:

    def test_includes_context_ids_and_extra(self):
        corr_token = set_correlation_id("req-1")
        job_token = set_job_id("job-9")
        try:
            payload = json.loads(JSONFormatter().format(make_record(module_id="ncaa_football_roster")))
        finally:
            clear_job_id(job_token)
            clear_correlation_id(corr_token)

        assert payload["message"] == "unit t1 done"
        assert payload["correlation_id"] == "req-1"
        assert payload["job_id"] == "job-9"
        assert payload["extra"] == {"module_id": "ncaa_football_roster"}

    def test_job_id_omitted_outside_jobs(self):
        payload = json.loads(JSONFormatter().format(make_record()))

        assert "job_id" not in payload
        assert "extra" not in payload
