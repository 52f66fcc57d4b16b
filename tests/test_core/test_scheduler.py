"""Tests for the maintenance scheduler and the rule expiry sweep.

Test Strategy:
1. Test the sweep deactivates only expired active rules, in its own session
2. Test the scheduler registers the expiry job and starts/stops cleanly
"""
import sys
from datetime import datetime, timedelta
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))
from conftest import create_rule

from sportsrecon.core.scheduler import MaintenanceScheduler, run_expiry_sweep
from sportsrecon.models import MappingRule

WEIGHT_RULE = {"mapping_type": "tolerance", "field_type": "weight", "rules": {"tolerance": 5}}


class TestExpirySweep:

    def test_deactivates_expired_rules(self, db_session, session_factory):
        now = datetime.utcnow()
        expired = create_rule(db_session, **WEIGHT_RULE, expires_at=now - timedelta(hours=1))
        current = create_rule(db_session, **WEIGHT_RULE, expires_at=now + timedelta(days=1))
        forever = create_rule(db_session, **WEIGHT_RULE)

        result = run_expiry_sweep(session_factory, now=now)

        assert result["expired"] == 1
        assert result["rule_ids"] == [expired.id]
        db_session.expire_all()
        assert db_session.get(MappingRule, expired.id).active is False
        assert db_session.get(MappingRule, current.id).active is True
        assert db_session.get(MappingRule, forever.id).active is True

    def test_second_sweep_is_noop(self, db_session, session_factory):
        now = datetime.utcnow()
        create_rule(db_session, **WEIGHT_RULE, expires_at=now - timedelta(minutes=5))

        run_expiry_sweep(session_factory, now=now)
        result = run_expiry_sweep(session_factory, now=now)

        assert result["expired"] == 0


class TestMaintenanceScheduler:

    async def test_start_registers_expiry_job(self, session_factory):
        scheduler = MaintenanceScheduler(session_factory=session_factory)

        await scheduler.start()
        try:
            assert scheduler.running is True
            assert [job.id for job in scheduler.scheduler.get_jobs()] == ["rule_expiry_sweep"]

            # Starting twice keeps a single job
            await scheduler.start()
            assert len(scheduler.scheduler.get_jobs()) == 1
        finally:
            await scheduler.stop()

        assert scheduler.running is False

    async def test_stop_without_start(self, session_factory):
        scheduler = MaintenanceScheduler(session_factory=session_factory)
        await scheduler.stop()
        assert scheduler.running is False
