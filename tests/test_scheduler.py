"""Tests del scheduler de ciclos de publicación.

Ejecutar:
    pytest tests/test_scheduler.py -v
"""

import json
import threading
import time
from unittest.mock import MagicMock

import pytest

from device_telemetry.core.transport.session import SessionState
from device_telemetry.errors import SamplerExecutionError
from device_telemetry.scheduler import PublishCycleScheduler


VALID_SAMPLE = "2024-01-01T00:00:00Z,21.5,55.0,300,120"


@pytest.fixture
def session():
    session = MagicMock()
    session.publish.return_value = True
    session.refresh_if_needed.return_value = False
    session.state = SessionState.CONNECTED
    return session


@pytest.fixture
def sampler():
    sampler = MagicMock()
    sampler.sample.return_value = VALID_SAMPLE
    return sampler


@pytest.fixture
def scheduler(identity, session, sampler) -> PublishCycleScheduler:
    return PublishCycleScheduler(identity, session, sampler, interval=300)


# =============================================================================
# CICLO ÚNICO
# =============================================================================

class TestRunCycle:
    """Un ciclo: muestreo → parseo → publicación."""

    def test_publishes_reading(self, scheduler, session):
        assert scheduler.run_cycle() is True

        session.publish.assert_called_once()
        topic, payload = session.publish.call_args.args
        assert topic == "/devices/d1/events"
        assert session.publish.call_args.kwargs == {"qos": 1}
        assert json.loads(payload) == {
            "registryid": "r1",
            "deviceid": "d1",
            "timestamp": "2024-01-01T00:00:00Z",
            "temperature": 21.5,
            "humidity": 55.0,
            "moisture": 300,
            "light": 120,
        }

    def test_refreshes_credential_before_publish(self, scheduler, session):
        scheduler.run_cycle()

        session.refresh_if_needed.assert_called_once()

    def test_malformed_sample_skips_publish(self, scheduler, session, sampler):
        sampler.sample.return_value = "bad,data"

        assert scheduler.run_cycle() is False
        session.publish.assert_not_called()
        assert scheduler.stats["malformed"] == 1

    def test_sampler_error_skips_publish(self, scheduler, session, sampler):
        sampler.sample.side_effect = SamplerExecutionError("exit 1", returncode=1)

        assert scheduler.run_cycle() is False
        session.publish.assert_not_called()
        assert scheduler.stats["sampler_errors"] == 1

    def test_disconnected_session_drops_tick(self, scheduler, session):
        session.publish.return_value = False
        session.state = SessionState.DISCONNECTED

        assert scheduler.run_cycle() is False
        assert scheduler.stats["publish_failed"] == 1

    def test_next_cycle_after_failure(self, scheduler, session, sampler):
        sampler.sample.side_effect = [SamplerExecutionError("boom"), VALID_SAMPLE]

        assert scheduler.run_cycle() is False
        assert scheduler.run_cycle() is True
        assert scheduler.stats["cycles"] == 2
        assert scheduler.stats["succeeded"] == 1


# =============================================================================
# HILO DEL SCHEDULER
# =============================================================================

class TestSchedulerThread:
    """El scheduler corre fuera del hilo de red."""

    def test_runs_periodically(self, identity, session, sampler):
        scheduler = PublishCycleScheduler(identity, session, sampler, interval=0.05, first_delay=0)

        scheduler.start()
        time.sleep(0.3)
        scheduler.stop()

        assert session.publish.call_count >= 2
        assert scheduler.is_running is False

    def test_default_first_delay_is_one_period(self, identity, session, sampler):
        scheduler = PublishCycleScheduler(identity, session, sampler, interval=300)

        assert scheduler.first_delay == 300

    def test_sampler_runs_off_caller_thread(self, identity, session, sampler):
        threads = []
        done = threading.Event()

        def _sample():
            threads.append(threading.current_thread().name)
            done.set()
            return VALID_SAMPLE

        sampler.sample.side_effect = _sample
        scheduler = PublishCycleScheduler(identity, session, sampler, interval=10, first_delay=0)

        scheduler.start()
        assert done.wait(2.0)
        scheduler.stop()

        assert threads[0] == "publish-cycle-scheduler"

    def test_unexpected_error_keeps_loop_alive(self, identity, session, sampler):
        session.refresh_if_needed.side_effect = [RuntimeError("boom"), False, False, False, False, False]
        scheduler = PublishCycleScheduler(identity, session, sampler, interval=0.05, first_delay=0)

        scheduler.start()
        time.sleep(0.3)
        scheduler.stop()

        assert session.publish.call_count >= 1

    def test_invalid_interval(self, identity, session, sampler):
        with pytest.raises(ValueError):
            PublishCycleScheduler(identity, session, sampler, interval=0)
