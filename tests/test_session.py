"""
Jump session orchestration: phase transitions, per-frame outputs,
landing and telemetry.
"""
import logging

import jax.numpy as jnp
import numpy as np
import pytest

from jaxdive.atmosphere import DRAG_ARCH, DRAG_PARACHUTE, JUMP_ALTITUDE
from jaxdive.integration import PHYSICS_DT
from jaxdive.physics import Controls, LandingQuality, Phase
from jaxdive.session import TELEMETRY_HEADER, JumpSession, TelemetryRecorder


FRAME = 1.0 / 60.0
TRIGGER = Controls(deploy=True)
NEUTRAL = Controls()


def press(session, controls=TRIGGER):
    """Release then press the trigger so the session sees a fresh edge."""
    session.update(0.0, NEUTRAL)
    return session.update(FRAME, controls)


def session_in_canopy(altitude=800.0):
    session = JumpSession(start_altitude=altitude)
    press(session)
    assert session.phase is Phase.FREEFALL
    press(session)
    assert session.phase is Phase.CANOPY
    return session


class TestPhaseTransitions:
    def test_starts_ready_at_jump_altitude(self):
        session = JumpSession()
        assert session.phase is Phase.READY
        assert session.altitude == JUMP_ALTITUDE

    def test_held_in_aircraft(self):
        session = JumpSession()
        for _ in range(30):
            output = session.update(FRAME, Controls(dive=True))
        assert output.steps >= 1
        assert session.altitude == JUMP_ALTITUDE
        np.testing.assert_array_equal(session.state.velocity, jnp.zeros(3))

    def test_trigger_jumps(self):
        session = JumpSession()
        output = session.update(FRAME, TRIGGER)
        assert session.phase is Phase.FREEFALL
        assert output.phase is Phase.FREEFALL
        assert float(session.state.velocity[1]) < 0.0

    def test_held_trigger_fires_once(self):
        session = JumpSession(start_altitude=800.0)
        session.update(FRAME, TRIGGER)
        for _ in range(10):
            session.update(FRAME, TRIGGER)
        assert session.phase is Phase.FREEFALL

    def test_deploy_refused_above_ceiling(self):
        session = JumpSession()
        press(session)
        assert session.deploy_canopy() is False
        press(session)
        assert session.phase is Phase.FREEFALL

    def test_deploy_below_ceiling(self):
        session = session_in_canopy()
        assert session.deployment_time <= 2 * FRAME

    def test_normal_opening_is_not_low(self):
        session = session_in_canopy(850.0)
        assert session.deployment_altitude == pytest.approx(850.0, abs=1.0)
        assert not session.low_deployment

    def test_low_opening_is_flagged(self, caplog):
        with caplog.at_level(logging.WARNING, logger="jaxdive"):
            session = session_in_canopy(700.0)
        assert session.low_deployment
        assert any("Low deployment" in r.getMessage() for r in caplog.records)
        session.reset()
        assert session.deployment_altitude is None
        assert not session.low_deployment

    def test_cannot_deploy_from_aircraft(self):
        assert JumpSession(start_altitude=500.0).deploy_canopy() is False

    def test_jump_only_from_ready(self):
        session = session_in_canopy()
        assert session.jump() is False

    def test_trigger_after_landing_resets(self):
        session = session_in_canopy()
        session.land()
        press(session)
        assert session.phase is Phase.READY
        assert session.landing_quality is None
        assert session.altitude == 800.0


class TestFrameOutput:
    def test_freefall_accelerates_downward(self):
        session = JumpSession()
        press(session)
        for _ in range(60):
            output = session.update(FRAME, NEUTRAL)
        assert output.speed > 5.0
        assert output.altitude < JUMP_ALTITUDE
        assert float(output.acceleration[1]) < 0.0

    def test_render_state_is_interpolated(self):
        session = JumpSession()
        press(session)
        session.update(FRAME, NEUTRAL)
        output = session.update(1.5 * PHYSICS_DT, NEUTRAL)
        acc = session.accumulator
        lo = min(float(acc.prev_position[1]), float(acc.current_position[1]))
        hi = max(float(acc.prev_position[1]), float(acc.current_position[1]))
        assert lo <= float(output.render_position[1]) <= hi
        assert output.altitude == pytest.approx(float(output.render_position[1]))

    def test_host_moved_state_is_not_blended(self):
        session = JumpSession(start_altitude=3000.0)
        press(session)
        for _ in range(10):
            session.update(FRAME, NEUTRAL)
        residual = session.accumulator.residual
        session.state = session.state._replace(position=jnp.array([0.0, 500.0, 0.0]))
        output = session.update(0.5 * PHYSICS_DT, NEUTRAL)
        assert output.steps == 0
        assert session.accumulator.residual == pytest.approx(residual + 0.5 * PHYSICS_DT)
        assert output.altitude == pytest.approx(500.0)
        np.testing.assert_array_equal(np.asarray(output.render_position),
                                      np.asarray(session.state.position))

    def test_host_moved_state_steps_from_new_position(self):
        session = JumpSession(start_altitude=3000.0)
        press(session)
        session.state = session.state._replace(position=jnp.array([0.0, 500.0, 0.0]))
        output = session.update(FRAME, NEUTRAL)
        assert output.steps >= 1
        assert 499.0 < float(output.render_position[1]) <= 500.0

    def test_g_force_kept_when_no_step_runs(self):
        session = JumpSession()
        press(session)
        for _ in range(30):
            before = session.update(FRAME, NEUTRAL)
        output = session.update(0.0, NEUTRAL)
        assert output.steps == 0
        assert output.mean_g_force == before.mean_g_force

    def test_mean_g_force_averages_steps(self):
        session = JumpSession()
        press(session)
        output = session.update(0.05, NEUTRAL)
        assert output.steps >= 5
        assert 0.0 < output.mean_g_force < output.g_force

    def test_stall_consumes_at_most_the_ceiling(self):
        session = JumpSession()
        press(session)
        start = session.jump_time
        output = session.update(3.0, NEUTRAL)
        assert output.steps <= session.accumulator.max_steps
        assert session.jump_time - start == pytest.approx(0.1)

    def test_deployment_factor_reaches_one(self):
        session = session_in_canopy()
        output = session.update(FRAME, NEUTRAL)
        assert 0.0 < output.deployment < 0.5
        for _ in range(int(4.5 / 0.05)):
            output = session.update(0.05, NEUTRAL)
        assert output.deployment == 1.0

    def test_canopy_turn_changes_heading(self):
        session = session_in_canopy(850.0)
        for _ in range(int(5.0 / 0.05)):
            session.update(0.05, NEUTRAL)
        q_before = np.asarray(session.state.rotation)
        for _ in range(20):
            session.update(0.05, Controls(left=True))
        assert float(session.state.angular_velocity[1]) == pytest.approx(0.8)
        assert not np.allclose(np.asarray(session.state.rotation), q_before)

    def test_drag_configuration_for_display(self):
        session = JumpSession()
        press(session)
        session.update(FRAME, Controls(arch=True))
        assert session.drag_configuration() == DRAG_ARCH
        assert session.current_terminal_velocity() > 0.0
        assert session_in_canopy().drag_configuration() == DRAG_PARACHUTE


class TestLanding:
    def test_cannot_land_from_aircraft(self):
        with pytest.raises(RuntimeError):
            JumpSession().land()

    @pytest.mark.parametrize("vertical_speed, expected", [
        (-2.0, LandingQuality.PERFECT),
        (-4.0, LandingQuality.GOOD),
        (-6.5, LandingQuality.HARD),
        (-20.0, LandingQuality.CRASH),
    ])
    def test_quality_from_vertical_speed(self, vertical_speed, expected):
        session = session_in_canopy()
        session.state = session.state._replace(
            position=jnp.array([3.0, 1.0, 4.0]),
            velocity=jnp.array([10.0, vertical_speed, 0.0]))
        assert session.land() is expected
        assert session.phase is Phase.LANDED
        assert session.score == pytest.approx(5.0)

    def test_score_relative_to_target(self):
        session = JumpSession(start_altitude=800.0, target=(3.0, 4.0))
        press(session)
        press(session)
        session.state = session.state._replace(position=jnp.array([3.0, 1.0, 4.0]))
        session.land()
        assert session.score == pytest.approx(0.0)

    def test_landed_body_stays_put(self):
        session = session_in_canopy()
        session.land()
        position = np.asarray(session.state.position)
        for _ in range(10):
            session.update(FRAME, Controls(dive=True))
        np.testing.assert_array_equal(np.asarray(session.state.position), position)


class TestTelemetryRecorder:
    def test_csv_format(self):
        recorder = TelemetryRecorder()
        recorder.record(1.234, 1000.04, 50.126, 1.0004, Phase.FREEFALL)
        assert recorder.to_csv() == TELEMETRY_HEADER + "\n1.23,1000.0,50.13,1.000,FREEFALL"

    def test_interval(self):
        recorder = TelemetryRecorder(interval=0.5)
        assert recorder.record(0.0, 1.0, 1.0, 1.0, Phase.FREEFALL)
        assert not recorder.record(0.3, 1.0, 1.0, 1.0, Phase.FREEFALL)
        assert recorder.record(0.5, 1.0, 1.0, 1.0, Phase.CANOPY)
        assert len(recorder.samples) == 2

    @pytest.mark.parametrize("phase", [Phase.READY, Phase.LANDED])
    def test_ignores_grounded_phases(self, phase):
        recorder = TelemetryRecorder()
        assert not recorder.record(1.0, 1.0, 1.0, 1.0, phase)

    def test_disabled_records_nothing(self):
        recorder = TelemetryRecorder(enabled=False)
        assert not recorder.record(1.0, 1.0, 1.0, 1.0, Phase.FREEFALL)
        assert recorder.as_array().shape == (0, 4)

    def test_save_csv(self, tmp_path):
        recorder = TelemetryRecorder()
        recorder.record(0.0, 3048.0, 0.0, 0.0, Phase.FREEFALL)
        path = tmp_path / "telemetry.csv"
        recorder.save_csv(str(path))
        assert path.read_text(encoding="utf-8").splitlines()[0] == TELEMETRY_HEADER

    def test_session_samples_during_jump(self):
        session = JumpSession(telemetry_enabled=True)
        session.update(0.1, TRIGGER)
        for _ in range(30):
            session.update(0.1, NEUTRAL)
        data = session.telemetry.as_array()
        assert 5 <= len(data) <= 7
        assert np.all(np.diff(data[:, 0]) >= 0.5 - 1e-9)
        assert np.all(np.diff(data[:, 1]) < 0.0)
        assert all(s.phase is Phase.FREEFALL for s in session.telemetry.samples)
