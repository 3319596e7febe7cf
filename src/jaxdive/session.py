"""
Host-side orchestration of a single jump.

`JumpSession` holds the one canonical copy of the jump state (phase, body
state, accumulator, clocks and telemetry) and feeds it explicitly into the
physics core every frame.
"""
import logging
import math
from typing import List, NamedTuple, Optional, Tuple

import jax.numpy as jnp
import numpy as np

from .atmosphere import (
    DRAG_PARACHUTE, JUMP_ALTITUDE, MASS_SKYDIVER, MIN_DEPLOYMENT_ALTITUDE,
    DragConfiguration, clamped_deployment_factor, terminal_velocity,
)
from .integration import (
    PHYSICS_DT, create_accumulator, get_interpolated_position,
    get_interpolated_velocity, reset_accumulator, sync_accumulator, update_physics,
)
from .physics import (
    FORWARD, Controls, LandingQuality, Phase, PhysicsState, StepResult,
    classify_landing, drag_config_for_controls, init_state, integrate_yaw,
    mass_for_phase, physics_step, rotate_heading, update_angular_velocity,
)


logger = logging.getLogger(__name__)

# Canopy cannot be opened above this altitude
DEPLOY_CEILING_ALTITUDE = 900.0

# Exit impulse off the aircraft, N*s
EXIT_IMPULSE = 5.0

TELEMETRY_INTERVAL = 0.5
TELEMETRY_HEADER = "Time(s),Altitude(m),Speed(m/s),G-Force,Phase"

ACTIVE_PHASES = (Phase.FREEFALL, Phase.CANOPY)


class TelemetrySample(NamedTuple):
    time: float
    altitude: float
    speed: float
    g_force: float
    phase: Phase


class TelemetryRecorder:
    """
    Time series of jump telemetry for physics validation.
    """
    def __init__(self, enabled: bool = True, interval: float = TELEMETRY_INTERVAL) -> None:
        """
        Initialize an empty recorder.

        Parameters
        ----------
        enabled : bool, optional
            Whether samples are kept, by default True
        interval : float, optional
            Minimum jump time between samples in seconds, by default TELEMETRY_INTERVAL
        """
        self.enabled = enabled
        self.interval = interval
        self.samples: List[TelemetrySample] = []

    def record(self, time: float, altitude: float, speed: float,
               g_force: float, phase: Phase) -> bool:
        """
        Append a sample if recording is on, the body is airborne and the
        interval since the last sample has elapsed.

        Returns
        -------
        bool
            True if the sample was stored
        """
        if not self.enabled or phase not in ACTIVE_PHASES:
            return False
        if self.samples and time - self.samples[-1].time < self.interval:
            return False
        self.samples.append(TelemetrySample(time, altitude, speed, g_force, phase))
        return True

    def clear(self) -> None:
        self.samples = []

    def as_array(self) -> np.ndarray:
        """Numeric columns (time, altitude, speed, g_force) as an (n, 4) array."""
        if not self.samples:
            return np.zeros((0, 4))
        return np.array([s[:4] for s in self.samples], dtype=float)

    def to_csv(self) -> str:
        lines = [TELEMETRY_HEADER]
        for s in self.samples:
            lines.append(f"{s.time:.2f},{s.altitude:.1f},{s.speed:.2f},"
                         f"{s.g_force:.3f},{s.phase.value}")
        return "\n".join(lines)

    def save_csv(self, path: str) -> None:
        with open(path, "w", encoding="utf-8") as f:
            f.write(self.to_csv())
        logger.info("Wrote %d telemetry samples to %s", len(self.samples), path)


class FrameOutput(NamedTuple):
    """
    Everything the host needs from one frame of simulation.

    `render_position` and `render_velocity` are interpolated between the
    last two discrete steps and are what should be drawn or reported.
    """
    position: jnp.ndarray
    velocity: jnp.ndarray
    acceleration: jnp.ndarray
    g_force: float
    mean_g_force: float
    steps: int
    render_position: jnp.ndarray
    render_velocity: jnp.ndarray
    speed: float
    altitude: float
    deployment: float
    phase: Phase


class JumpSession:
    """
    One skydiver from the aircraft door to the ground.
    """
    def __init__(self, start_altitude: float = JUMP_ALTITUDE,
                 target: Tuple[float, float] = (0.0, 0.0),
                 deploy_ceiling: float = DEPLOY_CEILING_ALTITUDE,
                 telemetry_enabled: bool = False,
                 fixed_dt: float = PHYSICS_DT) -> None:
        """
        Initialize a session waiting in the aircraft.

        Parameters
        ----------
        start_altitude : float, optional
            Exit altitude in meters, by default JUMP_ALTITUDE
        target : Tuple[float, float], optional
            Landing target (x, z) used for scoring, by default the origin
        deploy_ceiling : float, optional
            Canopy can only be opened below this altitude, by default DEPLOY_CEILING_ALTITUDE
        telemetry_enabled : bool, optional
            Whether to record telemetry, by default False
        fixed_dt : float, optional
            Physics step in seconds, by default PHYSICS_DT
        """
        self.start_altitude = start_altitude
        self.target = target
        self.deploy_ceiling = deploy_ceiling
        self.telemetry = TelemetryRecorder(enabled=telemetry_enabled)

        self.state = init_state(start_altitude)
        self.accumulator = create_accumulator(self.state.position, self.state.velocity, fixed_dt)
        self.reset()

    @property
    def altitude(self) -> float:
        return float(self.state.position[1])

    def reset(self) -> None:
        """Put the skydiver back in the aircraft."""
        self.phase = Phase.READY
        self.state = init_state(self.start_altitude)
        reset_accumulator(self.accumulator, self.state.position, self.state.velocity)
        self.controls = Controls()
        self.deployment_time = 0.0
        self.jump_time = 0.0
        self.deployment_altitude: Optional[float] = None
        self.acceleration = jnp.zeros(3)
        self.g_force = 1.0
        self.mean_g_force = 1.0
        self.landing_quality: Optional[LandingQuality] = None
        self.score = 0.0
        self._previous_trigger = False
        self.telemetry.clear()

    def jump(self) -> bool:
        """Leave the aircraft; returns False unless waiting to jump."""
        if self.phase is not Phase.READY:
            return False
        velocity = FORWARD * (EXIT_IMPULSE / MASS_SKYDIVER)
        self.state = self.state._replace(velocity=velocity)
        reset_accumulator(self.accumulator, self.state.position, velocity)
        self.phase = Phase.FREEFALL
        self.jump_time = 0.0
        if self.telemetry.enabled:
            self.telemetry.clear()
        logger.info("Jump at %.0f m", self.altitude)
        return True

    def deploy_canopy(self) -> bool:
        """
        Open the canopy.

        Returns
        -------
        bool
            False when not in freefall or still above the deploy ceiling
        """
        if self.phase is not Phase.FREEFALL:
            return False
        if self.altitude >= self.deploy_ceiling:
            logger.debug("Deployment refused at %.0f m (ceiling %.0f m)",
                         self.altitude, self.deploy_ceiling)
            return False
        self.phase = Phase.CANOPY
        self.deployment_time = 0.0
        self.deployment_altitude = self.altitude
        logger.info("Canopy deployed at %.0f m, %.1f m/s", self.altitude,
                    float(jnp.linalg.norm(self.state.velocity)))
        if self.low_deployment:
            logger.warning("Low deployment at %.0f m, below %.0f m",
                           self.altitude, MIN_DEPLOYMENT_ALTITUDE)
        return True

    def land(self) -> LandingQuality:
        """
        Ground contact reported by the host.

        Returns
        -------
        LandingQuality
            Rating from the vertical speed at contact

        Raises
        ------
        RuntimeError
            If the body is not airborne
        """
        if self.phase not in ACTIVE_PHASES:
            raise RuntimeError(f"Cannot land from phase {self.phase.value}")

        position = self.state.position
        contact_speed = abs(float(self.state.velocity[1]))
        self.landing_quality = classify_landing(contact_speed)
        self.score = math.hypot(float(position[0]) - self.target[0],
                                float(position[2]) - self.target[1])

        self.state = self.state._replace(velocity=jnp.zeros(3), angular_velocity=jnp.zeros(3))
        reset_accumulator(self.accumulator, position, self.state.velocity)
        self.phase = Phase.LANDED
        logger.info("Landed (%s) at %.2f m/s vertical, %.1f m from target",
                    self.landing_quality.value, contact_speed, self.score)
        return self.landing_quality

    def handle_trigger(self, controls: Controls) -> None:
        """Advance the phase on a fresh press of the deploy trigger."""
        pressed = bool(controls.deploy) and not self._previous_trigger
        self._previous_trigger = bool(controls.deploy)
        if not pressed:
            return
        if self.phase is Phase.READY:
            self.jump()
        elif self.phase is Phase.FREEFALL:
            self.deploy_canopy()
        elif self.phase is Phase.LANDED:
            self.reset()

    @property
    def low_deployment(self) -> bool:
        """True once the canopy was opened below the minimum safe altitude."""
        return (self.deployment_altitude is not None
                and self.deployment_altitude < MIN_DEPLOYMENT_ALTITUDE)

    def drag_configuration(self) -> DragConfiguration:
        """Configuration currently shaping the drag, for display."""
        if self.phase is Phase.CANOPY:
            return DRAG_PARACHUTE
        return drag_config_for_controls(self.controls)

    def current_terminal_velocity(self) -> float:
        config = self.drag_configuration()
        return float(terminal_velocity(config, max(self.altitude, 0.0),
                                       mass_for_phase(self.phase)))

    def update(self, frame_delta: float, controls: Controls) -> FrameOutput:
        """
        Advance the jump by one rendered frame.

        Parameters
        ----------
        frame_delta : float
            Time since the previous frame in seconds
        controls : Controls
            Inputs held this frame

        Returns
        -------
        FrameOutput
            Discrete and interpolated state plus diagnostics
        """
        self.handle_trigger(controls)
        self.controls = controls
        phase = self.phase

        deployment = 0.0
        if phase is Phase.CANOPY:
            deployment = float(clamped_deployment_factor(self.deployment_time))

        accumulator = self.accumulator
        sync_accumulator(accumulator, self.state.position, self.state.velocity)

        results: List[StepResult] = []
        rotation = self.state.rotation
        angular_velocity = self.state.angular_velocity

        def step_fn(position, velocity, dt):
            nonlocal rotation, angular_velocity
            result = physics_step(position, velocity, controls, phase, deployment, dt)
            angular_velocity = update_angular_velocity(angular_velocity, controls, phase,
                                                       deployment, dt)
            rotation = integrate_yaw(rotation, angular_velocity[1], dt)
            new_velocity = result.velocity
            if phase is Phase.CANOPY:
                new_velocity = rotate_heading(new_velocity, angular_velocity[1] * dt)
            results.append(result)
            return result.position, new_velocity

        steps = update_physics(accumulator, frame_delta, step_fn)

        if results:
            self.acceleration = results[-1].acceleration
            self.g_force = float(results[-1].g_force)
            self.mean_g_force = float(np.mean([float(r.g_force) for r in results]))

        self.state = PhysicsState(accumulator.current_position, accumulator.current_velocity,
                                  rotation, angular_velocity)

        consumed = min(frame_delta, accumulator.max_frame_delta)
        if phase is Phase.CANOPY:
            self.deployment_time += consumed
        if phase in ACTIVE_PHASES:
            self.jump_time += consumed

        render_position = get_interpolated_position(accumulator)
        render_velocity = get_interpolated_velocity(accumulator)
        speed = float(jnp.linalg.norm(render_velocity))
        altitude = float(render_position[1])

        self.telemetry.record(self.jump_time, altitude, speed, self.mean_g_force, phase)

        return FrameOutput(
            position=self.state.position,
            velocity=self.state.velocity,
            acceleration=self.acceleration,
            g_force=self.g_force,
            mean_g_force=self.mean_g_force,
            steps=steps,
            render_position=render_position,
            render_velocity=render_velocity,
            speed=speed,
            altitude=altitude,
            deployment=deployment,
            phase=phase,
        )
