"""
Fixed timestep integration decoupled from the rendering frame rate.

Frame time is consumed in whole physics steps; the remainder carries over
and is used to interpolate between the last two discrete states.
"""
import logging
from typing import Callable, Optional, Tuple

import jax.numpy as jnp


logger = logging.getLogger(__name__)

# 120 Hz physics
PHYSICS_DT = 1.0 / 120.0

# Time beyond this per frame is dropped, not deferred
MAX_FRAME_DELTA = 0.1

# Below this magnitude a vector has no usable direction
NORMALIZE_EPSILON = 1e-9

StepFn = Callable[[jnp.ndarray, jnp.ndarray, float], Tuple[jnp.ndarray, jnp.ndarray]]


class PhysicsAccumulator:
    """
    Residual frame time plus the two most recent discrete states.
    """
    def __init__(self, position: jnp.ndarray, velocity: jnp.ndarray,
                 fixed_dt: float = PHYSICS_DT, max_frame_delta: float = MAX_FRAME_DELTA) -> None:
        """
        Initialize the accumulator at rest on a given state.

        Parameters
        ----------
        position : jnp.ndarray
            Initial position [x, y, z] in meters
        velocity : jnp.ndarray
            Initial velocity [vx, vy, vz] in m/s
        fixed_dt : float, optional
            Physics step in seconds, by default PHYSICS_DT
        max_frame_delta : float, optional
            Per-call ceiling on consumed frame time, by default MAX_FRAME_DELTA
        """
        self.fixed_dt = fixed_dt
        self.max_frame_delta = max_frame_delta
        self.residual = 0.0
        self.prev_position = position
        self.current_position = position
        self.prev_velocity = velocity
        self.current_velocity = velocity

    @property
    def max_steps(self) -> int:
        """Upper bound on the steps a single update can execute."""
        return int(self.max_frame_delta / self.fixed_dt) + 1


def create_accumulator(position: Optional[jnp.ndarray] = None,
                       velocity: Optional[jnp.ndarray] = None,
                       fixed_dt: float = PHYSICS_DT) -> PhysicsAccumulator:
    """
    Create an accumulator, defaulting to the origin at rest.
    """
    if position is None:
        position = jnp.zeros(3)
    if velocity is None:
        velocity = jnp.zeros(3)
    return PhysicsAccumulator(jnp.asarray(position, dtype=float),
                              jnp.asarray(velocity, dtype=float), fixed_dt)


def reset_accumulator(accumulator: PhysicsAccumulator, position: jnp.ndarray,
                      velocity: jnp.ndarray) -> None:
    """Zero the residual and collapse both snapshots onto a new state."""
    position = jnp.asarray(position, dtype=float)
    velocity = jnp.asarray(velocity, dtype=float)
    accumulator.residual = 0.0
    accumulator.prev_position = position
    accumulator.current_position = position
    accumulator.prev_velocity = velocity
    accumulator.current_velocity = velocity


def sync_accumulator(accumulator: PhysicsAccumulator, position: jnp.ndarray,
                     velocity: jnp.ndarray) -> bool:
    """
    Resume from a state the host may have moved since the last update.

    If the state differs from the current snapshot, both snapshots are
    collapsed onto it so interpolation never blends across the jump. The
    residual is kept.

    Returns
    -------
    bool
        True if the snapshots were replaced
    """
    position = jnp.asarray(position, dtype=float)
    velocity = jnp.asarray(velocity, dtype=float)
    if (jnp.array_equal(position, accumulator.current_position)
            and jnp.array_equal(velocity, accumulator.current_velocity)):
        return False
    accumulator.prev_position = position
    accumulator.current_position = position
    accumulator.prev_velocity = velocity
    accumulator.current_velocity = velocity
    return True


def update_physics(accumulator: PhysicsAccumulator, frame_delta: float,
                   step_fn: StepFn) -> int:
    """
    Consume a frame's worth of time in fixed physics steps.

    Parameters
    ----------
    accumulator : PhysicsAccumulator
        Accumulator to advance in place
    frame_delta : float
        Raw time since the previous frame in seconds
    step_fn : StepFn
        Advances (position, velocity) by exactly one fixed step

    Returns
    -------
    int
        Number of discrete steps executed, possibly zero
    """
    clamped_delta = min(frame_delta, accumulator.max_frame_delta)
    if clamped_delta < frame_delta:
        logger.debug("Frame delta %.3fs clamped to %.3fs", frame_delta, clamped_delta)

    accumulator.residual += clamped_delta
    dt = accumulator.fixed_dt

    steps = 0
    while accumulator.residual >= dt:
        accumulator.prev_position = accumulator.current_position
        accumulator.prev_velocity = accumulator.current_velocity

        position, velocity = step_fn(accumulator.current_position,
                                     accumulator.current_velocity, dt)
        accumulator.current_position = position
        accumulator.current_velocity = velocity

        accumulator.residual -= dt
        steps += 1

    return steps


def interpolation_alpha(accumulator: PhysicsAccumulator) -> float:
    """Fraction of a step carried in the residual, in [0, 1)."""
    return accumulator.residual / accumulator.fixed_dt


def lerp(a: jnp.ndarray, b: jnp.ndarray, t: float) -> jnp.ndarray:
    return a + (b - a) * t


def get_interpolated_position(accumulator: PhysicsAccumulator) -> jnp.ndarray:
    """
    Position blended between the previous and current steps for rendering.
    """
    return lerp(accumulator.prev_position, accumulator.current_position,
                interpolation_alpha(accumulator))


def get_interpolated_velocity(accumulator: PhysicsAccumulator) -> jnp.ndarray:
    """
    Velocity blended between the previous and current steps for HUD display.
    """
    return lerp(accumulator.prev_velocity, accumulator.current_velocity,
                interpolation_alpha(accumulator))


def velocity_magnitude(v: jnp.ndarray) -> jnp.ndarray:
    return jnp.linalg.norm(v)


def normalize(v: jnp.ndarray, epsilon: float = NORMALIZE_EPSILON) -> jnp.ndarray:
    """
    Unit vector along v, or the zero vector when |v| is below epsilon.

    Parameters
    ----------
    v : jnp.ndarray
        Vector to normalize
    epsilon : float, optional
        Magnitude below which the result is zero, by default NORMALIZE_EPSILON

    Returns
    -------
    jnp.ndarray
        Normalized vector, never NaN
    """
    magnitude = jnp.linalg.norm(v)
    is_valid = magnitude > epsilon
    safe_magnitude = jnp.where(is_valid, magnitude, 1.0)
    return jnp.where(is_valid, v / safe_magnitude, jnp.zeros_like(v))
