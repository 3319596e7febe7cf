"""
Skydiver force model with JAX-accelerated fixed-step integration.

Each phase of a jump owns a force law (a `ForceModel` variant). A physics
step looks up the variant for the current phase, sums gravity, drag,
thrust and canopy lift, and advances the state with semi-implicit Euler.
"""
from enum import Enum
from functools import partial
from typing import Dict, NamedTuple, Tuple

import jax
import jax.numpy as jnp
from jax import lax

from .atmosphere import (
    DRAG_ARCH, DRAG_BELLY, DRAG_DIVE, DRAG_PARACHUTE, DRAG_TRACK, GRAVITY,
    JUMP_ALTITUDE, MASS_SKYDIVER, MASS_WITH_CANOPY, PARACHUTE_BRAKE_DESCENT,
    PARACHUTE_FORWARD_SPEED, PARACHUTE_GLIDE_DESCENT, DragConfiguration,
    air_density, clamped_deployment_factor, lerp_drag_k,
)
from .integration import PHYSICS_DT, normalize


# Control forces
FREEFALL_ROTATION_TORQUE = 50.0   # N*m
TRACK_THRUST = 400.0              # N
CANOPY_TURN_RATE = 0.8            # rad/s per unit input
FLARE_LIFT_FORCE = 800.0          # N at FLARE_REFERENCE_SPEED

# Canopy control law
LIFT_ENGAGE_DEPLOYMENT = 0.3
STEERING_ENGAGE_DEPLOYMENT = 0.5
VERTICAL_CONTROL_GAIN = 100.0     # N per m/s of descent-rate error
FORWARD_CONTROL_GAIN = 30.0       # N per m/s of forward-speed error
FLARE_REFERENCE_SPEED = 15.0
FLARE_MIN_HORIZONTAL_SPEED = 5.0
HEADING_MIN_HORIZONTAL_SPEED = 0.5
BRAKE_FORWARD_SCALE = 0.3
DIVE_FORWARD_SCALE = 1.2
DIVE_DESCENT_SCALE = 1.3

# Yaw dynamics in freefall
YAW_INERTIA = 10.0                # kg*m^2
ANGULAR_DAMPING = 1.0             # 1/s

# Drag is zero below this speed
DRAG_MIN_SPEED = 0.01

# Landing thresholds on |vertical speed|, m/s
LANDING_PERFECT_THRESHOLD = 3.0
LANDING_GOOD_THRESHOLD = 5.0
LANDING_HARD_THRESHOLD = 8.0

# World axes, y-up
UP = jnp.array([0.0, 1.0, 0.0])
FORWARD = jnp.array([0.0, 0.0, -1.0])


class Phase(Enum):
    READY = "READY"
    FREEFALL = "FREEFALL"
    CANOPY = "CANOPY"
    LANDED = "LANDED"


class LandingQuality(Enum):
    PERFECT = "perfect"
    GOOD = "good"
    HARD = "hard"
    CRASH = "crash"


class Controls(NamedTuple):
    """
    Snapshot of the player's inputs for one frame.

    `arch` doubles as the brake/flare input under canopy.
    """
    dive: bool = False
    arch: bool = False
    left: bool = False
    right: bool = False
    track: bool = False
    deploy: bool = False


class PhysicsState(NamedTuple):
    """
    Rigid-body state of the skydiver.

    Attributes
    ----------
    position : jnp.ndarray
        [x, y, z] in meters, y is altitude
    velocity : jnp.ndarray
        [vx, vy, vz] in m/s
    rotation : jnp.ndarray
        Unit quaternion [x, y, z, w]
    angular_velocity : jnp.ndarray
        [wx, wy, wz] in rad/s
    """
    position: jnp.ndarray
    velocity: jnp.ndarray
    rotation: jnp.ndarray
    angular_velocity: jnp.ndarray


class Forces(NamedTuple):
    total: jnp.ndarray
    drag: jnp.ndarray
    gravity: jnp.ndarray
    thrust: jnp.ndarray
    lift: jnp.ndarray


class StepResult(NamedTuple):
    position: jnp.ndarray
    velocity: jnp.ndarray
    acceleration: jnp.ndarray
    g_force: jnp.ndarray


def init_state(altitude: float = JUMP_ALTITUDE) -> PhysicsState:
    """
    Initialize the skydiver at rest above the origin.

    Parameters
    ----------
    altitude : float, optional
        Starting height in meters, by default JUMP_ALTITUDE

    Returns
    -------
    PhysicsState
        State with identity orientation and no motion
    """
    return PhysicsState(
        position=jnp.array([0.0, altitude, 0.0]),
        velocity=jnp.zeros(3),
        rotation=jnp.array([0.0, 0.0, 0.0, 1.0]),
        angular_velocity=jnp.zeros(3),
    )


# Highest priority first; belly is the fallback
DRAG_PRECEDENCE: Tuple[Tuple[str, DragConfiguration], ...] = (
    ("dive", DRAG_DIVE),
    ("arch", DRAG_ARCH),
    ("track", DRAG_TRACK),
)


def drag_config_for_controls(controls: Controls) -> DragConfiguration:
    """Freefall drag configuration selected by the held inputs."""
    for flag, config in DRAG_PRECEDENCE:
        if getattr(controls, flag):
            return config
    return DRAG_BELLY


def select_drag_k(controls: Controls) -> jnp.ndarray:
    """
    Traceable form of `drag_config_for_controls`, returning only k.
    """
    k = jnp.asarray(DRAG_BELLY.k)
    # Apply lowest priority first so higher entries overwrite it
    for flag, config in reversed(DRAG_PRECEDENCE):
        k = jnp.where(getattr(controls, flag), config.k, k)
    return k


def drag_vector(velocity: jnp.ndarray, k: float, altitude: float) -> jnp.ndarray:
    """
    Drag force opposing the velocity.

    Parameters
    ----------
    velocity : jnp.ndarray
        Velocity [vx, vy, vz] in m/s
    k : float
        Drag factor 0.5 * Cd * A
    altitude : float
        Height in meters, clamped to >= 0

    Returns
    -------
    jnp.ndarray
        Force in newtons with magnitude rho * v^2 * k
    """
    speed = jnp.linalg.norm(velocity)
    magnitude = air_density(altitude) * speed * speed * k
    drag = -normalize(velocity) * magnitude
    return jnp.where(speed > DRAG_MIN_SPEED, drag, jnp.zeros(3))


def horizontal_components(velocity: jnp.ndarray) -> Tuple[jnp.ndarray, jnp.ndarray]:
    """Horizontal part of a velocity and its magnitude."""
    horizontal = velocity.at[1].set(0.0)
    return horizontal, jnp.linalg.norm(horizontal)


def canopy_lift(velocity: jnp.ndarray, controls: Controls, deployment: float) -> jnp.ndarray:
    """
    Lift and drive from a ram-air canopy.

    A proportional law pulls the descent rate and forward speed toward
    targets set by the brake and dive inputs. Braking above
    FLARE_MIN_HORIZONTAL_SPEED adds flare lift that grows with horizontal
    speed. Nothing is applied until the deployment factor exceeds
    LIFT_ENGAGE_DEPLOYMENT.

    Parameters
    ----------
    velocity : jnp.ndarray
        Velocity [vx, vy, vz] in m/s
    controls : Controls
        Current inputs; brake takes precedence over dive
    deployment : float
        Canopy deployment factor in [0, 1]

    Returns
    -------
    jnp.ndarray
        Force in newtons
    """
    brake = jnp.asarray(controls.arch)
    dive = jnp.asarray(controls.dive)

    target_descent = jnp.where(
        brake, PARACHUTE_BRAKE_DESCENT,
        jnp.where(dive, PARACHUTE_GLIDE_DESCENT * DIVE_DESCENT_SCALE,
                  (PARACHUTE_GLIDE_DESCENT + PARACHUTE_BRAKE_DESCENT) / 2.0))
    target_forward = jnp.where(
        brake, PARACHUTE_FORWARD_SPEED * BRAKE_FORWARD_SCALE,
        jnp.where(dive, PARACHUTE_FORWARD_SPEED * DIVE_FORWARD_SCALE,
                  PARACHUTE_FORWARD_SPEED))

    horizontal, horizontal_speed = horizontal_components(velocity)

    # Flare trades forward momentum for lift
    flare = jnp.where(
        jnp.logical_and(brake, horizontal_speed > FLARE_MIN_HORIZONTAL_SPEED),
        FLARE_LIFT_FORCE * deployment * (horizontal_speed / FLARE_REFERENCE_SPEED),
        0.0)

    # Error is measured along the descent direction, so it acts downward
    descent_rate = -velocity[1]
    descent_force = (target_descent - descent_rate) * VERTICAL_CONTROL_GAIN * deployment

    has_heading = horizontal_speed > HEADING_MIN_HORIZONTAL_SPEED
    safe_speed = jnp.where(has_heading, horizontal_speed, 1.0)
    heading = jnp.where(has_heading, horizontal / safe_speed, FORWARD)
    drive = (target_forward - horizontal_speed) * FORWARD_CONTROL_GAIN * deployment

    lift = heading * drive + UP * (flare - descent_force)
    return jnp.where(deployment > LIFT_ENGAGE_DEPLOYMENT, lift, jnp.zeros(3))


class ForceModel:
    """
    Force law for one phase of the jump.
    """
    mass = MASS_SKYDIVER

    def gravity(self) -> jnp.ndarray:
        return -UP * self.mass * GRAVITY

    def forces(self, position: jnp.ndarray, velocity: jnp.ndarray,
               controls: Controls, deployment: float) -> Forces:
        raise NotImplementedError


class HeldForces(ForceModel):
    """
    Body supported by the aircraft or the ground; net force is zero.
    """
    def forces(self, position, velocity, controls, deployment):
        gravity = self.gravity()
        zero = jnp.zeros(3)
        return Forces(total=zero, drag=zero, gravity=gravity, thrust=zero, lift=-gravity)


class FreefallForces(ForceModel):
    """
    Body-position drag plus optional tracking thrust.
    """
    def forces(self, position, velocity, controls, deployment):
        altitude = jnp.maximum(position[1], 0.0)
        gravity = self.gravity()
        drag = drag_vector(velocity, select_drag_k(controls), altitude)
        thrust = FORWARD * jnp.where(controls.track, TRACK_THRUST, 0.0)
        lift = jnp.zeros(3)
        return Forces(total=gravity + drag + thrust, drag=drag, gravity=gravity,
                      thrust=thrust, lift=lift)


class CanopyForces(ForceModel):
    """
    Opening canopy: drag blends from belly to full canopy with deployment.
    """
    mass = MASS_WITH_CANOPY

    def forces(self, position, velocity, controls, deployment):
        altitude = jnp.maximum(position[1], 0.0)
        gravity = self.gravity()
        k = lerp_drag_k(DRAG_BELLY, DRAG_PARACHUTE, deployment)
        drag = drag_vector(velocity, k, altitude)
        thrust = jnp.zeros(3)
        lift = canopy_lift(velocity, controls, deployment)
        return Forces(total=gravity + drag + thrust + lift, drag=drag, gravity=gravity,
                      thrust=thrust, lift=lift)


FORCE_MODELS: Dict[Phase, ForceModel] = {
    Phase.READY: HeldForces(),
    Phase.FREEFALL: FreefallForces(),
    Phase.CANOPY: CanopyForces(),
    Phase.LANDED: HeldForces(),
}


def mass_for_phase(phase: Phase) -> float:
    return FORCE_MODELS[phase].mass


def calculate_forces(position: jnp.ndarray, velocity: jnp.ndarray, controls: Controls,
                     phase: Phase, deployment: float = 1.0) -> Forces:
    """
    Forces acting on the skydiver in the given phase.

    Parameters
    ----------
    position : jnp.ndarray
        Position [x, y, z] in meters
    velocity : jnp.ndarray
        Velocity [vx, vy, vz] in m/s
    controls : Controls
        Current inputs
    phase : Phase
        Selects the force law
    deployment : float, optional
        Canopy deployment factor, by default 1.0

    Returns
    -------
    Forces
        Total force and its components in newtons
    """
    return FORCE_MODELS[phase].forces(position, velocity, controls, deployment)


def g_force(forces: Forces, mass: float) -> jnp.ndarray:
    """Felt load: drag plus upward lift over weight."""
    felt = jnp.linalg.norm(forces.drag) + jnp.maximum(0.0, forces.lift[1])
    return felt / (mass * GRAVITY)


def semi_implicit_euler(position: jnp.ndarray, velocity: jnp.ndarray,
                        acceleration: jnp.ndarray, dt: float) -> Tuple[jnp.ndarray, jnp.ndarray]:
    """Update velocity first, then position from the new velocity."""
    new_velocity = velocity + acceleration * dt
    new_position = position + new_velocity * dt
    return new_position, new_velocity


@partial(jax.jit, static_argnames=("phase",))
def physics_step(position: jnp.ndarray, velocity: jnp.ndarray, controls: Controls,
                 phase: Phase, deployment: float, dt: float = PHYSICS_DT) -> StepResult:
    """
    Advance the skydiver by one fixed step.

    Parameters
    ----------
    position : jnp.ndarray
        Position [x, y, z] in meters
    velocity : jnp.ndarray
        Velocity [vx, vy, vz] in m/s
    controls : Controls
        Inputs held during this step
    phase : Phase
        Current phase, static under jit
    deployment : float
        Canopy deployment factor in [0, 1]
    dt : float, optional
        Step size in seconds, by default PHYSICS_DT

    Returns
    -------
    StepResult
        New position and velocity, the acceleration applied and the G-force
    """
    model = FORCE_MODELS[phase]
    forces = model.forces(position, velocity, controls, deployment)
    acceleration = forces.total / model.mass
    new_position, new_velocity = semi_implicit_euler(position, velocity, acceleration, dt)
    return StepResult(new_position, new_velocity, acceleration, g_force(forces, model.mass))


@partial(jax.jit, static_argnames=("phase", "n_steps"))
def simulate(position: jnp.ndarray, velocity: jnp.ndarray, controls: Controls,
             phase: Phase, n_steps: int, deployment_time: float = 0.0,
             dt: float = PHYSICS_DT) -> StepResult:
    """
    Roll out a fixed number of steps with constant inputs.

    Deployment time advances by dt per step, so a canopy rollout started at
    deployment_time=0.0 sees the full opening sequence.

    Parameters
    ----------
    position : jnp.ndarray
        Initial position [x, y, z] in meters
    velocity : jnp.ndarray
        Initial velocity [vx, vy, vz] in m/s
    controls : Controls
        Inputs held for the whole rollout
    phase : Phase
        Phase for the whole rollout
    n_steps : int
        Number of fixed steps
    deployment_time : float, optional
        Seconds since canopy entry at the first step, by default 0.0
    dt : float, optional
        Step size in seconds, by default PHYSICS_DT

    Returns
    -------
    StepResult
        Per-step results stacked along a leading axis of length n_steps
    """
    position = jnp.asarray(position, dtype=float)
    velocity = jnp.asarray(velocity, dtype=float)

    def body(carry, i):
        pos, vel = carry
        deployment = clamped_deployment_factor(deployment_time + i * dt)
        result = physics_step(pos, vel, controls, phase, deployment, dt)
        return (result.position, result.velocity), result

    _, results = lax.scan(body, (position, velocity), jnp.arange(n_steps))
    return results


def turn_input(controls: Controls) -> jnp.ndarray:
    """Signed steering input: left is +1, right is -1, both cancel."""
    return (jnp.asarray(controls.left, dtype=float)
            - jnp.asarray(controls.right, dtype=float))


def calculate_turn_rate(controls: Controls, deployment: float) -> jnp.ndarray:
    """
    Canopy yaw rate in rad/s; zero until the canopy is half open.
    """
    rate = CANOPY_TURN_RATE * deployment * turn_input(controls)
    return jnp.where(deployment < STEERING_ENGAGE_DEPLOYMENT, 0.0, rate)


def calculate_freefall_torque(controls: Controls) -> jnp.ndarray:
    """Yaw torque from the steering inputs in freefall, N*m."""
    return UP * FREEFALL_ROTATION_TORQUE * turn_input(controls)


@partial(jax.jit, static_argnames=("phase",))
def update_angular_velocity(angular_velocity: jnp.ndarray, controls: Controls,
                            phase: Phase, deployment: float, dt: float) -> jnp.ndarray:
    """
    Angular velocity after one step of yaw dynamics.

    Freefall integrates steering torque against a damped yaw inertia. Under
    canopy the yaw rate follows the turn rate directly. A held body does
    not rotate.
    """
    if phase is Phase.FREEFALL:
        alpha = calculate_freefall_torque(controls) / YAW_INERTIA
        return (angular_velocity + alpha * dt) / (1.0 + ANGULAR_DAMPING * dt)
    if phase is Phase.CANOPY:
        return UP * calculate_turn_rate(controls, deployment)
    return jnp.zeros(3)


def quaternion_multiply(a: jnp.ndarray, b: jnp.ndarray) -> jnp.ndarray:
    """Hamilton product of [x, y, z, w] quaternions."""
    ax, ay, az, aw = a
    bx, by, bz, bw = b
    return jnp.array([
        aw * bx + ax * bw + ay * bz - az * by,
        aw * by - ax * bz + ay * bw + az * bx,
        aw * bz + ax * by - ay * bx + az * bw,
        aw * bw - ax * bx - ay * by - az * bz,
    ])


@jax.jit
def integrate_yaw(rotation: jnp.ndarray, yaw_rate: float, dt: float) -> jnp.ndarray:
    """
    Rotate an orientation about the world vertical axis.

    Parameters
    ----------
    rotation : jnp.ndarray
        Unit quaternion [x, y, z, w]
    yaw_rate : float
        Rate about +y in rad/s, positive turns left
    dt : float
        Time step in seconds

    Returns
    -------
    jnp.ndarray
        Renormalized quaternion
    """
    half_angle = 0.5 * yaw_rate * dt
    delta = jnp.array([0.0, jnp.sin(half_angle), 0.0, jnp.cos(half_angle)])
    rotated = quaternion_multiply(delta, rotation)
    return rotated / jnp.linalg.norm(rotated)


@jax.jit
def rotate_heading(velocity: jnp.ndarray, angle: float) -> jnp.ndarray:
    """Turn a velocity about +y by angle radians; vertical speed is kept."""
    c, s = jnp.cos(angle), jnp.sin(angle)
    vx, vy, vz = velocity
    return jnp.array([c * vx + s * vz, vy, -s * vx + c * vz])


def classify_landing(vertical_speed: float) -> LandingQuality:
    """
    Landing quality from the vertical speed at ground contact.

    Parameters
    ----------
    vertical_speed : float
        Vertical speed in m/s; the sign is ignored

    Returns
    -------
    LandingQuality
        Each threshold belongs to the more severe bucket
    """
    speed = abs(float(vertical_speed))
    if speed < LANDING_PERFECT_THRESHOLD:
        return LandingQuality.PERFECT
    if speed < LANDING_GOOD_THRESHOLD:
        return LandingQuality.GOOD
    if speed < LANDING_HARD_THRESHOLD:
        return LandingQuality.HARD
    return LandingQuality.CRASH
