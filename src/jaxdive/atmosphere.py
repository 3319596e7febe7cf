"""
Atmosphere and drag model for the skydiver physics core.

All values are SI units (meters, seconds, kilograms). Drag uses the
convenience factor k = 0.5 * Cd * A so that F = rho * v^2 * k and the
terminal velocity is v_t = sqrt(m * g / (rho * k)).
"""
from typing import NamedTuple

import jax
import jax.numpy as jnp


# Fundamental constants
GRAVITY = 9.80665          # m/s^2
RHO_SEA_LEVEL = 1.225      # kg/m^3, ISA
SCALE_HEIGHT = 8500.0      # m, exponential density model

# Skydiver
MASS_SKYDIVER = 80.0       # kg including equipment
MASS_WITH_CANOPY = 90.0    # kg, includes added aerodynamic mass

# Canopy flight targets
PARACHUTE_FORWARD_SPEED = 12.0   # m/s at full glide
PARACHUTE_BRAKE_DESCENT = 6.0    # m/s under full brakes
PARACHUTE_GLIDE_DESCENT = 4.0    # m/s at full glide

# Deployment sigmoid
DEPLOYMENT_DURATION = 4.0
DEPLOYMENT_SIGMOID_CENTER = 2.0
DEPLOYMENT_SIGMOID_STEEPNESS = 3.0

# Lowest recommended opening altitude, ~2500 ft
MIN_DEPLOYMENT_ALTITUDE = 760.0

# Jump
JUMP_ALTITUDE = 3048.0     # 10,000 ft


class DragConfiguration(NamedTuple):
    """
    Aerodynamic configuration for one body position or the canopy.

    Attributes
    ----------
    name : str
        Descriptive name
    cd : float
        Drag coefficient (dimensionless)
    area : float
        Cross-sectional area in m^2
    k : float
        Convenience factor 0.5 * cd * area in m^2
    terminal_velocity_sea_level : float
        Expected sea-level terminal velocity in m/s, for validation only
    """
    name: str
    cd: float
    area: float
    k: float
    terminal_velocity_sea_level: float


def make_drag_configuration(name: str, cd: float, area: float,
                            terminal_velocity_sea_level: float) -> DragConfiguration:
    """Build a configuration with k derived from Cd and A."""
    return DragConfiguration(name, cd, area, 0.5 * cd * area, terminal_velocity_sea_level)


# Belly-to-earth box position, ~120 mph
DRAG_BELLY = make_drag_configuration("belly", 1.0, 0.95, 53.0)
# Head-down, ~180 mph
DRAG_DIVE = make_drag_configuration("dive", 0.5, 0.35, 85.0)
# Spread out for maximum drag
DRAG_ARCH = make_drag_configuration("arch", 1.3, 1.1, 42.0)
# Forward-moving with moderate drag
DRAG_TRACK = make_drag_configuration("track", 0.8, 0.6, 65.0)
# Ram-air main, ~170 sq ft (25 m^2 projected)
DRAG_PARACHUTE = make_drag_configuration("parachute", 0.8, 25.0, 5.0)

DRAG_CONFIGURATIONS = (DRAG_BELLY, DRAG_DIVE, DRAG_ARCH, DRAG_TRACK, DRAG_PARACHUTE)


@jax.jit
def air_density(altitude: float) -> jnp.ndarray:
    """
    Air density from the exponential atmosphere.

    Parameters
    ----------
    altitude : float
        Height above sea level in meters, already clamped to >= 0

    Returns
    -------
    jnp.ndarray
        Density in kg/m^3
    """
    return RHO_SEA_LEVEL * jnp.exp(-altitude / SCALE_HEIGHT)


def terminal_velocity(config: DragConfiguration, altitude: float = 0.0,
                      mass: float = MASS_SKYDIVER) -> jnp.ndarray:
    """
    Terminal velocity for a configuration at a given altitude.

    Parameters
    ----------
    config : DragConfiguration
        Drag configuration
    altitude : float, optional
        Height above sea level in meters, by default 0.0
    mass : float, optional
        Body mass in kg, by default MASS_SKYDIVER

    Returns
    -------
    jnp.ndarray
        Speed in m/s where drag balances gravity
    """
    rho = air_density(altitude)
    return jnp.sqrt(mass * GRAVITY / (rho * config.k))


def drag_force_magnitude(speed: float, config: DragConfiguration,
                         altitude: float = 0.0) -> jnp.ndarray:
    """Drag magnitude rho * v^2 * k in newtons."""
    return air_density(altitude) * speed * speed * config.k


def time_to_terminal_velocity(config: DragConfiguration, altitude: float = 0.0,
                              mass: float = MASS_SKYDIVER) -> jnp.ndarray:
    """
    Approximate time to reach ~90% of terminal velocity from rest.

    Parameters
    ----------
    config : DragConfiguration
        Drag configuration
    altitude : float, optional
        Height above sea level in meters, by default 0.0
    mass : float, optional
        Body mass in kg, by default MASS_SKYDIVER

    Returns
    -------
    jnp.ndarray
        Time in seconds
    """
    return terminal_velocity(config, altitude, mass) / GRAVITY * 2.3


def lerp_drag_k(start: DragConfiguration, end: DragConfiguration,
                factor: float) -> jnp.ndarray:
    """Interpolate k between two configurations."""
    return start.k + (end.k - start.k) * factor


@jax.jit
def deployment_factor(t: float) -> jnp.ndarray:
    """
    Canopy opening fraction as a logistic curve of time since deployment.

    The curve never reaches 1; use `clamped_deployment_factor` wherever a
    threshold on the factor must eventually be met.

    Parameters
    ----------
    t : float
        Seconds since canopy entry

    Returns
    -------
    jnp.ndarray
        Factor in (0, 1), exactly 0.5 at DEPLOYMENT_SIGMOID_CENTER
    """
    return jax.nn.sigmoid(DEPLOYMENT_SIGMOID_STEEPNESS * (t - DEPLOYMENT_SIGMOID_CENTER))


@jax.jit
def clamped_deployment_factor(t: float) -> jnp.ndarray:
    """Deployment factor in [0, 1], pinned to 1 once DEPLOYMENT_DURATION has elapsed."""
    factor = jnp.clip(deployment_factor(t), 0.0, 1.0)
    return jnp.where(t >= DEPLOYMENT_DURATION, 1.0, factor)
