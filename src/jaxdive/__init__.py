"""
JAXdive - A skydiving simulator with a JAX physics core.

Importing the package enables JAX 64-bit mode process-wide.
"""
import jax

# Trajectories must be reproducible bit-for-bit and match closed forms
jax.config.update("jax_enable_x64", True)

from .atmosphere import (
    DragConfiguration, DRAG_BELLY, DRAG_DIVE, DRAG_ARCH, DRAG_TRACK, DRAG_PARACHUTE,
    air_density, terminal_velocity, drag_force_magnitude, deployment_factor,
    clamped_deployment_factor,
)
from .integration import (
    PhysicsAccumulator, create_accumulator, sync_accumulator, update_physics,
    get_interpolated_position, get_interpolated_velocity,
)
from .physics import (
    Phase, Controls, PhysicsState, LandingQuality, init_state, calculate_forces,
    physics_step, simulate, calculate_turn_rate, calculate_freefall_torque,
    classify_landing,
)
from .session import JumpSession, FrameOutput, TelemetryRecorder
from .main import Simulator, SimulatorConfig, run_simulation, run_headless

__all__ = [
    "DragConfiguration", "DRAG_BELLY", "DRAG_DIVE", "DRAG_ARCH", "DRAG_TRACK",
    "DRAG_PARACHUTE", "air_density", "terminal_velocity", "drag_force_magnitude",
    "deployment_factor", "clamped_deployment_factor",
    "PhysicsAccumulator", "create_accumulator", "sync_accumulator", "update_physics",
    "get_interpolated_position", "get_interpolated_velocity",
    "Phase", "Controls", "PhysicsState", "LandingQuality", "init_state",
    "calculate_forces", "physics_step", "simulate", "calculate_turn_rate",
    "calculate_freefall_torque", "classify_landing",
    "JumpSession", "FrameOutput", "TelemetryRecorder",
    "Simulator", "SimulatorConfig", "run_simulation", "run_headless",
]
