import argparse
import logging
import time
from typing import List, Mapping, Optional

import pygame
from tqdm import tqdm

from .atmosphere import JUMP_ALTITUDE, MIN_DEPLOYMENT_ALTITUDE
from .integration import MAX_FRAME_DELTA
from .logging_config import resolve_level, setup_logging
from .physics import Controls, Phase
from .session import ACTIVE_PHASES, DEPLOY_CEILING_ALTITUDE, FrameOutput, JumpSession


logger = logging.getLogger(__name__)


class SimulatorConfig:
    def __init__(self) -> None:
        self.width = 800
        self.height = 600
        self.target_fps = 60
        self.vsync = True
        self.show_hud = True

        self.start_altitude = JUMP_ALTITUDE
        self.deploy_ceiling = DEPLOY_CEILING_ALTITUDE
        self.target = (0.0, 0.0)
        # Flat ground; contact below this height ends the jump
        self.ground_contact_altitude = 2.0

        self.telemetry_enabled = True
        self.telemetry_path: Optional[str] = None

        self.headless_frame_rate = 60
        self.headless_max_duration = 600.0
        self.show_progress = True
        self.autopilot_deploy_altitude = 850.0
        self.autopilot_flare_altitude = 10.0

        self.log_level = logging.INFO
        self.log_file: Optional[str] = None


def build_parser(description: str) -> argparse.ArgumentParser:
    """Command line options shared by the interactive and headless entry points."""
    parser = argparse.ArgumentParser(description=description)

    parser.add_argument(
        '--altitude',
        type=float,
        default=JUMP_ALTITUDE,
        help='Exit altitude in meters'
    )

    parser.add_argument(
        '--target',
        type=float,
        nargs=2,
        metavar=('X', 'Z'),
        default=(0.0, 0.0),
        help='Landing target on the ground plane'
    )

    parser.add_argument(
        '--telemetry',
        type=str,
        default=None,
        help='Write jump telemetry CSV to this path'
    )

    parser.add_argument(
        '--frame-rate',
        type=int,
        default=None,
        help='Frames per second (window refresh, or simulated rate when headless)'
    )

    parser.add_argument(
        '--no-progress',
        action='store_true',
        help='Hide the headless progress bar'
    )

    parser.add_argument(
        '--log-level',
        type=str,
        choices=['debug', 'info', 'warning', 'error'],
        default='info',
        help='Logging verbosity'
    )

    parser.add_argument(
        '--log-file',
        type=str,
        default=None,
        help='Also write the log to this file'
    )

    return parser


def config_from_args(args: argparse.Namespace) -> SimulatorConfig:
    """
    Build a simulator configuration from parsed command line options.
    """
    config = SimulatorConfig()
    config.start_altitude = args.altitude
    config.target = tuple(args.target)
    if args.telemetry:
        config.telemetry_path = args.telemetry
    if args.frame_rate:
        config.target_fps = args.frame_rate
        config.headless_frame_rate = args.frame_rate
    config.show_progress = not args.no_progress
    config.log_level = resolve_level(args.log_level)
    config.log_file = args.log_file
    return config


KEY_BINDINGS = {
    "dive": (pygame.K_w, pygame.K_UP),
    "arch": (pygame.K_s, pygame.K_DOWN),
    "left": (pygame.K_a, pygame.K_LEFT),
    "right": (pygame.K_d, pygame.K_RIGHT),
    "track": (pygame.K_LSHIFT, pygame.K_RSHIFT),
    "deploy": (pygame.K_SPACE,),
}


def controls_from_keys(pressed: Mapping[int, bool]) -> Controls:
    """
    Map the keyboard state to a controls snapshot.

    Parameters
    ----------
    pressed : Mapping[int, bool]
        Key state indexed by pygame key constant, as from pygame.key.get_pressed()

    Returns
    -------
    Controls
        Inputs for this frame
    """
    return Controls(**{
        name: any(bool(pressed[key]) for key in keys)
        for name, keys in KEY_BINDINGS.items()
    })


def autopilot_controls(session: JumpSession, config: SimulatorConfig) -> Controls:
    """
    Scripted inputs for an unattended jump: exit, belly fly, open, flare.
    """
    if session.phase is Phase.READY:
        return Controls(deploy=True)
    if session.phase is Phase.FREEFALL:
        return Controls(deploy=session.altitude < config.autopilot_deploy_altitude)
    if session.phase is Phase.CANOPY:
        return Controls(arch=session.altitude < config.autopilot_flare_altitude)
    return Controls()


def hud_lines(session: JumpSession, output: Optional[FrameOutput]) -> List[str]:
    """
    Text shown on the heads-up display.
    """
    lines = [f"Phase: {session.phase.value}"]
    if output is not None:
        lines.append(f"Altitude: {output.altitude:7.1f} m")
        lines.append(f"Speed: {output.speed:6.1f} m/s")
        lines.append(f"G-Force: {output.mean_g_force:4.2f}")
    lines.append(f"Position: {session.drag_configuration().name}")
    lines.append(f"Terminal: {session.current_terminal_velocity():6.1f} m/s")
    if session.phase is Phase.FREEFALL and session.altitude < MIN_DEPLOYMENT_ALTITUDE:
        lines.append("PULL!")
    if output is not None and session.phase is Phase.CANOPY:
        lines.append(f"Canopy: {output.deployment * 100.0:3.0f}%")
    if session.low_deployment:
        lines.append(f"Low opening: {session.deployment_altitude:.0f} m")
    if session.landing_quality is not None:
        lines.append(f"Landing: {session.landing_quality.value.upper()}")
        lines.append(f"Distance to target: {session.score:.1f} m")
    return lines


def check_ground_contact(session: JumpSession, config: SimulatorConfig) -> bool:
    """Report a landing to the session when the body reaches the ground."""
    if session.phase in ACTIVE_PHASES and session.altitude <= config.ground_contact_altitude:
        session.land()
        return True
    return False


class Simulator:
    """
    Interactive pygame host for a jump session.
    """
    def __init__(self, config: SimulatorConfig = None) -> None:
        """
        Initialize the simulator with given configuration.

        Parameters
        ----------
        config : SimulatorConfig, optional
            Configuration options, by default None (creates default config)
        """
        self.config = config if config is not None else SimulatorConfig()
        self.width = self.config.width
        self.height = self.config.height
        self.running = False
        self.screen = None
        self.clock = None
        self.fonts = {}

        self.session = JumpSession(
            start_altitude=self.config.start_altitude,
            target=self.config.target,
            deploy_ceiling=self.config.deploy_ceiling,
            telemetry_enabled=self.config.telemetry_enabled,
        )
        self.controls = Controls()
        self.last_output: Optional[FrameOutput] = None

    def initialize(self) -> None:
        """
        Set up pygame and initialize the display.
        """
        pygame.init()

        pygame_flags = pygame.DOUBLEBUF
        if self.config.vsync:
            pygame_flags |= pygame.HWSURFACE

        self.screen = pygame.display.set_mode((self.width, self.height), pygame_flags)
        pygame.display.set_caption("JAXdive Skydiving Simulator")
        self.clock = pygame.time.Clock()
        self.running = True

        pygame.font.init()
        self.fonts = {
            "small": pygame.font.Font(None, 16),
            "normal": pygame.font.Font(None, 24),
            "large": pygame.font.Font(None, 32),
        }

        print("\nJAXdive Controls:")
        print("-----------------")
        print("Space: Jump / deploy canopy / restart after landing")
        print("W/Up: Dive (head down) / canopy dive")
        print("S/Down: Arch (brake) / canopy flare")
        print("A/D: Turn left/right")
        print("Shift: Track forward")
        print("R: Reset")
        print("ESC: Quit")

    def handle_input(self) -> None:
        """
        Process window events and poll the keyboard.
        """
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                self.running = False
            elif event.type == pygame.KEYDOWN:
                if event.key == pygame.K_ESCAPE:
                    self.running = False
                elif event.key == pygame.K_r:
                    self.session.reset()

        self.controls = controls_from_keys(pygame.key.get_pressed())

    def update(self, dt: float) -> None:
        """
        Advance the session by one rendered frame.

        Parameters
        ----------
        dt : float
            Time since the previous frame in seconds
        """
        self.last_output = self.session.update(dt, self.controls)
        if check_ground_contact(self.session, self.config):
            if self.config.telemetry_path:
                self.session.telemetry.save_csv(self.config.telemetry_path)

    def render(self) -> None:
        """
        Draw the background and HUD.
        """
        # Sky darkens with altitude
        shade = min(max(self.session.altitude / 5000.0, 0.0), 1.0)
        sky = (int(135 - 90 * shade), int(190 - 110 * shade), int(235 - 60 * shade))
        self.screen.fill(sky)

        if self.config.show_hud:
            self.render_hud()

        pygame.display.flip()

    def render_hud(self) -> None:
        """
        Render flight data in the top-left corner.
        """
        y = 10
        for line in hud_lines(self.session, self.last_output):
            text = self.fonts["normal"].render(line, True, (255, 255, 255))
            self.screen.blit(text, (10, y))
            y += text.get_height() + 4

        if self.session.landing_quality is not None:
            message = self.fonts["large"].render("Press SPACE to jump again", True, (255, 200, 0))
            self.screen.blit(message, (self.width // 2 - message.get_width() // 2,
                                       self.height // 2))

    def main_loop(self) -> None:
        """
        Run the main simulation loop with frame rate independence.
        """
        last_time = time.time()

        while self.running:
            current_time = time.time()
            dt = current_time - last_time
            last_time = current_time

            self.handle_input()
            self.update(dt)
            self.render()

            self.clock.tick(self.config.target_fps)

        pygame.quit()


def run_headless(config: SimulatorConfig = None) -> JumpSession:
    """
    Fly a complete jump on autopilot without opening a window.

    Parameters
    ----------
    config : SimulatorConfig, optional
        Configuration options, by default None (creates default config)

    Returns
    -------
    JumpSession
        The session after landing, or after the time limit if it never landed
    """
    config = config if config is not None else SimulatorConfig()
    session = JumpSession(
        start_altitude=config.start_altitude,
        target=config.target,
        deploy_ceiling=config.deploy_ceiling,
        telemetry_enabled=config.telemetry_enabled,
    )

    frame_dt = min(1.0 / config.headless_frame_rate, MAX_FRAME_DELTA)
    n_frames = int(config.headless_max_duration * config.headless_frame_rate)

    for _ in tqdm(range(n_frames), desc="Simulating jump", disable=not config.show_progress):
        session.update(frame_dt, autopilot_controls(session, config))
        if check_ground_contact(session, config):
            break
    else:
        logger.warning("Jump did not land within %.0f s", config.headless_max_duration)

    if session.landing_quality is not None:
        logger.info("Landing %s after %.1f s, %.1f m from target",
                    session.landing_quality.value, session.jump_time, session.score)
    if config.telemetry_path:
        session.telemetry.save_csv(config.telemetry_path)
    return session


def run_simulation(argv: Optional[List[str]] = None) -> None:
    """
    Entry point to run the simulator.
    """
    parser = build_parser("JAXdive skydiving simulator")
    config = config_from_args(parser.parse_args(argv))
    setup_logging(config.log_level, config.log_file)
    simulator = Simulator(config)
    simulator.initialize()
    simulator.main_loop()


def main_headless(argv: Optional[List[str]] = None) -> JumpSession:
    """
    Entry point for an unattended jump that writes its telemetry.
    """
    parser = build_parser("Fly one JAXdive jump on autopilot")
    parser.set_defaults(telemetry="telemetry.csv")
    config = config_from_args(parser.parse_args(argv))
    setup_logging(config.log_level, config.log_file)
    return run_headless(config)
