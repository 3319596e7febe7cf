"""
Logging for the simulator.

Jump events (exit, opening, landing) go to the 'jaxdive' logger. JAX's own
compilation chatter is held at WARNING unless the simulator itself is
being debugged, so retracing a jitted step does not flood the console
while falling.
"""
import logging
from typing import Optional, Union


PACKAGE_LOGGER = "jaxdive"
LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"

# Loggers of the numerical stack that are noisy below WARNING
THIRD_PARTY_LOGGERS = ("jax", "jax._src")


def resolve_level(level: Union[int, str]) -> int:
    """
    Turn a level given on the command line or in a config into a number.

    Parameters
    ----------
    level : int or str
        A logging constant or a level name in any case ("debug", "INFO")

    Returns
    -------
    int
        Numeric logging level

    Raises
    ------
    ValueError
        If the name is not a standard level
    """
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return value


def setup_logging(level: Union[int, str] = logging.INFO,
                  log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the simulator's logger.

    Messages go to stderr, alongside the headless progress bar. Calling
    again replaces the previous handlers.

    Parameters
    ----------
    level : int or str, optional
        Logging level or its name, by default logging.INFO
    log_file : str, optional
        Also write a jump log to this path, by default None

    Returns
    -------
    logging.Logger
        The configured package logger
    """
    level = resolve_level(level)
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    jax_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    for name in THIRD_PARTY_LOGGERS:
        logging.getLogger(name).setLevel(jax_level)

    logger.debug("Logging at %s%s", logging.getLevelName(level),
                 f" to {log_file}" if log_file else "")
    return logger
