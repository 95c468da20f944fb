"""
Logging utilities.

All modules log to children of the ``"probdag"`` logger. Graph assembly is
reported at the info level, node construction details at the debug level.
"""

import logging
from pathlib import Path

DEFAULT_FORMAT = "%(name)s - %(levelname)s - %(message)s"


def setup_logger() -> None:
    """
    Prints probdag log messages of level "info" and above to the terminal.

    Called when the package is imported. To see fewer messages, raise the level
    of the package logger::

        import logging
        logging.getLogger("probdag").setLevel(logging.WARNING)
    """

    logger = logging.getLogger("probdag")
    logger.setLevel(logging.INFO)

    # keeps messages away from the root logger, which would print them twice
    logger.propagate = False

    # importing the package twice must not stack handlers
    for handler in logger.handlers:
        if getattr(handler, "_probdag_default", False):
            return

    handler = logging.StreamHandler()
    handler._probdag_default = True  # type: ignore[attr-defined]
    handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))

    logger.addHandler(handler)


def reset_logger() -> None:
    """
    Undoes :func:`.setup_logger`.

    The package logger gets the level ``logging.NOTSET``, propagates to the
    root logger again and loses *all* of its handlers. Use this before setting
    up a custom logging configuration.
    """

    logger = logging.getLogger("probdag")
    logger.setLevel(logging.NOTSET)
    logger.propagate = True

    for handler in list(logger.handlers):
        logger.removeHandler(handler)


def add_file_handler(
    path: str | Path,
    level: str,
    logger: str = "probdag",
    fmt: str = "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
) -> None:
    """
    Writes the messages of a logger to a file.

    Parameters
    ----------
    path
        Absolute path of the log file. Missing parent directories are created.
    level
        The lowest level written to the file, one of ``"debug"``, ``"info"``,
        ``"warning"``, ``"error"`` or ``"critical"``.
    logger
        The name of the logger, e.g. ``"probdag.dag"`` to only capture messages
        from the graph driver.
    fmt
        The format string of the :class:`logging.Formatter`.

    Examples
    --------
    A file handler catching the debug messages emitted while nodes are created::

        import probdag

        probdag.logging.add_file_handler(
            path="/tmp/probdag/nodes.log",
            level="debug",
            logger="probdag.nodes",
        )
    """

    path = Path(path)

    if not path.is_absolute():
        raise ValueError(f"The path of a log file must be absolute, got {path}")

    path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.FileHandler(path)
    handler.setLevel(getattr(logging, level.upper()))
    handler.setFormatter(logging.Formatter(fmt, "%Y-%m-%d %H:%M:%S"))

    logging.getLogger(logger).addHandler(handler)
