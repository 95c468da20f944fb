import logging
from collections.abc import Generator
from contextlib import contextmanager

import pytest
from _pytest.logging import LogCaptureHandler

from probdag.config import config


@contextmanager
def local_caplog_fn(
    level: int = logging.INFO, name: str = "probdag"
) -> Generator[LogCaptureHandler]:
    """
    Context manager that captures records from non-propagating loggers.

    After the end of the ``with`` statement, the log level is restored to its original
    value. Code adapted from `this GitHub comment <GH_>`_.

    .. _GH: https://github.com/pytest-dev/pytest/issues/3697#issuecomment-790925527

    Parameters
    ----------
    level
        The log level.
    name
        The name of the logger to update.
    """

    logger = logging.getLogger(name)

    old_level = logger.level
    logger.setLevel(level)

    handler = LogCaptureHandler()
    logger.addHandler(handler)

    try:
        yield handler
    finally:
        logger.setLevel(old_level)
        logger.removeHandler(handler)


@pytest.fixture
def local_caplog():
    """
    Fixture that yields a context manager for capturing records from non-propagating
    loggers.

    Examples
    --------
    Usage example::

        import probdag as pdg


        def test_dag_logs(local_caplog):
            with local_caplog() as caplog:
                pdg.Dag(pdg.normal(0.0, 1.0))
                assert caplog.records[0].levelname == "INFO"
    """

    yield local_caplog_fn


@pytest.fixture(autouse=True)
def restore_config():
    """Restores the process-wide settings after each test."""
    float_type = config.float_type
    data_as_constants = config.data_as_constants
    default_n_chains = config.default_n_chains

    yield config

    config.float_type = float_type
    config.data_as_constants = data_as_constants
    config.default_n_chains = default_n_chains
