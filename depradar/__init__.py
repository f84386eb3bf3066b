"""DepRadar — dependency vulnerability identification.

This package provides the core logic for synchronizing a local copy of the
NVD CVE feed, turning weak dependency evidence into CPE identifiers through
an in-memory fuzzy index, and matching those identifiers against the
version ranges attached to each CVE record.
"""

import logging

__version__ = "0.3.0"


def configure_logging(level: int = logging.INFO) -> None:
    """Attach a plain stream handler to the ``depradar`` logger.

    The library itself never configures handlers; this is a convenience for
    scripts and notebooks.

    Args:
        level: Logging level for the package logger.
    """
    logger = logging.getLogger("depradar")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        logger.addHandler(handler)
    logger.setLevel(level)
