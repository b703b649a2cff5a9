"""Console logging setup shared by the API and the scripts."""

import sys

from loguru import logger  # console logger


def configure_logging(level: str = "INFO") -> None:
	"""Replace loguru's default sink with one honouring the configured level."""
	logger.remove()  # drop the default DEBUG sink
	logger.add(
		sys.stderr,
		level=level.upper(),
		format="<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | {message}",
	)
	logger.debug(f"[Logging] Console sink configured at level {level.upper()}")
