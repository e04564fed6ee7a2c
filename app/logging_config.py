from __future__ import annotations

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_app_logging(level: str = "INFO") -> None:
    """
    Minimal logging configuration for this repo.

    Notes:
    - Plain stdlib logging; every module logs through `logging.getLogger(__name__)`.
    - Uvicorn already configures its own handlers; this sets the level for `app.*`
      and adds a stream handler only when nothing else has installed one.
    - Set `APP_LOG_LEVEL=DEBUG` (or INFO/WARNING/ERROR) to control verbosity.
    - Tokens, passwords and reset links are never passed to a logger; log ids instead.
    """

    normalized = level.upper()
    app_logger = logging.getLogger("app")
    app_logger.setLevel(normalized)
    app_logger.propagate = True

    if not logging.getLogger().handlers:
        logging.basicConfig(level=normalized, format=LOG_FORMAT)
