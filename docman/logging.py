import logging

from docman.config import settings

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_configured = False


def configure_logging(level: str | None = None) -> None:
    """Install the process-wide log handler once.

    Called from each entry point (API app, Celery worker, CLI) rather than at
    import time so library users keep control of their own logging tree.
    """
    global _configured
    resolved = (level or settings.log_level).upper()
    root = logging.getLogger()
    if not _configured:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        root.addHandler(handler)
        _configured = True
    root.setLevel(getattr(logging, resolved, logging.INFO))
    # SQL echo is controlled separately; keep the engine logger quiet by default.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
