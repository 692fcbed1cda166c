"""Logging configuration for the application"""
import logging

from roomgate.core.config import settings

# Payment and access decisions are kept at INFO even when LOG_LEVEL is raised
AUDIT_LOGGERS = ("payments", "access")


def setup_logging():
    """Configure logging for the application"""
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        force=True
    )

    for name in AUDIT_LOGGERS:
        logging.getLogger(name).setLevel(min(level, logging.INFO))

    # Silence noisy third-party libraries
    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("livekit").setLevel(logging.WARNING)
