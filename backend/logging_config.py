import logging

from .config import settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = None) -> None:
    """Configure root logging once; later calls only adjust the level."""
    level_name = (level or settings.LOG_LEVEL or "INFO").upper()
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level_name, format=LOG_FORMAT)
    root.setLevel(level_name)
