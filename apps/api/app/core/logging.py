import logging

from apps.api.app.core.config import settings

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )
    # urllib3 logs every request line at DEBUG, including the bot token in the URL.
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def mask_ref(value) -> str:
    text = str(value or "")
    if len(text) <= 8:
        return text
    return f"{text[:8]}..."
