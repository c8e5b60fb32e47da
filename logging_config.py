import logging

LOG_FORMAT = "%(asctime)s | %(levelname)8s | %(name)s : %(message)s"


def setup_logging(level: str = "INFO") -> None:
    logger = logging.getLogger()
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # uvicorn --reload и celery могут звать нас повторно
    if any(getattr(h, "_affiliate_handler", False) for h in logger.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._affiliate_handler = True
    logger.addHandler(handler)
