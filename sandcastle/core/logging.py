import logging


LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"

_loggers = {}


def get_logger(name: str, level: str = "info") -> logging.Logger:
    """Named logger with a stream handler, the way the worker modules log."""
    logger = logging.getLogger(name)
    logger.setLevel(level.upper())
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    _loggers[name] = logger
    return logger


def set_log_level(level: str):
    """Apply LOG_LEVEL to every logger handed out so far."""
    for logger in _loggers.values():
        logger.setLevel(level.upper())
