import logging


def setup_logger(name=None, level=logging.INFO):
    """
    Set up logger with file and line number information.

    Args:
        name: Logger name (use __name__ to get module name)
        level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        logger: Configured logger instance
    """

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(filename)s:%(lineno)d  | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


def set_level(level):
    """Change the level of every songprint logger and its handlers."""
    for name, logger in logging.Logger.manager.loggerDict.items():
        if not name.startswith("songprint") or not isinstance(logger, logging.Logger):
            continue
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setLevel(level)
