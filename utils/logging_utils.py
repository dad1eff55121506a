# utils/logging_utils.py
import os
import logging

LOG_FORMAT = '[%(asctime)s] %(levelname)s %(name)s: %(message)s'


def _log_dir():
    return os.getenv("LOG_DIR") or os.path.join(os.path.dirname(__file__), '..', 'logs')


def get_logger(name, log_file="payments.log", error_file="payment-errors.log"):
    """
    Named logger with console output, a general log file and an error-only file.
    Handlers are attached once per logger name.
    """
    logger = logging.getLogger(name)
    if getattr(logger, "_payments_configured", False):
        return logger

    logger.setLevel(logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    # ----------------- console -----------------
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # ----------------- files -----------------
    log_dir = _log_dir()
    try:
        os.makedirs(log_dir, exist_ok=True)
        if log_file:
            file_handler = logging.FileHandler(os.path.join(log_dir, log_file))
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        if error_file:
            error_handler = logging.FileHandler(os.path.join(log_dir, error_file))
            error_handler.setLevel(logging.ERROR)
            error_handler.setFormatter(formatter)
            logger.addHandler(error_handler)
    except OSError as e:
        logger.warning(f"File logging disabled, cannot write to {log_dir}: {e}")

    logger._payments_configured = True
    return logger
