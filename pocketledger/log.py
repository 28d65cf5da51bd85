import logging
import sys

from pythonjsonlogger import jsonlogger

from pocketledger.config import LOG_DATEFMT, LOG_FORMAT

SERVICE_NAME = 'pocketledger'


class LedgerJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that stamps every record with level and service name."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record['level'] = record.levelname
        log_record['service'] = SERVICE_NAME


def set_logging_level(level):
    """
    Sets the logging level for the root logger.

    Args:
        level (int): One of the standard logging levels.
    """
    if not isinstance(level, int):
        raise ValueError("Logging level must be an integer.")
    if level not in (
            logging.DEBUG,
            logging.INFO,
            logging.WARNING,
            logging.ERROR,
            logging.CRITICAL,
    ):
        raise ValueError('Invalid logging level. Use one of the standard logging levels, e.g., logging.DEBUG.')

    logging.getLogger().setLevel(level)


def setup_logging(level=logging.INFO, json_output=False, stream=None):
    """
    Configures the root logger with a single stream handler.

    Args:
        level (int): Root logging level.
        json_output (bool): Emit one JSON object per record instead of text.
        stream: Target stream, stdout by default.
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    if json_output:
        formatter = LedgerJsonFormatter('%(asctime)s %(name)s %(message)s', datefmt=LOG_DATEFMT)
    else:
        formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    set_logging_level(level)
    return root_logger
