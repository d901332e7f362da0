from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

ROOT_LOGGER = 'stock_ledger'

_RESERVED = set(logging.LogRecord('', 0, '', 0, '', None, None).__dict__) | {'message', 'asctime'}


class StructuredFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED and not key.startswith('_'):
                payload[key] = value
        if record.exc_info:
            payload['exception'] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class KeyValueFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__('%(asctime)s [%(levelname)s] %(name)s: %(message)s')

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = [
            f'{key}={value}'
            for key, value in record.__dict__.items()
            if key not in _RESERVED and not key.startswith('_')
        ]
        return f"{line} {' '.join(fields)}" if fields else line


def configure_logging(level: str = 'INFO', *, json_lines: bool = False) -> None:
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level.upper())
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter() if json_lines else KeyValueFormatter())
    logger.addHandler(handler)
    logger.propagate = False


def get_logger(name: str) -> logging.Logger:
    if name.startswith(ROOT_LOGGER):
        return logging.getLogger(name)
    return logging.getLogger(f'{ROOT_LOGGER}.{name}')
