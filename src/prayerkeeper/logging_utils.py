from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


class LoggerFactory:
    @staticmethod
    def create(
        name: str,
        log_file: Optional[Union[str, Path]] = None,
        level: Union[int, str] = logging.INFO,
    ) -> logging.Logger:
        """Configure the named logger once; the root logger gets the same handlers.

        Components log through ``logging.getLogger(ClassName)``, so the
        handlers also go on the root logger to catch those records.
        """
        logger = logging.getLogger(name)
        if logger.handlers:
            return logger

        logger.setLevel(level)
        formatter = logging.Formatter(LOG_FORMAT)

        handlers: list[logging.Handler] = [logging.StreamHandler()]
        if log_file is not None:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(
                RotatingFileHandler(log_path, maxBytes=1_000_000, backupCount=3)
            )

        root = logging.getLogger()
        root.setLevel(level)
        for handler in handlers:
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            root.addHandler(handler)
        # Records from ``name`` would otherwise reach these handlers twice.
        logger.propagate = False
        return logger
