# Copyright (c) 2025.
# This file is part of InfoLM, released under the MIT License.
import logging
from pathlib import Path
from typing import Optional, Union


def get_logger(name: str, log_file: Optional[Union[str, Path]] = None) -> logging.Logger:
    """
    Return a logger with the given name.
    Logs INFO to console and, when ``log_file`` is given, DEBUG to file.
    """
    logger = logging.getLogger(name)

    if not logger.handlers:  # avoid duplicate handlers on reload
        logger.setLevel(logging.DEBUG)

        # --- File handler ---
        if log_file is not None:
            path = Path(log_file)
            path.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(path)
            fh.setLevel(logging.DEBUG)
            file_fmt = logging.Formatter(
                "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
            )
            fh.setFormatter(file_fmt)
            logger.addHandler(fh)

        # --- Console handler ---
        ch = logging.StreamHandler()
        ch.setLevel(logging.INFO)
        console_fmt = logging.Formatter("%(levelname)s: %(message)s")
        ch.setFormatter(console_fmt)
        logger.addHandler(ch)

    return logger
