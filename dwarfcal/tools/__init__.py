#    __init__.py
#        Generic tools used across the project
#
#   - License : MIT - See LICENSE file.
#   - Project :  dwarfcal
#
#   Copyright (c) 2026 dwarfcal

__all__ = ['log_exception']

import logging
import traceback


def log_exception(logger: logging.Logger, e: BaseException, msg: str = '', str_level: int = logging.ERROR) -> None:
    """Log an exception message at the given level and its traceback at debug level"""
    if msg:
        logger.log(str_level, f"{msg} {e}")
    else:
        logger.log(str_level, str(e))

    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(''.join(traceback.format_exception(type(e), e, e.__traceback__)))
