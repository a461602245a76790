# -*- coding: utf-8 -*-
"""
logging setup for command-line runs

@author: C Heiser
"""
import logging
import os
from logging.handlers import RotatingFileHandler


def setup_logger(out_dir=None, name="cNMF", level="INFO"):
    """
    Configure the package logger with a console handler and, if ``out_dir`` is given,
    a rotating log file ``<out_dir>/<name>.log``. Calling again replaces the handlers
    from a previous call.
    """
    logger = logging.getLogger("consensus_nmf")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    lvl = getattr(logging, str(level).upper(), logging.INFO)
    logger.setLevel(lvl)

    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s - %(message)s")

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    ch.setLevel(lvl)
    logger.addHandler(ch)

    if out_dir is not None:
        os.makedirs(out_dir, exist_ok=True)
        log_path = os.path.join(out_dir, "{}.log".format(name))
        fh = RotatingFileHandler(log_path, maxBytes=5 * 1024 * 1024, backupCount=3)
        fh.setFormatter(fmt)
        fh.setLevel(lvl)
        logger.addHandler(fh)
        logger.debug("Logging to %s", log_path)

    return logger
