import logging
from logging.handlers import RotatingFileHandler
import os
LOG_DIR=os.getenv("SELLERLEDGER_LOG_DIR","logs")
LOG_LEVEL=os.getenv("SELLERLEDGER_LOG_LEVEL","INFO").upper()
def get_loggers(name:str)->logging.Logger:
    logger=logging.getLogger(f"sellerledger.{name}")
    if logger.handlers:
        return logger
    logger.setLevel(getattr(logging,LOG_LEVEL,logging.INFO))
    logger.propagate=False
    formatter=logging.Formatter("[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s")
    ch=logging.StreamHandler()
    ch.setFormatter(formatter)
    logger.addHandler(ch)
    os.makedirs(LOG_DIR,exist_ok=True)
    fh=RotatingFileHandler(os.path.join(LOG_DIR,f"{name}.log"),maxBytes=5_000_000,backupCount=5)
    fh.setFormatter(formatter)
    logger.addHandler(fh)
    return logger
