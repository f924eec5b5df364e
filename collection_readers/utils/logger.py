import logging
import sys

def setup_logger(name: str = "collection_readers", level=logging.INFO):
    """
    Sets up a logger that outputs to the console (stderr).
    stdout is reserved for the JSON-lines records written by the CLI.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Avoid duplicate logs if setup is called multiple times
    if logger.hasHandlers():
        return logger

    # Format: timestamp - component - level - message
    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    return logger
