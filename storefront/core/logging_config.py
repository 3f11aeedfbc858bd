"""
Logging setup for the storefront service.

Every module logs through ``get_logger(__name__)``; ``setup_logging()`` is
called once from the application entry point. Log lines carry a subject
prefix such as ``[Checkout user=42]`` or ``[Payment PAYPAL 5O190127]`` so a
single checkout attempt can be followed across the redirect round-trip.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s - %(levelname)s - [PID:%(process)d] - %(name)s - %(message)s"

_configured = False


def setup_logging(level: str = "INFO"):
    """
    Configure the root logger with a stdout handler.

    Third-party clients (kafka, httpx, stripe) are reduced to WARNING since
    their request-level chatter drowns out the checkout trail.
    """
    global _configured
    if _configured:
        return
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    for noisy in ("kafka", "httpx", "stripe"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    _configured = True


def get_logger(name):
    return logging.getLogger(name)
