"""Test package for pairchat unit and integration tests."""

import logging

logging.getLogger("asyncio").setLevel(logging.ERROR)
