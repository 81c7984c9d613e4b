"""Test package for party line unit and integration tests."""

import logging

logging.getLogger("asyncio").setLevel(logging.ERROR)
