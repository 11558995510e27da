"""Allow running the ingestor with ``python -m stream_ingestor``."""

import sys

from .main import run

sys.exit(run())
