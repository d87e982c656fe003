#!/usr/bin/env python3
"""Launch the MCT engine API (and, with SCHEDULER_ENABLED=true, the job loop).

Usage:
    python scripts/run_server.py
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Ensure the repo root is on sys.path so `mct_engine` imports work uninstalled
_root = Path(__file__).resolve().parent.parent
if str(_root) not in sys.path:
    sys.path.insert(0, str(_root))

from mct_engine.config.settings import LOG_LEVEL, SCHEDULER_ENABLED, SERVER_HOST, SERVER_PORT

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s  %(levelname)-7s  %(name)-22s  %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("run_server")


def main():
    import uvicorn

    logger.info(
        f"Starting MCT engine on {SERVER_HOST}:{SERVER_PORT} "
        f"(scheduler {'on' if SCHEDULER_ENABLED else 'off'})"
    )
    uvicorn.run(
        "mct_engine.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        log_level=LOG_LEVEL.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
