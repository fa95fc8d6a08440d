# src/scripts/run_api.py
from __future__ import annotations

import logging
import os

import uvicorn

from src.api.app import create_app


def main() -> int:
    logging.basicConfig(level=logging.INFO)
    uvicorn.run(
        create_app(),
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", "8000")),
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
