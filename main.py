"""
Main entry point for the receptionist core HTTP service.

Production hardening:
- Graceful shutdown handling (SIGTERM/SIGINT)
- Ledger buffer flushed on shutdown (FastAPI lifespan)
- Production Uvicorn configuration
"""

from __future__ import annotations

import os
import sys
import time
import signal

import uvicorn

from config import logger, ENVIRONMENT, LLM_FALLBACK_ENABLED, EXTRACTION_MODEL
from http_service import app


def build_server(port: int) -> uvicorn.Server:
    config = uvicorn.Config(
        app,
        host="0.0.0.0",
        port=port,
        log_level="info",
        access_log=False,  # Reduce noise in Cloud Run logs
    )
    server = uvicorn.Server(config)

    # Override Uvicorn's signal handlers so shutdown goes through handle_signal
    server.install_signal_handlers = lambda: None

    def handle_signal(signum, frame):
        sig_name = signal.Signals(signum).name
        logger.info(f"[SIGNAL] Received {sig_name}. Initiating graceful shutdown...")

        # Stop accepting requests; lifespan shutdown flushes the ledger buffer
        server.should_exit = True

        # Grace period for in-flight requests and log flushes
        logger.info("[SIGNAL] Waiting 2s for in-flight requests...")
        time.sleep(2.0)

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)
    return server


if __name__ == "__main__":
    logger.info(f"[INIT] Initializing Server (env={ENVIRONMENT})...")
    if LLM_FALLBACK_ENABLED:
        logger.info(f"[CONFIG] ✓ LLM extraction fallback enabled ({EXTRACTION_MODEL})")
    else:
        logger.info("[CONFIG] LLM extraction fallback disabled")

    # Cloud Run listens on port defined by PORT env var (default 8080)
    port = int(os.getenv("PORT", 8080))
    server = build_server(port)

    logger.info(f"[HTTP] Starting production FastAPI server on port {port}")
    try:
        server.run()
    except Exception as e:
        logger.error(f"[HTTP] Server failed: {e}")
        sys.exit(1)

    logger.info("[SHUTDOWN] Process exiting.")
