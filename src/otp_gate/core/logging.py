"""Logging helpers."""
from __future__ import annotations

import logging
from pathlib import Path


def configure_logging(level: str, log_dir: Path) -> None:
    """Configure basic logging for CLI usage."""
    log_dir.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_dir / "otp_gate.log"),
        ],
    )
    # httpx logs full request URLs at INFO; relay URLs carry the message text.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def mask_address(address: str | None) -> str:
    """Return a log-safe rendering of a delivery address (chat id, phone)."""
    if not address:
        return "<none>"
    if len(address) <= 4:
        return "*" * len(address)
    return f"{'*' * (len(address) - 4)}{address[-4:]}"
