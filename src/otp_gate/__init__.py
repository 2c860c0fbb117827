"""One-time passcode second factor: code issuance, delivery and verification."""

__version__ = "0.1.0"
