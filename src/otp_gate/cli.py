"""Operator command line for provisioning, sending and checking codes."""
from __future__ import annotations

import argparse
import asyncio
import time
from typing import Optional, Sequence

from otp_gate.auth.factory import build_attribute_store, build_authenticator
from otp_gate.auth.results import ChallengeResult, ChallengeStatus
from otp_gate.config.settings import Settings
from otp_gate.core.logging import configure_logging
from otp_gate.otp.codes import generate_totp, provision_secret
from otp_gate.otp.models import Principal
from otp_gate.storage.sqlite_store import SqliteAttributeStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="One-time passcode operator tool.")
    parser.add_argument("--log-level", default=None, help="Override OTP_GATE_LOG_LEVEL for this run.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("secret", help="Print a freshly generated Base32 TOTP secret.")

    code_parser = subparsers.add_parser("code", help="Print the TOTP code for a secret.")
    code_parser.add_argument("secret", help="Base32 secret")
    code_parser.add_argument("--at", type=int, default=None, help="Epoch seconds (defaults to now)")
    code_parser.add_argument("--step", type=int, default=None, help="Time step in seconds")

    send_parser = subparsers.add_parser("send", help="Issue and deliver a code to an address.")
    send_parser.add_argument("address", help="Delivery address (chat id / phone)")
    send_parser.add_argument("--principal", default=None, help="Principal id (defaults to the address)")
    send_parser.add_argument("--client-id", default=None, help="Client name embedded in the message")

    verify_parser = subparsers.add_parser("verify", help="Check a submitted code against stored state.")
    verify_parser.add_argument("address", help="Delivery address (chat id / phone)")
    verify_parser.add_argument("code", help="Submitted code")
    verify_parser.add_argument("--principal", default=None, help="Principal id (defaults to the address)")
    return parser


def _print_result(result: ChallengeResult) -> None:
    line = f"{result.status.value} ({result.state.value})"
    if result.message:
        line = f"{line}: {result.message}"
    print(line)


async def _run_challenge(settings: Settings, args: argparse.Namespace) -> ChallengeResult:
    attributes = build_attribute_store(settings)
    if isinstance(attributes, SqliteAttributeStore):
        await attributes.initialize()
    try:
        authenticator = build_authenticator(settings, attributes=attributes)
        principal = Principal(id=args.principal or args.address, delivery_address=args.address)
        if args.command == "send":
            return await authenticator.on_challenge_entry(principal, client_id=args.client_id)
        return await authenticator.on_submit(principal, {"otp": args.code})
    finally:
        if isinstance(attributes, SqliteAttributeStore):
            await attributes.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    settings = Settings()
    if args.log_level:
        settings.log_level = args.log_level

    if args.command == "secret":
        print(provision_secret())
        return 0
    if args.command == "code":
        step = args.step if args.step is not None else settings.totp_step_s
        if step <= 0:
            parser.error("--step must be positive")
        timestamp = args.at if args.at is not None else int(time.time())
        try:
            print(generate_totp(args.secret, timestamp=timestamp, interval=step))
        except ValueError as exc:
            parser.error(str(exc))
        return 0

    if args.command == "verify" and settings.attribute_store == "memory":
        parser.error("verify needs state from an earlier run; set OTP_GATE_ATTRIBUTE_STORE=sqlite")

    configure_logging(settings.log_level, settings.log_dir)
    settings.ensure_directories()
    result = asyncio.run(_run_challenge(settings, args))
    _print_result(result)
    return 0 if result.status in (ChallengeStatus.SUCCESS, ChallengeStatus.CHALLENGE) else 1


if __name__ == "__main__":
    raise SystemExit(main())
