from __future__ import annotations

import asyncio
import re

import pytest

from otp_gate.auth.challenge import ChallengeAuthenticator
from otp_gate.auth.factory import build_authenticator
from otp_gate.auth.results import ChallengeState, ChallengeStatus, ErrorKind
from otp_gate.config.settings import Settings
from otp_gate.delivery.gateway import DeliveryError
from otp_gate.otp.codes import derive_code
from otp_gate.otp.models import Principal
from otp_gate.otp.strategies import RandomCodeStrategy, TotpStrategy
from otp_gate.storage.attributes import InMemoryAttributeStore
from otp_gate.storage.challenge_store import CODE_KEY, SECRET_KEY, ChallengeStore

_NOW = 1_700_000_000
_CODE_IN_MESSAGE = re.compile(r"is: (\d{6})$")


class _FakeClock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class _RecordingGateway:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []
        self.fail = False

    async def send(self, address: str, message: str) -> None:
        if self.fail:
            raise DeliveryError("relay unreachable")
        self.sent.append((address, message))

    @property
    def last_code(self) -> str:
        match = _CODE_IN_MESSAGE.search(self.sent[-1][1])
        assert match, self.sent[-1][1]
        return match.group(1)


class _BlockingGateway(_RecordingGateway):
    """Holds each send open until released, once ``block`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.block = False
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def send(self, address: str, message: str) -> None:
        if self.block:
            self.entered.set()
            await self.release.wait()
        await super().send(address, message)


@pytest.fixture
def principal() -> Principal:
    return Principal(id="user-1", delivery_address="42424242")


@pytest.fixture
def attributes() -> InMemoryAttributeStore:
    return InMemoryAttributeStore()


@pytest.fixture
def gateway() -> _RecordingGateway:
    return _RecordingGateway()


@pytest.fixture
def clock() -> _FakeClock:
    return _FakeClock(_NOW)


@pytest.fixture
def random_authenticator(attributes, gateway, clock) -> ChallengeAuthenticator:
    return ChallengeAuthenticator(RandomCodeStrategy(ChallengeStore(attributes), clock=clock), gateway)


@pytest.fixture
def totp_authenticator(attributes, gateway, clock) -> ChallengeAuthenticator:
    return ChallengeAuthenticator(TotpStrategy(ChallengeStore(attributes), clock=clock), gateway)


@pytest.mark.asyncio
async def test_principal_without_address_skips_challenge(random_authenticator, gateway) -> None:
    principal = Principal(id="user-2", delivery_address="")

    result = await random_authenticator.on_challenge_entry(principal)

    assert not random_authenticator.configured_for(principal)
    assert result.status is ChallengeStatus.SUCCESS
    assert result.state is ChallengeState.IDLE
    assert gateway.sent == []


@pytest.mark.asyncio
@pytest.mark.parametrize("address", ["", "   "])
async def test_unconfigured_principal_never_receives_a_code(
    random_authenticator, gateway, attributes, address
) -> None:
    principal = Principal(id="user-2", delivery_address=address)

    entry = await random_authenticator.on_challenge_entry(principal)
    resent = await random_authenticator.on_submit(principal, {"resend": ""})

    assert entry.state is ChallengeState.IDLE
    assert resent.status is ChallengeStatus.SUCCESS
    assert resent.state is ChallengeState.IDLE
    assert gateway.sent == []
    assert attributes.snapshot(principal.id) == {}


@pytest.mark.asyncio
async def test_entry_sends_code_with_client_id(random_authenticator, gateway, principal) -> None:
    result = await random_authenticator.on_challenge_entry(principal, client_id="billing-portal")

    assert result.status is ChallengeStatus.CHALLENGE
    assert result.state is ChallengeState.CHALLENGED
    address, message = gateway.sent[0]
    assert address == "42424242"
    assert message.startswith("Your OTP code for billing-portal is: ")


@pytest.mark.asyncio
async def test_entry_uses_default_client_name(attributes, gateway, clock, principal) -> None:
    authenticator = ChallengeAuthenticator(
        RandomCodeStrategy(ChallengeStore(attributes), clock=clock),
        gateway,
        default_client_id="Example SSO",
    )

    await authenticator.on_challenge_entry(principal)

    assert gateway.sent[0][1].startswith("Your OTP code for Example SSO is: ")


@pytest.mark.asyncio
async def test_submit_correct_code_verifies_once(random_authenticator, gateway, principal) -> None:
    await random_authenticator.on_challenge_entry(principal)
    code = gateway.last_code

    first = await random_authenticator.on_submit(principal, {"otp": code})
    second = await random_authenticator.on_submit(principal, {"otp": code})

    assert first.status is ChallengeStatus.SUCCESS
    assert first.state is ChallengeState.VERIFIED
    assert second.status is ChallengeStatus.RETRY
    assert second.error is ErrorKind.INVALID_CREDENTIALS


@pytest.mark.asyncio
async def test_form_values_may_arrive_as_lists(random_authenticator, gateway, principal) -> None:
    await random_authenticator.on_challenge_entry(principal)

    result = await random_authenticator.on_submit(principal, {"otp": [gateway.last_code]})

    assert result.state is ChallengeState.VERIFIED


@pytest.mark.asyncio
@pytest.mark.parametrize("submitted", ["12a456", "12345", "", None])
async def test_invalid_submissions_share_one_message(random_authenticator, gateway, principal, submitted) -> None:
    await random_authenticator.on_challenge_entry(principal)

    result = await random_authenticator.on_submit(principal, {"otp": submitted})
    mismatch = await random_authenticator.on_submit(principal, {"otp": "000000"})

    assert result.status is ChallengeStatus.RETRY
    assert result.state is ChallengeState.FAILED
    assert result.counts_as_failure
    assert result.message == mismatch.message == "Invalid code"


@pytest.mark.asyncio
async def test_missing_challenge_looks_like_wrong_code(random_authenticator, principal) -> None:
    result = await random_authenticator.on_submit(principal, {"otp": "123456"})

    assert result.error is ErrorKind.INVALID_CREDENTIALS
    assert result.message == "Invalid code"


@pytest.mark.asyncio
async def test_expired_code_asks_for_resend(random_authenticator, gateway, clock, principal) -> None:
    await random_authenticator.on_challenge_entry(principal)
    clock.now += 121

    result = await random_authenticator.on_submit(principal, {"otp": gateway.last_code})

    assert result.status is ChallengeStatus.RETRY
    assert result.state is ChallengeState.EXPIRED
    assert result.error is ErrorKind.EXPIRED_CODE
    assert result.message == "Code expired, request a new one"


@pytest.mark.asyncio
async def test_resend_replaces_code(random_authenticator, gateway, clock, principal, monkeypatch) -> None:
    codes = iter(["111111", "222222"])
    monkeypatch.setattr("otp_gate.otp.strategies.generate_random_code", lambda: next(codes))
    await random_authenticator.on_challenge_entry(principal)
    clock.now += 30

    resent = await random_authenticator.on_submit(principal, {"resend": "", "client_id": "app"})
    old = await random_authenticator.on_submit(principal, {"otp": "111111"})
    new = await random_authenticator.on_submit(principal, {"otp": "222222"})

    assert resent.status is ChallengeStatus.CHALLENGE
    assert resent.message == "Code sent again"
    assert gateway.sent[-1][1] == "Your OTP code for app is: 222222"
    assert old.error is ErrorKind.INVALID_CREDENTIALS
    assert new.state is ChallengeState.VERIFIED


@pytest.mark.asyncio
async def test_failed_resend_keeps_previous_code(random_authenticator, gateway, principal) -> None:
    await random_authenticator.on_challenge_entry(principal)
    code = gateway.last_code
    gateway.fail = True

    resent = await random_authenticator.on_submit(principal, {"resend": "1"})
    gateway.fail = False
    submitted = await random_authenticator.on_submit(principal, {"otp": code})

    assert resent.status is ChallengeStatus.RETRY
    assert resent.state is ChallengeState.CHALLENGED
    assert resent.error is ErrorKind.INTERNAL_ERROR
    assert not resent.counts_as_failure
    assert submitted.state is ChallengeState.VERIFIED


@pytest.mark.asyncio
async def test_delivery_failure_on_entry_is_fatal_and_leaves_no_code(
    random_authenticator, gateway, attributes, principal
) -> None:
    gateway.fail = True

    result = await random_authenticator.on_challenge_entry(principal)

    assert result.status is ChallengeStatus.FATAL
    assert result.error is ErrorKind.INTERNAL_ERROR
    assert not result.counts_as_failure
    assert CODE_KEY not in attributes.snapshot(principal.id)

    gateway.fail = False
    retry = await random_authenticator.on_challenge_entry(principal)
    verified = await random_authenticator.on_submit(principal, {"otp": gateway.last_code})
    assert retry.status is ChallengeStatus.CHALLENGE
    assert verified.state is ChallengeState.VERIFIED


@pytest.mark.asyncio
async def test_totp_entry_and_resend_reuse_secret(totp_authenticator, gateway, attributes, clock, principal) -> None:
    await totp_authenticator.on_challenge_entry(principal)
    secret = attributes.snapshot(principal.id)[SECRET_KEY]
    clock.now += 30

    await totp_authenticator.on_submit(principal, {"resend": ""})

    assert attributes.snapshot(principal.id)[SECRET_KEY] == secret
    assert gateway.last_code == derive_code(secret, int(clock.now) // 30)


@pytest.mark.asyncio
async def test_totp_previous_step_code_still_verifies(totp_authenticator, gateway, clock, principal) -> None:
    clock.now = _NOW - (_NOW % 30) + 29
    await totp_authenticator.on_challenge_entry(principal)
    clock.now += 2

    result = await totp_authenticator.on_submit(principal, {"otp": gateway.last_code})

    assert result.state is ChallengeState.VERIFIED


@pytest.mark.asyncio
async def test_totp_failed_resend_keeps_secret(totp_authenticator, gateway, attributes, principal) -> None:
    await totp_authenticator.on_challenge_entry(principal)
    code = gateway.last_code
    gateway.fail = True

    resent = await totp_authenticator.on_submit(principal, {"resend": ""})
    result = await totp_authenticator.on_submit(principal, {"otp": code})

    assert resent.error is ErrorKind.INTERNAL_ERROR
    assert result.state is ChallengeState.VERIFIED


@pytest.mark.asyncio
async def test_build_authenticator_selects_strategy(attributes, gateway, clock, principal) -> None:
    settings = Settings(_env_file=None, strategy="totp", totp_step_s=5)

    authenticator = build_authenticator(settings, attributes=attributes, gateway=gateway, clock=clock)
    await authenticator.on_challenge_entry(principal)

    assert isinstance(authenticator.strategy, TotpStrategy)
    assert authenticator.strategy.step_s == 5
    secret = attributes.snapshot(principal.id)[SECRET_KEY]
    assert gateway.last_code == derive_code(secret, _NOW // 5)


@pytest.mark.asyncio
async def test_submission_waits_for_in_flight_resend(attributes, clock, principal, monkeypatch) -> None:
    codes = iter(["111111", "222222"])
    monkeypatch.setattr("otp_gate.otp.strategies.generate_random_code", lambda: next(codes))
    gateway = _BlockingGateway()
    authenticator = ChallengeAuthenticator(RandomCodeStrategy(ChallengeStore(attributes), clock=clock), gateway)
    await authenticator.on_challenge_entry(principal)
    gateway.block = True

    resend = asyncio.create_task(authenticator.on_submit(principal, {"resend": ""}))
    await gateway.entered.wait()
    submit = asyncio.create_task(authenticator.on_submit(principal, {"otp": "111111"}))
    for _ in range(5):
        await asyncio.sleep(0)

    # the old code is still stored, yet the submission must not be checked against it mid-resend
    assert not submit.done()
    assert attributes.snapshot(principal.id)[CODE_KEY] == "111111"

    gateway.release.set()
    resent, submitted = await asyncio.gather(resend, submit)

    assert resent.status is ChallengeStatus.CHALLENGE
    assert submitted.state is ChallengeState.FAILED
    assert attributes.snapshot(principal.id)[CODE_KEY] == "222222"


@pytest.mark.asyncio
async def test_resend_waits_for_in_flight_submission(attributes, clock, principal, monkeypatch) -> None:
    codes = iter(["111111", "222222"])
    monkeypatch.setattr("otp_gate.otp.strategies.generate_random_code", lambda: next(codes))
    gateway = _RecordingGateway()
    authenticator = ChallengeAuthenticator(RandomCodeStrategy(ChallengeStore(attributes), clock=clock), gateway)
    await authenticator.on_challenge_entry(principal)

    submitted, resent = await asyncio.gather(
        authenticator.on_submit(principal, {"otp": "111111"}),
        authenticator.on_submit(principal, {"resend": ""}),
    )

    assert submitted.state is ChallengeState.VERIFIED
    assert resent.status is ChallengeStatus.CHALLENGE
    assert attributes.snapshot(principal.id)[CODE_KEY] == "222222"
