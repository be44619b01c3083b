"""Verification retries."""

import pytest

from eth_deployer.verify import ContractVerifier, VerificationFailed, VerificationRequest, is_already_verified, verify_contract


class FlakyVerifier(ContractVerifier):
    """Fail a number of times, then succeed."""

    def __init__(self, failures: int, message: str = "Explorer busy"):
        self.failures = failures
        self.message = message
        self.calls = []

    def verify(self, address, constructor_args, contract_name):
        self.calls.append((address, constructor_args, contract_name))
        if len(self.calls) <= self.failures:
            raise RuntimeError(self.message)


@pytest.fixture()
def request_() -> VerificationRequest:
    return VerificationRequest("token", "0x0000000000000000000000000000000000000001", "Token", b"\x01")


def test_already_verified_messages():
    assert is_already_verified(RuntimeError("Contract source code already verified"))
    assert is_already_verified(RuntimeError("Bytecode does not match"))
    assert not is_already_verified(RuntimeError("Rate limited"))


def test_retry_until_success(request_):
    verifier = FlakyVerifier(failures=2)
    assert verify_contract(verifier, request_, attempts=3, interval=0)
    assert len(verifier.calls) == 3
    assert verifier.calls[0] == (request_.address, b"\x01", "Token")


def test_already_verified_is_success(request_):
    verifier = FlakyVerifier(failures=5, message="Already Verified")
    assert verify_contract(verifier, request_, attempts=3, interval=0)
    assert len(verifier.calls) == 1


def test_give_up(request_):
    verifier = FlakyVerifier(failures=5)
    with pytest.raises(VerificationFailed):
        verify_contract(verifier, request_, attempts=2, interval=0)
    assert len(verifier.calls) == 2
