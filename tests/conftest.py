"""
Pytest fixtures and configuration for CredVault tests
"""
import base64

import pytest

from credvault.manager import CredentialsManager
from credvault.storage import StorageManager
from credvault.store import AccountStore

# RFC 6238 appendix B seed "12345678901234567890" in Base32
RFC_SECRET = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"
SECRET_A = "JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP"
SECRET_B = "KRSXG5CTMVRXEZLUKRSXG5CTMVRXEZLU"


def make_secret(n: int) -> str:
    """Distinct valid 32 character Base32 secret for an integer."""
    return base64.b32encode(n.to_bytes(20, 'big')).decode()


class FixedClock:
    """Controllable time source."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store():
    return AccountStore()


@pytest.fixture
def populated_store():
    """Store with five accounts a0..a4 in display order."""
    s = AccountStore()
    for i in range(5):
        s.add_account(f"user{i}@example.com", f"pw{i}")
    return s


@pytest.fixture
def data_file(tmp_path):
    return str(tmp_path / "credentials.json")


@pytest.fixture
def storage(data_file):
    return StorageManager(data_file, save_delay=0)


@pytest.fixture
def manager(data_file, clock):
    m = CredentialsManager(data_file, save_delay=0, clock=clock)
    m.open()
    yield m
    m.close()
