import pytest

from signed_client.config.model import ClientSettings
from signed_client.storage.secure_store import MemorySecureStore

TEST_SECRET = "test-shared-secret"
BASE_URL = "https://api.example.com"


@pytest.fixture
def settings() -> ClientSettings:
    """Settings with zero retry delay so retry tests do not wait."""
    return ClientSettings(
        base_url=BASE_URL,
        shared_secret=TEST_SECRET,
        retry_delay_ms=0,
    )


@pytest.fixture
def store() -> MemorySecureStore:
    return MemorySecureStore()
