import pytest

from credential_vault.vault.config import VaultConfig
from credential_vault.vault.token_store import TokenStore

# Lowest iteration count the config accepts; keeps the KDF fast in tests.
TEST_ITERATIONS = 1000


@pytest.fixture
def master_secret():
    return "test-master-secret-0123456789"


@pytest.fixture
def config(tmp_path, master_secret):
    """Config persisting to a temporary snapshot file."""
    return VaultConfig(
        master_secret=master_secret,
        snapshot_path=tmp_path / "tokens.json",
        kdf_iterations=TEST_ITERATIONS,
        environment="test",
    )


@pytest.fixture
def memory_config(master_secret):
    """Config without persistence."""
    return VaultConfig(
        master_secret=master_secret,
        snapshot_path=None,
        kdf_iterations=TEST_ITERATIONS,
        environment="test",
    )


@pytest.fixture
def store(config):
    return TokenStore(config)
