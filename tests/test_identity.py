"""Tests for agent identity derivation."""

import pytest

from verdict_service.errors import ConfigurationMissing
from verdict_service.identity import AgentIdentity

PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
ADDRESS = "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"


def test_identity_from_private_key():
    identity = AgentIdentity.from_private_key(PRIVATE_KEY)
    assert identity.address == ADDRESS
    assert str(identity) == ADDRESS
    assert identity.short == ADDRESS[:10]


def test_identity_is_stable_across_restarts():
    """Same credential, same identity; with or without the 0x prefix."""
    assert AgentIdentity.from_private_key(PRIVATE_KEY) == AgentIdentity.from_private_key(PRIVATE_KEY[2:])


def test_identity_from_address_is_checksummed():
    assert AgentIdentity.from_address(ADDRESS.lower()).address == ADDRESS


@pytest.mark.parametrize("key", [None, "", "0x1234", "not-a-key"])
def test_invalid_private_key(key):
    with pytest.raises(ConfigurationMissing):
        AgentIdentity.from_private_key(key)
