# pylint: disable=missing-module-docstring,missing-function-docstring

from dataclasses import replace

import pytest

from config import AppConfig
from session.intent import (
    ClientIntent,
    NoRole,
    ServerIntent,
    SessionIntent,
    SessionRole,
    intent_from_config,
    select_role,
)


def test_server_intent_selects_listener():
    intent = SessionIntent(server=ServerIntent(expected_peer_name="Alice"))
    assert select_role(intent) is SessionRole.LISTENER
    assert intent.peer_name == "Alice"


def test_client_intent_selects_dialer():
    intent = SessionIntent(client=ClientIntent(peer_address="10.0.0.1", peer_name="Bob"))
    assert select_role(intent) is SessionRole.DIALER
    assert intent.peer_name == "Bob"


def test_server_checked_first():
    intent = SessionIntent(
        server=ServerIntent(expected_peer_name="Alice"),
        client=ClientIntent(peer_address="10.0.0.1", peer_name="Bob"),
    )
    assert select_role(intent) is SessionRole.LISTENER


def test_empty_intent_raises_no_role():
    with pytest.raises(NoRole):
        select_role(SessionIntent())
    assert SessionIntent().peer_name is None


# ---------------------------------------------------------------------
# From configuration
# ---------------------------------------------------------------------

def test_intent_from_config_server():
    config = replace(AppConfig.defaults(), peer_role="server", peer_name="Alice")
    intent = intent_from_config(config)

    assert intent.server == ServerIntent(expected_peer_name="Alice")
    assert intent.client is None


def test_intent_from_config_client():
    config = replace(
        AppConfig.defaults(),
        peer_role="client",
        peer_name="Bob",
        peer_address="192.168.1.20",
    )
    intent = intent_from_config(config)

    assert intent.client == ClientIntent(peer_address="192.168.1.20", peer_name="Bob")


def test_intent_from_config_client_requires_address():
    config = replace(AppConfig.defaults(), peer_role="client")
    with pytest.raises(ValueError):
        intent_from_config(config)


def test_intent_from_config_without_role_is_empty():
    intent = intent_from_config(AppConfig.defaults())
    with pytest.raises(NoRole):
        select_role(intent)
