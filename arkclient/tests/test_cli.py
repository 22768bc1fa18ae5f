"""
Tests for the ark-client command line.
"""

from unittest.mock import AsyncMock

import pytest
from typer.testing import CliRunner

from arkclient import cli
from arkclient.client import ArkClient

OWNER_SECRET = "22" * 32

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("ARK_SECRET_KEY", raising=False)


@pytest.fixture
def patched_client(monkeypatch, fake_coordinator):
    explorer = AsyncMock()
    explorer.find_outpoints.return_value = []

    def _make(settings):
        return ArkClient(settings, coordinator=fake_coordinator, explorer=explorer)

    monkeypatch.setattr(cli, "ArkClient", _make)
    return fake_coordinator


def test_load_secret_key_priority(tmp_path, monkeypatch):
    key_file = tmp_path / "key.hex"
    key_file.write_text(f"{'33' * 32}\n")
    monkeypatch.setenv("ARK_SECRET_KEY", "44" * 32)

    assert cli.load_secret_key("11" * 32, key_file) == "11" * 32
    assert cli.load_secret_key(None, key_file) == "33" * 32
    assert cli.load_secret_key(None, None) == "44" * 32


def test_load_secret_key_missing(tmp_path):
    with pytest.raises(ValueError, match="Secret key required"):
        cli.load_secret_key(None, None)
    with pytest.raises(ValueError, match="not found"):
        cli.load_secret_key(None, tmp_path / "absent")


def test_info(patched_client, server_info):
    result = runner.invoke(cli.app, ["info"])

    assert result.exit_code == 0
    assert "regtest" in result.stdout
    assert server_info.pubkey in result.stdout
    assert patched_client.calls == ["get_info", "close"]


def test_address(patched_client, vtxo, boarding_output):
    result = runner.invoke(cli.app, ["address", "--secret-key", OWNER_SECRET])

    assert result.exit_code == 0
    assert vtxo.address() in result.stdout
    assert boarding_output.address() in result.stdout


def test_address_without_key_fails(patched_client):
    result = runner.invoke(cli.app, ["address"])
    assert result.exit_code == 1


def test_settle_nothing(patched_client):
    result = runner.invoke(cli.app, ["settle", "--secret-key", OWNER_SECRET])

    assert result.exit_code == 0
    assert "Nothing to settle" in result.stdout


def test_invalid_secret_key_exits(patched_client):
    result = runner.invoke(cli.app, ["balance", "--secret-key", "zz"])
    assert result.exit_code == 1


def test_send_without_funds_exits(patched_client, vtxo):
    result = runner.invoke(
        cli.app, ["send", vtxo.address(), "5000", "--secret-key", OWNER_SECRET]
    )

    assert result.exit_code == 1
    assert "submit_redeem_transaction" not in patched_client.calls


def test_send_prints_txid(patched_client, vtxo, monkeypatch):
    async def _send(self, wallet_id, to_address, amount):
        return "cd" * 32

    monkeypatch.setattr(ArkClient, "send", _send)
    result = runner.invoke(
        cli.app, ["send", vtxo.address(), "5000", "--secret-key", OWNER_SECRET]
    )

    assert result.exit_code == 0
    assert f"Sent 5,000 sats to {vtxo.address()}: {'cd' * 32}" in result.stdout
