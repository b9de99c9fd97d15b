"""Tests for signing-identity decoding and keypair files."""

import base64
import json

import pytest
from solders.keypair import Keypair

from oracle_gateway.credentials import (
    SECRET_KEY_LEN,
    encode_secret,
    generate,
    load_keypair_file,
    load_signer,
    save_keypair_file,
)
from oracle_gateway.errors import ErrorKind, InvalidCredential


@pytest.fixture
def keypair():
    return Keypair.from_seed(bytes([42]) * 32)


class TestLoadSigner:
    def test_round_trip(self, keypair):
        assert load_signer(encode_secret(keypair)).pubkey() == keypair.pubkey()

    def test_surrounding_whitespace_ignored(self, keypair):
        assert load_signer(f"  {encode_secret(keypair)}\n").pubkey() == keypair.pubkey()

    def test_not_base64(self):
        with pytest.raises(InvalidCredential) as exc_info:
            load_signer("!!!!", field="payerSecretKey")
        assert exc_info.value.kind is ErrorKind.CREDENTIAL
        assert exc_info.value.details == {"field": "payerSecretKey"}

    def test_wrong_length(self, keypair):
        short = base64.b64encode(bytes(keypair)[:32]).decode()
        with pytest.raises(InvalidCredential, match="64 bytes"):
            load_signer(short)

    def test_mismatched_halves(self, keypair):
        other = Keypair.from_seed(bytes([7]) * 32)
        forged = base64.b64encode(bytes(keypair)[:32] + bytes(other.pubkey())).decode()
        with pytest.raises(InvalidCredential, match="does not match"):
            load_signer(forged)

    @pytest.mark.parametrize("value", [None, "", "   ", 12345, ["a"]])
    def test_non_string(self, value):
        with pytest.raises(InvalidCredential):
            load_signer(value)

    def test_message_never_contains_secret(self, keypair):
        secret = base64.b64encode(bytes(keypair)[:48]).decode()
        with pytest.raises(InvalidCredential) as exc_info:
            load_signer(secret)
        assert secret not in str(exc_info.value)


class TestKeypairFiles:
    def test_save_and_load(self, tmp_path, keypair):
        path = tmp_path / "keys" / "id.json"
        save_keypair_file(keypair, path)
        data = json.loads(path.read_text())
        assert len(data) == SECRET_KEY_LEN
        assert load_keypair_file(path).pubkey() == keypair.pubkey()

    def test_not_an_array(self, tmp_path):
        path = tmp_path / "id.json"
        path.write_text('{"key": 1}')
        with pytest.raises(InvalidCredential):
            load_keypair_file(path)

    def test_values_out_of_byte_range(self, tmp_path):
        path = tmp_path / "id.json"
        path.write_text(json.dumps([300] * 64))
        with pytest.raises(InvalidCredential):
            load_keypair_file(path)


def test_generate_is_random():
    assert generate().pubkey() != generate().pubkey()
