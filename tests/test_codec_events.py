"""Tests for verdict encoding, ciphertext hashing and log decoding."""

import pytest
from eth_abi import encode
from eth_utils import keccak, to_hex

from conftest import CONTRACT_ADDRESS, REQUESTER_ADDRESS, commitment_log, reveal_log, topic_int
from verdict_service.codec import decode_verdict, encode_verdict, keccak_hex
from verdict_service.errors import ConfigurationMissing, RevealDecodeFailed
from verdict_service.events import (
    VERDICT_COMMITTED_TOPIC,
    VERDICT_REVEALED_TOPIC,
    LogDecodeError,
    decode_commitment_request_id,
    decode_reveal_log,
    find_event_log,
)
from verdict_service.timelock import Ciphertext, load_encryptor


def test_verdict_is_abi_string():
    encoded = encode_verdict("Verified")

    # offset word, length word, one padded data word
    assert len(encoded) == 96
    assert int.from_bytes(encoded[32:64], "big") == len("Verified")
    assert encoded == encode(["string"], ["Verified"])
    assert decode_verdict(encoded) == "Verified"


def test_unicode_verdict():
    assert decode_verdict(encode_verdict("Vérifié ✓")) == "Vérifié ✓"


def test_encode_rejects_non_string():
    with pytest.raises(TypeError):
        encode_verdict(b"Verified")


@pytest.mark.parametrize("payload", [b"", b"\x01\x02", b"Verified"])
def test_decode_failure(payload):
    with pytest.raises(RevealDecodeFailed) as exc_info:
        decode_verdict(payload)
    assert exc_info.value.raw_payload == payload


def test_event_topics():
    assert VERDICT_COMMITTED_TOPIC == to_hex(keccak(text="VerdictCommitted(uint256,address,uint256,bytes32)"))
    assert VERDICT_REVEALED_TOPIC == to_hex(keccak(text="VerdictRevealed(uint256,address,bytes)"))


def test_ciphertext_hash_and_solidity_shape():
    ciphertext = Ciphertext(u_x=(1, 2), u_y=(3, 4), v=b"\xaa" * 32, w=b"\xbb" * 32)

    assert ciphertext.hash == keccak_hex(b"\xaa" * 32)
    assert ciphertext.to_solidity() == (([1, 2], [3, 4]), b"\xaa" * 32, b"\xbb" * 32)


def test_find_event_log_matches_topic_and_address():
    other_contract = commitment_log(1, address="0x" + "ef" * 20)
    other_event = reveal_log(2, b"")
    wanted = commitment_log(3, address=CONTRACT_ADDRESS.upper().replace("0X", "0x"))

    log = find_event_log([other_contract, other_event, wanted], VERDICT_COMMITTED_TOPIC, CONTRACT_ADDRESS)

    assert log is wanted
    assert decode_commitment_request_id(log) == "3"
    assert find_event_log([], VERDICT_COMMITTED_TOPIC, CONTRACT_ADDRESS) is None


def test_logs_with_bytes_fields():
    """web3 receipts carry HexBytes topics; plain bytes behave the same."""
    log = {
        "address": CONTRACT_ADDRESS,
        "topics": [bytes.fromhex(VERDICT_COMMITTED_TOPIC[2:]), (42).to_bytes(32, "big")],
        "data": b"",
    }
    assert find_event_log([log], VERDICT_COMMITTED_TOPIC, CONTRACT_ADDRESS) is log
    assert decode_commitment_request_id(log) == "42"


def test_decode_reveal_log():
    event = decode_reveal_log(reveal_log(2**200, encode_verdict("Verified")))

    assert event.protocol_request_id == str(2**200)
    assert event.requester.lower() == REQUESTER_ADDRESS
    assert decode_verdict(event.payload) == "Verified"
    assert event.transaction_hash == "0x" + "22" * 32
    assert event.block_number == 106


def test_decode_malformed_logs():
    with pytest.raises(LogDecodeError):
        decode_commitment_request_id({"topics": [VERDICT_COMMITTED_TOPIC]})
    with pytest.raises(LogDecodeError):
        decode_reveal_log({"topics": [VERDICT_REVEALED_TOPIC, topic_int(1)], "data": "0x"})
    with pytest.raises(LogDecodeError):
        decode_reveal_log({"topics": [VERDICT_REVEALED_TOPIC, topic_int(1), topic_int(2)], "data": "0x1234"})


class StubEncryptor:
    def __init__(self, scheme="bn254"):
        self.scheme = scheme

    def encrypt(self, payload, reveal_height):
        return Ciphertext(u_x=(0, 0), u_y=(0, 0), v=payload, w=b"")


stub_instance = StubEncryptor("prebuilt")
NOT_AN_ENCRYPTOR = 42


def test_load_encryptor_class_and_instance():
    built = load_encryptor(f"{__name__}:StubEncryptor", scheme="bls")
    assert isinstance(built, StubEncryptor)
    assert built.scheme == "bls"

    assert load_encryptor(f"{__name__}:stub_instance") is stub_instance


@pytest.mark.parametrize("target_path", ["no_colon", "not_a_module_xyz:Thing", f"{__name__}:missing_attr", f"{__name__}:NOT_AN_ENCRYPTOR"])
def test_load_encryptor_errors(target_path):
    with pytest.raises(ConfigurationMissing):
        load_encryptor(target_path)
