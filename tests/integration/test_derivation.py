import json
import struct
import zlib
from unittest.mock import patch

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from solagent_forge import derivation
from solagent_forge.derivation import (
    compute_discriminator,
    decode_idl_account,
    derive_pda,
    find_program_address,
    idl_address,
    to_snake_case,
)
from solagent_forge.errors import (
    DerivationExhausted,
    InvalidArgument,
    InvalidProgramId,
    InvalidSeeds,
    MissingSeeds,
)

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGFPYsWEqXDZMDF4Z4wZ5V9"


# --- PDA derivation ---

def test_derive_pda_matches_solders():
    """The bump search agrees with the reference implementation."""
    program_id = Pubkey.from_string(TOKEN_PROGRAM_ID)
    seeds = [b"metadata", bytes(Keypair().pubkey())]

    derived = derive_pda(TOKEN_PROGRAM_ID, seeds)
    expected_address, expected_bump = Pubkey.find_program_address(seeds, program_id)

    assert derived.address == expected_address
    assert derived.bump == expected_bump


def test_derive_pda_is_deterministic():
    seeds = [b"metadata", b"test"]
    first = derive_pda(SYSTEM_PROGRAM_ID, seeds)
    for _ in range(5):
        assert derive_pda(SYSTEM_PROGRAM_ID, seeds) == first


def test_derived_address_is_off_curve():
    for index in range(20):
        derived = derive_pda(SYSTEM_PROGRAM_ID, [b"vault", index.to_bytes(8, "little")])
        assert 0 <= derived.bump <= 255
        assert not derived.address.is_on_curve()


def test_seed_order_matters():
    a = derive_pda(SYSTEM_PROGRAM_ID, [b"metadata", b"test"])
    b = derive_pda(SYSTEM_PROGRAM_ID, [b"test", b"metadata"])
    assert a.address != b.address


class PanicException(BaseException):
    """Same name and base class as the pyo3 panic solders raises."""


def test_invalid_program_id_rejected_before_search():
    with patch("solagent_forge.derivation.find_program_address") as mock_find:
        with pytest.raises(InvalidProgramId) as exc_info:
            derive_pda("invalid", [b"seed"])
    assert "Invalid program ID" in exc_info.value.message
    mock_find.assert_not_called()


def test_missing_seeds():
    with pytest.raises(MissingSeeds):
        derive_pda(SYSTEM_PROGRAM_ID, [])


def test_seed_length_limit():
    derive_pda(SYSTEM_PROGRAM_ID, [b"x" * 32])
    with pytest.raises(InvalidSeeds) as exc_info:
        derive_pda(SYSTEM_PROGRAM_ID, [b"x" * 33])
    assert "32 bytes" in exc_info.value.message


def test_seed_count_limit_leaves_room_for_bump():
    derived = derive_pda(SYSTEM_PROGRAM_ID, [b"s"] * 15)
    expected = Pubkey.find_program_address([b"s"] * 15, Pubkey.from_string(SYSTEM_PROGRAM_ID))
    assert (derived.address, derived.bump) == expected

    with pytest.raises(InvalidSeeds) as exc_info:
        derive_pda(SYSTEM_PROGRAM_ID, [b"s"] * 16)
    assert "Too many seeds" in exc_info.value.message


def test_derivation_exhausted_when_search_panics():
    program_id = Pubkey.from_string(SYSTEM_PROGRAM_ID)
    with patch("solagent_forge.derivation.Pubkey") as MockPubkey:
        MockPubkey.find_program_address.side_effect = PanicException(
            "Unable to find a viable program address bump seed"
        )
        with pytest.raises(DerivationExhausted) as exc_info:
            find_program_address([b"seed"], program_id)
    assert exc_info.value.kind == "derivation_exhausted"


def test_other_base_exceptions_propagate():
    program_id = Pubkey.from_string(SYSTEM_PROGRAM_ID)
    with patch("solagent_forge.derivation.Pubkey") as MockPubkey:
        MockPubkey.find_program_address.side_effect = KeyboardInterrupt
        with pytest.raises(KeyboardInterrupt):
            find_program_address([b"seed"], program_id)


# --- Discriminators ---

def test_initialize_discriminator_known_value():
    # Anchor's well-known discriminator for `initialize`
    assert compute_discriminator("initialize") == bytes([175, 175, 109, 31, 13, 152, 155, 237])


def test_discriminator_stable_and_distinct():
    first = compute_discriminator("initialize", "global")
    assert compute_discriminator("initialize", "global") == first
    assert len(first) == 8
    assert compute_discriminator("transfer", "global") != first


def test_discriminator_namespace_sensitivity():
    assert compute_discriminator("x", "ns1") != compute_discriminator("x", "ns2")
    assert compute_discriminator("Vault", "account") != compute_discriminator("Vault", "global")


def test_empty_instruction_name_rejected():
    with pytest.raises(InvalidArgument):
        compute_discriminator("")


@pytest.mark.parametrize(
    "name, expected",
    [
        ("initialize", "initialize"),
        ("initializeVault", "initialize_vault"),
        ("withdraw_all", "withdraw_all"),
        ("setAuthorityV2", "set_authority_v2"),
        ("setURI", "set_uri"),
        ("HTTPServerInit", "http_server_init"),
        ("getV2Price", "get_v2_price"),
    ],
)
def test_to_snake_case(name, expected):
    assert to_snake_case(name) == expected


# --- Anchor IDL accounts ---

def test_idl_address_uses_anchor_scheme():
    program_id = Pubkey.from_string(TOKEN_PROGRAM_ID)
    base, _ = Pubkey.find_program_address([], program_id)
    assert idl_address(program_id) == Pubkey.create_with_seed(base, "anchor:idl", program_id)


def _idl_account_data(idl: dict) -> bytes:
    payload = zlib.compress(json.dumps(idl).encode("utf-8"))
    authority = bytes(Keypair().pubkey())
    return b"\x18\x46\x62\xbf\x3a\x90\x7b\x9e" + authority + struct.pack("<I", len(payload)) + payload


def test_decode_idl_account():
    idl = {"version": "0.1.0", "name": "vault", "instructions": [{"name": "initialize"}]}
    assert decode_idl_account(_idl_account_data(idl)) == idl


def test_decode_idl_account_rejects_short_data():
    with pytest.raises(ValueError):
        decode_idl_account(b"\x00" * (derivation.IDL_HEADER_LEN - 1))
