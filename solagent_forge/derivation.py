"""
Deterministic Solana address and discriminator derivations.

Everything in this module is pure.

* Program Derived Addresses: seed ceilings are checked here, the bump
  search from 255 downwards is solders' ``Pubkey.find_program_address``.
* Anchor discriminators: the first 8 bytes of
  ``SHA-256("<namespace>:<name>")``.
* Anchor IDL accounts: address derivation and decoding of the
  zlib-compressed JSON payload.
"""

import hashlib
import json
import re
import struct
import zlib
from typing import Any, Dict, List, NamedTuple, Sequence

from solders.pubkey import Pubkey

from .errors import (
    DerivationExhausted,
    InvalidArgument,
    InvalidProgramId,
    InvalidSeeds,
    MissingSeeds,
)

MAX_SEED_LEN = 32
MAX_SEEDS = 16

DEFAULT_NAMESPACE = "global"
DISCRIMINATOR_LEN = 8

IDL_SEED = "anchor:idl"
# discriminator (8) + authority (32) + data length (u32)
IDL_HEADER_LEN = 8 + 32 + 4


class DerivedAddress(NamedTuple):
    address: Pubkey
    bump: int


def parse_program_id(program_id: str) -> Pubkey:
    """Parses a base58 program id, raising :class:`InvalidProgramId`."""
    if not isinstance(program_id, str) or not program_id:
        raise InvalidProgramId("Invalid program ID: a base58 public key is required", programId=program_id)
    try:
        return Pubkey.from_string(program_id)
    except ValueError as e:
        raise InvalidProgramId(f"Invalid program ID: {e}", programId=program_id)


def validate_seeds(seeds: Sequence[bytes]) -> List[bytes]:
    """Checks the seed ceilings before any search.

    The bump byte is appended as one more seed, so callers get
    ``MAX_SEEDS - 1`` slots.
    """
    if not seeds:
        raise MissingSeeds("Must provide at least one seed (seeds or seedBytes)")
    if len(seeds) > MAX_SEEDS - 1:
        raise InvalidSeeds(
            f"Too many seeds: {len(seeds)} given, at most {MAX_SEEDS - 1} allowed "
            f"(the bump seed takes slot {MAX_SEEDS})"
        )
    for index, seed in enumerate(seeds):
        if len(seed) > MAX_SEED_LEN:
            raise InvalidSeeds(
                f"Seed {index} is {len(seed)} bytes long, at most {MAX_SEED_LEN} bytes allowed"
            )
    return [bytes(seed) for seed in seeds]


def _search(seeds: Sequence[bytes], program_id: Pubkey) -> DerivedAddress:
    try:
        address, bump = Pubkey.find_program_address(list(seeds), program_id)
    except BaseException as e:
        # solders reports an exhausted search as a pyo3 PanicException,
        # which derives from BaseException
        if type(e).__name__ != "PanicException":
            raise
        raise DerivationExhausted(
            "Unable to find a viable program address bump seed",
            details="All 256 bump candidates produced on-curve addresses",
        ) from e
    return DerivedAddress(address, bump)


def find_program_address(seeds: Sequence[bytes], program_id: Pubkey) -> DerivedAddress:
    """Searches bumps 255..0 for the first off-curve address.

    Raises :class:`MissingSeeds` or :class:`InvalidSeeds` before searching,
    and :class:`DerivationExhausted` if every bump lands on the curve.
    """
    return _search(validate_seeds(seeds), program_id)


def derive_pda(program_id: str, seeds: Sequence[bytes]) -> DerivedAddress:
    """Validates ``program_id`` then runs :func:`find_program_address`."""
    program_key = parse_program_id(program_id)
    return find_program_address(seeds, program_key)


def compute_discriminator(instruction_name: str, namespace: str = DEFAULT_NAMESPACE) -> bytes:
    if not instruction_name:
        raise InvalidArgument("instructionName is required and must be non-empty")
    if namespace is None:
        namespace = DEFAULT_NAMESPACE
    preimage = f"{namespace}:{instruction_name}"
    return hashlib.sha256(preimage.encode("utf-8")).digest()[:DISCRIMINATOR_LEN]


def to_snake_case(name: str) -> str:
    """``initializeVault`` -> ``initialize_vault``, as Anchor names instructions.

    Runs of capitals stay one word: ``setURI`` -> ``set_uri``,
    ``HTTPServer`` -> ``http_server``.
    """
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    name = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name)
    return name.lower()


def idl_address(program_id: Pubkey) -> Pubkey:
    """Address of the account where ``anchor idl init`` stores the IDL.

    Anchor uses ``create_with_seed(base, "anchor:idl", program_id)`` where
    ``base`` is the program's PDA for an empty seed list.
    """
    base, _ = _search([], program_id)
    return Pubkey.create_with_seed(base, IDL_SEED, program_id)


def decode_idl_account(data: bytes) -> Dict[str, Any]:
    """Decodes an Anchor IDL account into the IDL JSON document.

    Layout: 8-byte account discriminator, 32-byte authority, little-endian
    u32 payload length, then the zlib-compressed JSON payload.
    """
    if len(data) < IDL_HEADER_LEN:
        raise ValueError(f"IDL account too short: {len(data)} bytes")
    (length,) = struct.unpack_from("<I", data, IDL_HEADER_LEN - 4)
    payload = data[IDL_HEADER_LEN:IDL_HEADER_LEN + length]
    if len(payload) < length:
        raise ValueError(f"IDL payload truncated: expected {length} bytes, got {len(payload)}")
    return json.loads(zlib.decompress(payload).decode("utf-8"))
