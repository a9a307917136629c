"""AntelopeCodec: Binary encoding of ledger names, actions and transactions.

Only the subset needed to relay a single ``pushtx`` action is implemented:
account names, varuint32 lengths, action payloads and the transaction
header/body layout that nodeos expects in ``packed_trx``.

.. code-block:: python

    >>> name_to_int("eosio")
    6138663577826885632
    >>> varuint32(300).hex()
    'ac02'
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

NAME_CHARS = ".12345abcdefghijklmnopqrstuvwxyz"
MAX_NAME_LENGTH = 13

# Context-free data is never attached, so its digest is all zeroes.
EMPTY_CFD_DIGEST = bytes(32)


def _char_to_symbol(c: str) -> int:
    if "a" <= c <= "z":
        return ord(c) - ord("a") + 6
    if "1" <= c <= "5":
        return ord(c) - ord("1") + 1
    if c == ".":
        return 0
    raise ValueError(f"Invalid character {c!r} in name")


def name_to_int(name: str) -> int:
    """Encode an account/action name into its 64-bit integer form.

    :param name: Name of at most 13 characters from ``.12345a-z``.
    :returns: Encoded unsigned 64-bit value.
    :raises ValueError: If the name is too long or has invalid characters.
    """
    if len(name) > MAX_NAME_LENGTH:
        raise ValueError(f"Name too long: {name!r}")

    value = 0
    for i, c in enumerate(name[:12]):
        value |= (_char_to_symbol(c) & 0x1F) << (64 - 5 * (i + 1))

    if len(name) == MAX_NAME_LENGTH:
        last = _char_to_symbol(name[12])
        if last > 0x0F:
            raise ValueError(f"Invalid 13th character in name: {name!r}")
        value |= last

    return value


def int_to_name(value: int) -> str:
    """Decode a 64-bit integer back into its name string."""
    chars = []
    tmp = value
    for i in range(MAX_NAME_LENGTH):
        mask = 0x0F if i == 0 else 0x1F
        chars.append(NAME_CHARS[tmp & mask])
        tmp >>= 4 if i == 0 else 5
    return "".join(reversed(chars)).rstrip(".")


def pack_name(name: str) -> bytes:
    return struct.pack("<Q", name_to_int(name))


def varuint32(value: int) -> bytes:
    """Encode an unsigned integer as LEB128 (varuint32).

    :param value: Non-negative integer below 2**32.
    :returns: Encoded bytes.
    :raises ValueError: If value is out of range.
    """
    if value < 0 or value >= 1 << 32:
        raise ValueError(f"varuint32 out of range: {value}")

    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def pack_bytes(data: bytes) -> bytes:
    return varuint32(len(data)) + data


@dataclass(frozen=True)
class Action:
    """A single ledger action with pre-serialized data.

    :ivar account: Contract account receiving the action.
    :ivar name: Action name.
    :ivar authorization: (actor, permission) pairs authorizing the action.
    :ivar data: Serialized action payload.
    """

    account: str
    name: str
    authorization: tuple[tuple[str, str], ...]
    data: bytes

    def pack(self) -> bytes:
        out = bytearray(pack_name(self.account))
        out += pack_name(self.name)
        out += varuint32(len(self.authorization))
        for actor, permission in self.authorization:
            out += pack_name(actor)
            out += pack_name(permission)
        out += pack_bytes(self.data)
        return bytes(out)


def pack_pushtx_data(
    miner: str, rlptx: bytes, min_inclusion_price: int | None = None
) -> bytes:
    """Serialize the ``pushtx`` action payload.

    The ``min_inclusion_price`` field is a binary extension: it is omitted
    entirely when ``None`` so legacy contracts can still decode the payload.

    :param miner: Miner account name.
    :param rlptx: Raw EVM transaction bytes.
    :param min_inclusion_price: Optional minimum inclusion price.
    :returns: Serialized payload.
    """
    data = pack_name(miner) + pack_bytes(rlptx)
    if min_inclusion_price is not None:
        data += b"\x01" + struct.pack("<Q", min_inclusion_price)
    return data


def tapos_from_block_id(block_id: str) -> tuple[int, int]:
    """Derive TAPoS reference fields from a block id.

    :param block_id: Hex-encoded 32-byte block id.
    :returns: Tuple of (ref_block_num, ref_block_prefix).
    """
    raw = bytes.fromhex(block_id)
    if len(raw) != 32:
        raise ValueError(f"Invalid block id length: {len(raw)}")
    block_num = int.from_bytes(raw[0:4], "big")
    ref_block_prefix = int.from_bytes(raw[8:12], "little")
    return block_num & 0xFFFF, ref_block_prefix


def parse_block_time(value: str) -> datetime:
    """Parse a ledger timestamp such as ``2024-05-01T12:00:00.500``."""
    parsed = datetime.fromisoformat(value.rstrip("Z"))
    return parsed.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class TransactionHeader:
    """Transaction header fields.

    :ivar expiration: Expiration as unix seconds.
    :ivar ref_block_num: Low 16 bits of the referenced block number.
    :ivar ref_block_prefix: TAPoS prefix of the referenced block id.
    """

    expiration: int
    ref_block_num: int
    ref_block_prefix: int
    max_net_usage_words: int = 0
    max_cpu_usage_ms: int = 0
    delay_sec: int = 0

    @classmethod
    def from_chain_info(cls, info: dict[str, Any], expire_sec: int) -> TransactionHeader:
        """Build a header referencing the last irreversible block.

        Expiration is computed from the ledger's head block time rather than
        the local clock.

        :param info: Response of ``get_info``.
        :param expire_sec: Seconds after head block time the tx stays valid.
        :returns: TransactionHeader instance.
        """
        head_time = parse_block_time(info["head_block_time"])
        block_id = info.get("last_irreversible_block_id") or info["head_block_id"]
        ref_block_num, ref_block_prefix = tapos_from_block_id(block_id)
        return cls(
            expiration=int(head_time.timestamp()) + expire_sec,
            ref_block_num=ref_block_num,
            ref_block_prefix=ref_block_prefix,
        )

    def pack(self) -> bytes:
        return (
            struct.pack("<IHI", self.expiration, self.ref_block_num, self.ref_block_prefix)
            + varuint32(self.max_net_usage_words)
            + struct.pack("<B", self.max_cpu_usage_ms)
            + varuint32(self.delay_sec)
        )


@dataclass(frozen=True)
class Transaction:
    header: TransactionHeader
    actions: tuple[Action, ...] = field(default_factory=tuple)

    def pack(self) -> bytes:
        out = bytearray(self.header.pack())
        out += varuint32(0)  # context_free_actions
        out += varuint32(len(self.actions))
        for action in self.actions:
            out += action.pack()
        out += varuint32(0)  # transaction_extensions
        return bytes(out)


def signing_digest(chain_id: str, packed_trx: bytes) -> bytes:
    """Compute the digest a transaction signature commits to.

    :param chain_id: Hex-encoded chain id.
    :param packed_trx: Serialized transaction.
    :returns: 32-byte SHA-256 digest.
    """
    return hashlib.sha256(bytes.fromhex(chain_id) + packed_trx + EMPTY_CFD_DIGEST).digest()
