"""Arweave wallet loading and ANS-104 data-item signing for AO messages.

AO message units accept signed ANS-104 data items. Layout:
  sig type (2 LE) | signature (512) | owner (512) | target flag (+32) |
  anchor flag (+32) | tag count (8 LE) | tag bytes len (8 LE) | avro tags | data
The signature covers the deep hash of the item fields; the item id is
sha256(signature).
"""

from __future__ import annotations

import base64
import hashlib
import json
import os
from dataclasses import dataclass
from pathlib import Path

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from loguru import logger

ARWEAVE_SIGNATURE_TYPE = 1
SIGNATURE_LENGTH = 512
OWNER_LENGTH = 512
REQUIRED_JWK_FIELDS = ("d", "dp", "dq", "e", "kty", "n", "p", "q", "qi")


def b64url_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_int(value: str) -> int:
    return int.from_bytes(b64url_decode(value), "big")


def deep_hash(data: bytes | list) -> bytes:
    """Arweave deep hash (SHA-384) over nested byte lists."""
    if isinstance(data, list):
        acc = hashlib.sha384(b"list" + str(len(data)).encode()).digest()
        for chunk in data:
            acc = hashlib.sha384(acc + deep_hash(chunk)).digest()
        return acc
    tag = hashlib.sha384(b"blob" + str(len(data)).encode()).digest()
    return hashlib.sha384(tag + hashlib.sha384(data).digest()).digest()


def _avro_long(n: int) -> bytes:
    zigzag = (n << 1) ^ (n >> 63)
    out = bytearray()
    while zigzag & ~0x7F:
        out.append((zigzag & 0x7F) | 0x80)
        zigzag >>= 7
    out.append(zigzag)
    return bytes(out)


def encode_tags(tags: list[tuple[str, str]]) -> bytes:
    """Avro array of {name: bytes, value: bytes}. Empty list encodes to b""."""
    if not tags:
        return b""
    out = bytearray(_avro_long(len(tags)))
    for name, value in tags:
        for part in (name.encode(), value.encode()):
            out += _avro_long(len(part))
            out += part
    out += _avro_long(0)
    return bytes(out)


@dataclass(frozen=True)
class DataItem:
    id: str
    raw: bytes


class ArweaveSigner:
    """RSA-PSS signer for one Arweave JWK. __repr__ shows only the address."""

    def __init__(self, jwk: dict) -> None:
        missing = [f for f in REQUIRED_JWK_FIELDS if not jwk.get(f)]
        if missing:
            raise ValueError(f"Invalid wallet format. Missing fields: {', '.join(missing)}")
        if jwk["kty"] != "RSA":
            raise ValueError("Invalid wallet type. Expected RSA key")

        public = rsa.RSAPublicNumbers(e=_b64url_int(jwk["e"]), n=_b64url_int(jwk["n"]))
        private = rsa.RSAPrivateNumbers(
            p=_b64url_int(jwk["p"]),
            q=_b64url_int(jwk["q"]),
            d=_b64url_int(jwk["d"]),
            dmp1=_b64url_int(jwk["dp"]),
            dmq1=_b64url_int(jwk["dq"]),
            iqmp=_b64url_int(jwk["qi"]),
            public_numbers=public,
        )
        self._key = private.private_key()
        self._owner = b64url_decode(jwk["n"])
        self._address = b64url_encode(hashlib.sha256(self._owner).digest())

    @classmethod
    def from_file(cls, path: str | Path) -> ArweaveSigner:
        jwk = json.loads(Path(path).read_text(encoding="utf-8"))
        signer = cls(jwk)
        logger.info(f"[AO] Loaded wallet: {signer.address}")
        return signer

    def __repr__(self) -> str:
        return f"ArweaveSigner(address={self._address})"

    @property
    def address(self) -> str:
        return self._address

    @property
    def owner(self) -> bytes:
        return self._owner

    def sign(self, message: bytes) -> bytes:
        return self._key.sign(
            message,
            padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=32),
            hashes.SHA256(),
        )

    def create_data_item(
        self,
        data: bytes,
        *,
        target: str = "",
        tags: list[tuple[str, str]] | None = None,
        anchor: bytes | None = None,
    ) -> DataItem:
        target_bytes = b64url_decode(target) if target else b""
        if target_bytes and len(target_bytes) != 32:
            raise ValueError(f"Target must decode to 32 bytes, got {len(target_bytes)}")
        anchor_bytes = anchor if anchor is not None else os.urandom(32)
        if anchor_bytes and len(anchor_bytes) != 32:
            raise ValueError("Anchor must be 32 bytes")
        tag_list = tags or []
        tag_bytes = encode_tags(tag_list)

        signature = self.sign(
            deep_hash(
                [
                    b"dataitem",
                    b"1",
                    str(ARWEAVE_SIGNATURE_TYPE).encode(),
                    self._owner,
                    target_bytes,
                    anchor_bytes,
                    tag_bytes,
                    data,
                ]
            )
        )
        if len(signature) != SIGNATURE_LENGTH or len(self._owner) != OWNER_LENGTH:
            raise ValueError("Only 4096-bit Arweave keys are supported")

        raw = bytearray(ARWEAVE_SIGNATURE_TYPE.to_bytes(2, "little"))
        raw += signature
        raw += self._owner
        raw += (b"\x01" + target_bytes) if target_bytes else b"\x00"
        raw += (b"\x01" + anchor_bytes) if anchor_bytes else b"\x00"
        raw += len(tag_list).to_bytes(8, "little")
        raw += len(tag_bytes).to_bytes(8, "little")
        raw += tag_bytes
        raw += data

        item_id = b64url_encode(hashlib.sha256(signature).digest())
        return DataItem(id=item_id, raw=bytes(raw))
