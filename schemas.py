"""
Serialized shapes for keys, ciphertext blocks and delegation bundles.

Integers are carried as decimal strings and binary values as base64, the
same JSON shapes the client apps and the database exchange.
"""

import base64
import binascii
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from elgamal import DomainParameters, EncryptedBlock, PrivateKey, PublicKey
from errors import KeyFormatError


def _check_decimal(v: str) -> str:
    if not (v.isascii() and v.isdigit()):
        raise ValueError("expected a non-negative decimal integer string")
    return v


class PublicKeyDocument(BaseModel):
    p: str
    g: str
    y: str

    @field_validator("p", "g", "y")
    @classmethod
    def check_decimal(cls, v: str) -> str:
        return _check_decimal(v)


class PrivateKeyDocument(BaseModel):
    p: str
    g: str
    x: str

    @field_validator("p", "g", "x")
    @classmethod
    def check_decimal(cls, v: str) -> str:
        return _check_decimal(v)


class EncryptedBlockDocument(BaseModel):
    c1: str
    c2: str

    @field_validator("c1", "c2")
    @classmethod
    def check_decimal(cls, v: str) -> str:
        return _check_decimal(v)

    @classmethod
    def from_block(cls, block: EncryptedBlock) -> "EncryptedBlockDocument":
        return cls(c1=str(block.c1), c2=str(block.c2))

    def to_block(self) -> EncryptedBlock:
        return EncryptedBlock(c1=int(self.c1), c2=int(self.c2))


class GrantBundleDocument(BaseModel):
    """The delegation bundle: ElGamal-wrapped AES key plus AES-GCM-wrapped private key."""
    model_config = ConfigDict(populate_by_name=True)

    encrypted_aes_key: EncryptedBlockDocument = Field(alias="encryptedAesKey")
    iv: str
    auth_tag: str = Field(alias="authTag")
    encrypted_private_key: str = Field(alias="encryptedPrivateKey")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def unb64(text: str) -> bytes:
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise KeyFormatError("invalid base64 field") from e


def _check_group(p: int, g: int, params: Optional[DomainParameters]) -> DomainParameters:
    key_params = DomainParameters(p=p, g=g)
    if params is not None and key_params != params:
        raise KeyFormatError("key belongs to a different ElGamal group")
    return params or key_params


# ----- private keys -----
def serialize_private_key(key: PrivateKey) -> bytes:
    doc = PrivateKeyDocument(p=str(key.params.p), g=str(key.params.g), x=str(key.x))
    return doc.model_dump_json().encode("utf-8")


def load_private_key(
    data: Union[PrivateKey, bytes, str], params: Optional[DomainParameters] = None
) -> PrivateKey:
    """Parse a serialized private key, checking it against ``params`` when given."""
    if isinstance(data, PrivateKey):
        _check_group(data.params.p, data.params.g, params)
        return data
    try:
        doc = PrivateKeyDocument.model_validate_json(data)
    except ValidationError as e:
        raise KeyFormatError(f"malformed private key: {e.error_count()} error(s)") from e
    group = _check_group(int(doc.p), int(doc.g), params)
    x = int(doc.x)
    if not 1 <= x <= group.p - 2:
        raise KeyFormatError("private exponent out of range")
    return PrivateKey(group, x)


# ----- public keys -----
def serialize_public_key(key: PublicKey) -> bytes:
    doc = PublicKeyDocument(p=str(key.params.p), g=str(key.params.g), y=str(key.y))
    return doc.model_dump_json().encode("utf-8")


def load_public_key(
    data: Union[PublicKey, bytes, str], params: Optional[DomainParameters] = None
) -> PublicKey:
    if isinstance(data, PublicKey):
        _check_group(data.params.p, data.params.g, params)
        return data
    try:
        doc = PublicKeyDocument.model_validate_json(data)
    except ValidationError as e:
        raise KeyFormatError(f"malformed public key: {e.error_count()} error(s)") from e
    group = _check_group(int(doc.p), int(doc.g), params)
    y = int(doc.y)
    if not 1 < y < group.p:
        raise KeyFormatError("public value out of range")
    return PublicKey(group, y)
