#!/usr/bin/env python3
"""
Security self-test for confidentiality, integrity and delegation.

Run from project root:
    python security_test.py

Everything happens against a throw-away in-memory store with freshly
generated keys; nothing touches the configured database.

What it checks:
1) Confidentiality: a 1,500-byte file encrypted under the patient's public key
   decrypts only with the patient's private key; repeated encryption of the
   same block gives different ciphertexts.
2) Integrity: flipping one byte of a delegation bundle's ciphertext, tag or IV
   makes AES-GCM authentication fail.
3) Access control: a doctor recovers the patient key only while the grant is
   active; revocation and expiry both deny access.
"""

import binascii
import os
import random
import sys
from datetime import timedelta

from config import Settings
from db import init_schema, make_engine, make_session_factory
from elgamal import ElGamalCipher, KeyPairGenerator
from errors import AccessDeniedError, HealthCryptoError, IntegrityError
from file_crypto import FileCryptoEngine
from grants import AccessGrantProtocol
from models import utcnow

TEST_STATE = {"failures": 0}


class SteppingClock:
    def __init__(self):
        self.now = utcnow()

    def __call__(self):
        return self.now


def flip_one_byte(b: bytes) -> bytes:
    if not b:
        return b
    i = random.randrange(len(b))
    flipped = bytes([b[i] ^ 0x01])
    return b[:i] + flipped + b[i+1:]

def print_pass(label: str):
    print(f"[PASS] {label}")

def print_fail(label: str, err: Exception | str):
    TEST_STATE["failures"] += 1
    print(f"[FAIL] {label} -> {err}")

def sample_hex(b: bytes | None, n: int = 32) -> str:
    if not b:
        return "<None>"
    return binascii.hexlify(b[:n]).decode()

def expect_failure(label: str, exc_type, fn):
    try:
        fn()
        print_fail(label, "succeeded unexpectedly")
    except exc_type:
        print_pass(label)
    except HealthCryptoError as e:
        print_fail(label, f"wrong error {type(e).__name__}: {e}")


def run_confidentiality_checks(engine: FileCryptoEngine, patient, doctor):
    print("\n==== Confidentiality Test ====")
    original = os.urandom(1500)
    enc = engine.encrypt_file(original, patient.public, mime_type="application/pdf", owner_id="patient1")
    print(f"  chunked={enc.chunked} chunks={len(enc.payload)} size={enc.original_size}")

    if engine.decrypt_file(enc, patient.private) == original:
        print_pass("file decrypts with the patient key")
    else:
        print_fail("file decrypt (patient key)", "bytes differ")

    try:
        wrong = engine.decrypt_file(enc, doctor.private)
        if wrong == original:
            print_fail("wrong key should not decrypt", "plaintext recovered")
        else:
            print_pass("wrong key does not recover plaintext")
    except IntegrityError:
        print_pass("wrong key rejected")

    cipher = ElGamalCipher(engine.params)
    a = cipher.encrypt(42, patient.public)
    b = cipher.encrypt(42, patient.public)
    if (a.c1, a.c2) != (b.c1, b.c2):
        print_pass("same plaintext gives different ciphertexts")
    else:
        print_fail("probabilistic encryption", "identical ciphertexts")
    return original, enc


def run_delegation_checks(protocol: AccessGrantProtocol, clock: SteppingClock, engine, patient, doctor, original, enc):
    print("\n==== Delegation Test ====")
    row = protocol.grant("patient1", "doctor1", patient.private, doctor.public, expires_in_days=7)
    print(f"  grant id={row.id} expires_at={row.expires_at}")
    print(f"  iv_hex ={sample_hex(row.iv)}")
    print(f"  ct_hex ={sample_hex(row.encrypted_private_key)}")

    try:
        recovered = protocol.recover("patient1", "doctor1", doctor.private)
        if recovered == patient.private and engine.decrypt_file(enc, recovered) == original:
            print_pass("doctor recovers patient key and decrypts the file")
        else:
            print_fail("doctor recovery", "recovered key does not decrypt the file")
    except HealthCryptoError as e:
        print_fail("doctor recovery", e)

    print("\n==== Integrity Test ====")
    bundle = row.bundle_document()
    for field in ("encrypted_private_key", "auth_tag", "iv"):
        tampered = row.__class__(
            enc_aes_key_c1=row.enc_aes_key_c1,
            enc_aes_key_c2=row.enc_aes_key_c2,
            iv=row.iv,
            auth_tag=row.auth_tag,
            encrypted_private_key=row.encrypted_private_key,
        )
        setattr(tampered, field, flip_one_byte(getattr(row, field)))
        expect_failure(f"tampered {field} rejected", IntegrityError,
                       lambda: protocol.open_bundle(tampered, doctor.private))
    expect_failure("other doctor's key rejected", IntegrityError,
                   lambda: protocol.open_bundle(bundle, patient.private))

    print("\n==== Access Control Test ====")
    clock.now = clock.now + timedelta(days=8)
    expect_failure("expired grant denied", AccessDeniedError,
                   lambda: protocol.recover("patient1", "doctor1", doctor.private))
    clock.now = clock.now - timedelta(days=8)
    protocol.revoke("patient1", "doctor1")
    expect_failure("revoked grant denied", AccessDeniedError,
                   lambda: protocol.recover("patient1", "doctor1", doctor.private))
    expect_failure("missing grant denied", AccessDeniedError,
                   lambda: protocol.recover("patient1", "doctor2", doctor.private))


def main():
    print("=== Security Self-Test ===")
    TEST_STATE["failures"] = 0
    settings = Settings(database_url="sqlite://")
    params = settings.domain_parameters()

    engine = make_engine(settings.database_url)
    init_schema(engine)
    session_factory = make_session_factory(engine)
    clock = SteppingClock()

    gen = KeyPairGenerator(params, settings.min_modulus_bits)
    patient, doctor = gen.generate(), gen.generate()
    file_engine = FileCryptoEngine(params, settings.single_block_threshold)
    protocol = AccessGrantProtocol(session_factory, params, clock=clock)

    original, enc = run_confidentiality_checks(file_engine, patient, doctor)
    run_delegation_checks(protocol, clock, file_engine, patient, doctor, original, enc)

    print("\n=== Summary ===")
    if TEST_STATE["failures"]:
        print(f"- Detected {TEST_STATE['failures']} failure(s). Review the log above.")
        sys.exit(1)
    print("- Confidentiality maintained: only the owner's private key decrypts the file.")
    print("- Integrity maintained: every tampered bundle field failed AES-GCM authentication.")
    print("- Access control upheld: revoked, expired and missing grants were all refused.")

if __name__ == "__main__":
    main()
