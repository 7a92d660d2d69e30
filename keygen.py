#!/usr/bin/env python3
"""
Generate an ElGamal key pair for a patient or doctor (run from project root).

Writes into the data directory:
    <user>_public.json       public key document {p, g, y}
    <user>_private.json      private key, protected with the user's password
                             (scrypt -> AES-256-GCM), fields base64 encoded
    <user>_private.sealed    only when ENCRYPTION_KEY is set: the private key
                             sealed under the server master key

Usage:
    python keygen.py
"""

import getpass
import json
import sys
from pathlib import Path

from config import configure_logging, load_settings
from elgamal import DomainParameters, KeyPair, KeyPairGenerator, PrivateKey
from errors import HealthCryptoError
from key_wrap import KeyWrapper, protect_with_password, unprotect_with_password
from schemas import b64, load_private_key, serialize_private_key, serialize_public_key, unb64


def write_key_files(keypair: KeyPair, password: str, out_dir: Path, user: str):
    out_dir.mkdir(parents=True, exist_ok=True)
    pub_path = out_dir / f"{user}_public.json"
    priv_path = out_dir / f"{user}_private.json"

    pub_path.write_bytes(serialize_public_key(keypair.public))
    salt, nonce, ct = protect_with_password(serialize_private_key(keypair.private), password)
    priv_path.write_text(json.dumps({"salt": b64(salt), "nonce": b64(nonce), "ciphertext": b64(ct)}))
    return pub_path, priv_path


def read_private_key_file(path: Path, password: str, params: DomainParameters) -> PrivateKey:
    doc = json.loads(path.read_text())
    raw = unprotect_with_password(
        unb64(doc["ciphertext"]), unb64(doc["nonce"]), unb64(doc["salt"]), password
    )
    return load_private_key(raw, params)


def write_sealed_private_key(keypair: KeyPair, wrapper: KeyWrapper, out_dir: Path, user: str) -> Path:
    out_dir.mkdir(parents=True, exist_ok=True)
    path = out_dir / f"{user}_private.sealed"
    path.write_text(wrapper.seal(serialize_private_key(keypair.private)))
    return path


def read_sealed_private_key(path: Path, wrapper: KeyWrapper, params: DomainParameters) -> PrivateKey:
    return load_private_key(wrapper.open_sealed(path.read_text().strip()), params)


def main():
    settings = load_settings()
    configure_logging(settings)
    params = settings.domain_parameters()

    print("=== ElGamal key generation ===")
    user = input("User id (e.g. patient12 / doctor3): ").strip()
    if not user:
        print("User id is required."); sys.exit(1)
    password = getpass.getpass("Password to protect the private key: ").strip()
    confirm = getpass.getpass("Repeat password: ").strip()
    if not password or password != confirm:
        print("Passwords are empty or do not match."); sys.exit(1)

    try:
        keypair = KeyPairGenerator(params, settings.min_modulus_bits).generate()
        pub_path, priv_path = write_key_files(keypair, password, settings.data_dir / "keys", user)
        # confirm the written file opens with the password
        read_private_key_file(priv_path, password, params)
        sealed_path = None
        if settings.encryption_key:
            wrapper = KeyWrapper(master_key=settings.encryption_key)
            sealed_path = write_sealed_private_key(keypair, wrapper, settings.data_dir / "keys", user)
    except HealthCryptoError as e:
        print(f"Key generation failed: {e}"); sys.exit(1)

    print(f"Public key : {pub_path}")
    print(f"Private key: {priv_path} (password protected)")
    if sealed_path:
        print(f"Sealed key : {sealed_path} (server master key)")

if __name__ == "__main__":
    main()
