#!/usr/bin/env python3
"""Generate an Ed25519 key pair for signing content packs.

Usage:
  python scripts/generate_keys.py --out keys/pack
  # writes keys/pack.key (signing key, keep private) and keys/pack.pub (hex)
"""

import argparse
from pathlib import Path

import nacl.encoding
import nacl.signing


def main() -> None:
    ap = argparse.ArgumentParser(description=__doc__)
    ap.add_argument("--out", type=Path, default=None, help="Path prefix for .key/.pub files")
    args = ap.parse_args()

    signing_key = nacl.signing.SigningKey.generate()
    verify_key = signing_key.verify_key
    private_hex = signing_key.encode(encoder=nacl.encoding.HexEncoder).decode("utf-8")
    public_hex = verify_key.encode(encoder=nacl.encoding.HexEncoder).decode("utf-8")

    if args.out is None:
        print("Keep the signing key offline; ship the public key with the kiosk:")
        print(f"signing key: {private_hex}")
        print(f"public key:  {public_hex}")
        return

    args.out.parent.mkdir(parents=True, exist_ok=True)
    key_path = args.out.with_name(args.out.name + ".key")
    pub_path = args.out.with_name(args.out.name + ".pub")
    key_path.write_text(private_hex + "\n", encoding="utf-8")
    pub_path.write_text(public_hex + "\n", encoding="utf-8")
    print(f"Wrote {key_path} and {pub_path}")


if __name__ == "__main__":
    main()
