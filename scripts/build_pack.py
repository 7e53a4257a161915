#!/usr/bin/env python3
"""Build a content pack zip from a prepared source directory.

Writes checksums/manifest.sha256 for the manifest bytes and, with --signing-key,
a detached Ed25519 signature.sig. Optionally refreshes declared table hashes.

Usage:
  python scripts/build_pack.py --source packs/alumni-2024 --out dist/alumni-2024.zip \
      [--signing-key keys/pack.key] [--update-table-hashes]
"""
from __future__ import annotations

import argparse
import json
from pathlib import Path
import sys

# Ensure src is on the import path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import nacl.encoding  # noqa: E402
import nacl.signing  # noqa: E402

from Archivist.tools.package_utils import compute_sha256, load_json  # type: ignore  # noqa: E402
from Archivist.tools.pack_builder import MANIFEST_NAME, build_pack  # type: ignore  # noqa: E402


def update_table_hashes(source: Path) -> int:
    """Rewrite each declared table hash to match the file on disk; returns changes."""
    manifest_path = source / MANIFEST_NAME
    manifest = load_json(manifest_path)
    changes = 0
    for table in manifest.get("tables", []):
        actual = compute_sha256(source / table["path"].lstrip("/"))
        if table.get("hash") != actual:
            table["hash"] = actual
            changes += 1
    if changes:
        manifest_path.write_text(json.dumps(manifest, indent=2) + "\n", encoding="utf-8")
    return changes


def main() -> int:
    ap = argparse.ArgumentParser(description="Build a content pack zip")
    ap.add_argument("--source", type=Path, required=True)
    ap.add_argument("--out", type=Path, required=True)
    ap.add_argument("--signing-key", type=Path, default=None, help="Hex Ed25519 signing key file")
    ap.add_argument("--update-table-hashes", action="store_true")
    args = ap.parse_args()

    if not (args.source / MANIFEST_NAME).exists():
        print(f"Error: manifest not found: {args.source / MANIFEST_NAME}")
        return 2

    if args.update_table_hashes:
        print(f"Updated {update_table_hashes(args.source)} table hashes")

    signing_key = None
    if args.signing_key is not None:
        seed = args.signing_key.read_text(encoding="utf-8").strip()
        signing_key = nacl.signing.SigningKey(seed, encoder=nacl.encoding.HexEncoder)

    digest = build_pack(args.source, args.out, signing_key)
    print(f"Wrote {args.out} (manifest sha256 {digest}{', signed' if signing_key else ''})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
