"""Helpers for authoring content packs.

``build_pack`` zips a prepared source tree (``manifest.json``, tables, images
and flipbooks) and adds the integrity files the importer expects:
``checksums/manifest.sha256`` and, when a signing key is given, a detached
Ed25519 ``signature.sig`` over the exact manifest bytes.
"""
from __future__ import annotations

import zipfile
from pathlib import Path

from nacl.signing import SigningKey

from Archivist.tools.package_utils import list_files_recursive, sha256_bytes

MANIFEST_NAME = "manifest.json"
CHECKSUM_NAME = "checksums/manifest.sha256"
SIGNATURE_NAME = "signature.sig"

_GENERATED = {CHECKSUM_NAME, SIGNATURE_NAME}


def image_filename(data: bytes, ext: str) -> str:
    """Content-addressed file name for image bytes, e.g. ``<sha256>.jpg``."""
    return f"{sha256_bytes(data)}.{ext.lstrip('.').lower()}"


def sign_manifest(raw: bytes, signing_key: SigningKey) -> bytes:
    return signing_key.sign(raw).signature


def build_pack(source_dir: Path, output_zip: Path, signing_key: SigningKey | None = None) -> str:
    """Write ``output_zip`` from ``source_dir`` and return the manifest hash.

    Any checksum or signature already present in ``source_dir`` is replaced.
    """
    source_dir = Path(source_dir)
    raw = (source_dir / MANIFEST_NAME).read_bytes()
    digest = sha256_bytes(raw)

    output_zip = Path(output_zip)
    output_zip.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(output_zip, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for rel in list_files_recursive(source_dir):
            arcname = rel.as_posix()
            if arcname in _GENERATED:
                continue
            zf.write(source_dir / rel, arcname)
        zf.writestr(CHECKSUM_NAME, f"{digest}  {MANIFEST_NAME}\n")
        if signing_key is not None:
            zf.writestr(SIGNATURE_NAME, sign_manifest(raw, signing_key))
    return digest
