"""Manifest loading and verification for content packs.

This module provides:
- Checksum verification over the exact manifest bytes
- Detached Ed25519 signature verification (strict mode)
- JSON schema validation and a typed ``PackManifest``
- The application version gate

Verification always runs on the raw bytes read from the pack, never on a
re-serialised form, so the hash matches what the pack author published.
"""

from __future__ import annotations

import base64
import binascii
import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

import jsonschema
import structlog
from nacl.exceptions import BadSignatureError, CryptoError
from nacl.signing import VerifyKey
from pydantic import BaseModel, Field, ValidationError

from Archivist.errors import IncompatiblePack, ManifestInvalid, ManifestTampered, SignatureInvalid
from Archivist.tools.package_utils import resolve_within, sha256_bytes

log = structlog.get_logger()

MANIFEST_NAME = "manifest.json"
CHECKSUM_PATH = Path("checksums") / "manifest.sha256"
SIGNATURE_NAME = "signature.sig"
SCHEMA_PATH = Path(__file__).parent / "contracts" / "manifest.v1.json"

# DER prefix of an Ed25519 SubjectPublicKeyInfo; the raw key follows it
_ED25519_SPKI_PREFIX = bytes.fromhex("302a300506032b6570032100")
_HEX_KEY_RE = re.compile(r"^[0-9a-fA-F]{64}$")
_NON_BASE64_RE = re.compile(r"[^A-Za-z0-9+/=]")


class TableDescriptor(BaseModel):
    name: str
    format: Literal["csv", "parquet"] = "csv"
    path: str
    hash: str | None = None


class AssetDirectory(BaseModel):
    path: str
    count: int | None = Field(default=None, ge=0)


class PackAssets(BaseModel):
    images: AssetDirectory
    flipbooks: AssetDirectory


class Compat(BaseModel):
    min_app_semver: str


class PackManifest(BaseModel):
    pack_id: str
    content_version: int
    created_utc: str
    tables: list[TableDescriptor]
    assets: PackAssets
    compat: Compat | None = None


@dataclass(frozen=True)
class VerifiedManifest:
    manifest: PackManifest
    raw: bytes
    manifest_hash: str
    signature: bytes | None = None


def _load_schema(schema_path: Path = SCHEMA_PATH) -> dict[str, Any]:
    try:
        with open(schema_path, encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError) as exc:
        raise ManifestInvalid(f"Failed to load manifest schema: {exc}") from exc


def read_manifest_bytes(pack_dir: Path) -> bytes:
    manifest_path = Path(pack_dir) / MANIFEST_NAME
    try:
        return manifest_path.read_bytes()
    except OSError as exc:
        raise ManifestInvalid(f"Failed to read {MANIFEST_NAME} from pack: {exc}") from exc


def parse_manifest(raw: bytes) -> PackManifest:
    """Decode and validate manifest bytes.

    Raises:
        ManifestInvalid: If the bytes are not JSON or fail the schema
    """
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ManifestInvalid(f"Manifest is not valid JSON: {exc}") from exc

    try:
        jsonschema.validate(data, _load_schema())
    except jsonschema.ValidationError as exc:
        location = "/".join(str(p) for p in exc.absolute_path) or "<root>"
        raise ManifestInvalid(f"Manifest schema validation failed at {location}: {exc.message}") from exc

    try:
        return PackManifest.model_validate(data)
    except ValidationError as exc:
        raise ManifestInvalid(f"Manifest schema validation failed: {exc}") from exc


def _version_parts(version: str) -> list[int]:
    parts: list[int] = []
    for segment in version.strip().split("."):
        digits = re.match(r"\d+", segment.strip())
        parts.append(int(digits.group(0)) if digits else 0)
    return parts


def is_version_satisfied(current: str, minimum: str) -> bool:
    """Field-wise numeric comparison; missing trailing segments count as zero."""
    cur_parts = _version_parts(current)
    min_parts = _version_parts(minimum)
    width = max(len(cur_parts), len(min_parts))
    cur_parts += [0] * (width - len(cur_parts))
    min_parts += [0] * (width - len(min_parts))
    return cur_parts >= min_parts


def ensure_semver_compatible(manifest: PackManifest, app_version: str) -> None:
    if manifest.compat is None:
        return
    minimum = manifest.compat.min_app_semver
    if not is_version_satisfied(app_version, minimum):
        raise IncompatiblePack(f"Pack requires app version >= {minimum}, current {app_version}")


def verify_manifest_hash(pack_dir: Path, raw: bytes) -> str:
    """Compare the manifest bytes against ``checksums/manifest.sha256``.

    Returns:
        Hex SHA-256 of the manifest bytes

    Raises:
        ManifestTampered: If the checksum file is missing, empty, or disagrees
    """
    checksum_path = Path(pack_dir) / CHECKSUM_PATH
    try:
        content = checksum_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ManifestTampered(f"Manifest checksum file missing: {exc}") from exc
    tokens = content.split()
    if not tokens:
        raise ManifestTampered(f"Manifest checksum file {CHECKSUM_PATH.as_posix()} is empty")
    expected = tokens[0].lower()
    actual = sha256_bytes(raw)
    if actual != expected:
        raise ManifestTampered(f"Manifest hash mismatch: expected {expected} received {actual}")
    return actual


def normalise_public_key(data: bytes) -> bytes:
    """Return the 32 raw bytes of an Ed25519 public key.

    Accepts raw bytes, hex text, base64 text, or PEM.

    Raises:
        SignatureInvalid: If no 32-byte key can be recovered
    """
    if len(data) == 32:
        return data
    try:
        text = data.decode("ascii").strip()
    except UnicodeDecodeError as exc:
        raise SignatureInvalid("Public key is neither raw bytes nor text") from exc

    if _HEX_KEY_RE.match(text):
        return bytes.fromhex(text)

    if "-----BEGIN" in text:
        text = "".join(line for line in text.splitlines() if not line.startswith("-----"))
    cleaned = _NON_BASE64_RE.sub("", text)
    try:
        decoded = base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise SignatureInvalid(f"Public key is not valid base64: {exc}") from exc
    if len(decoded) == len(_ED25519_SPKI_PREFIX) + 32 and decoded.startswith(_ED25519_SPKI_PREFIX):
        decoded = decoded[len(_ED25519_SPKI_PREFIX):]
    if len(decoded) != 32:
        raise SignatureInvalid(f"Public key must be 32 bytes, got {len(decoded)}")
    return decoded


def load_public_key(path: Path) -> bytes:
    try:
        data = Path(path).read_bytes()
    except OSError as exc:
        raise SignatureInvalid(f"Unable to read public key {path}: {exc}") from exc
    return normalise_public_key(data)


def _read_signature(pack_dir: Path) -> bytes:
    signature_path = Path(pack_dir) / SIGNATURE_NAME
    try:
        data = signature_path.read_bytes()
    except OSError as exc:
        raise SignatureInvalid(f"Signature file missing from pack: {exc}") from exc
    if len(data) == 64:
        return data
    # Text signatures are accepted base64-encoded
    try:
        decoded = base64.b64decode(_NON_BASE64_RE.sub("", data.decode("ascii")), validate=True)
    except (UnicodeDecodeError, binascii.Error, ValueError) as exc:
        raise SignatureInvalid("Signature is malformed") from exc
    if len(decoded) != 64:
        raise SignatureInvalid(f"Signature must be 64 bytes, got {len(decoded)}")
    return decoded


def verify_manifest_signature(pack_dir: Path, raw: bytes, public_key: bytes) -> bytes:
    """Verify ``signature.sig`` over the raw manifest bytes.

    Returns:
        The signature bytes

    Raises:
        SignatureInvalid: If the signature is missing, malformed, or wrong
    """
    signature = _read_signature(pack_dir)
    try:
        VerifyKey(public_key).verify(raw, signature)
    except BadSignatureError as exc:
        raise SignatureInvalid("Manifest signature verification failed.") from exc
    except (CryptoError, TypeError, ValueError) as exc:
        raise SignatureInvalid(f"Manifest signature could not be checked: {exc}") from exc
    return signature


def load_and_verify_manifest(
    pack_dir: Path,
    app_version: str,
    *,
    public_key: bytes | None = None,
    require_signature: bool = False,
) -> VerifiedManifest:
    """Load ``manifest.json`` from an extracted pack and run every check.

    Byte-level checks run before parsing so tampering is reported as such even
    when it also breaks the JSON.
    """
    raw = read_manifest_bytes(pack_dir)
    manifest_hash = verify_manifest_hash(pack_dir, raw)

    signature = None
    if require_signature:
        if public_key is None:
            raise SignatureInvalid("Signature verification requested but no public key was provided.")
        signature = verify_manifest_signature(pack_dir, raw, public_key)
        log.info("manifest.signature.verified", message="Signature verification passed.")

    manifest = parse_manifest(raw)
    ensure_semver_compatible(manifest, app_version)
    log.debug(
        "manifest.verified",
        pack_id=manifest.pack_id,
        content_version=manifest.content_version,
        manifest_hash=manifest_hash,
    )
    return VerifiedManifest(manifest=manifest, raw=raw, manifest_hash=manifest_hash, signature=signature)


def find_table(manifest: PackManifest, name: str) -> TableDescriptor | None:
    return next((t for t in manifest.tables if t.name == name), None)


def resolve_pack_path(pack_dir: Path, rel: str) -> Path:
    try:
        return resolve_within(pack_dir, rel)
    except ValueError as exc:
        raise ManifestInvalid(str(exc)) from exc
