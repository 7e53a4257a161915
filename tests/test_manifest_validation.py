"""Tests for manifest loading, hashing, signatures and the version gate."""

import base64
import hashlib
import json
from pathlib import Path

import pytest
from nacl.signing import SigningKey

from Archivist.errors import IncompatiblePack, ManifestInvalid, ManifestTampered, SignatureInvalid
from Archivist.manifest_validation import (
    ensure_semver_compatible,
    find_table,
    is_version_satisfied,
    load_and_verify_manifest,
    normalise_public_key,
    parse_manifest,
    resolve_pack_path,
    verify_manifest_hash,
    verify_manifest_signature,
)

VALID_MANIFEST = {
    "pack_id": "alumni-2024",
    "content_version": 7,
    "created_utc": "2024-05-01T00:00:00Z",
    "tables": [{"name": "person", "path": "person.csv"}],
    "assets": {"images": {"path": "images"}, "flipbooks": {"path": "flipbooks", "count": 0}},
}


def _write_pack(pack_dir: Path, manifest: dict | bytes, checksum: str | None = None) -> bytes:
    raw = manifest if isinstance(manifest, bytes) else json.dumps(manifest).encode("utf-8")
    (pack_dir / "manifest.json").write_bytes(raw)
    (pack_dir / "checksums").mkdir(exist_ok=True)
    digest = checksum if checksum is not None else hashlib.sha256(raw).hexdigest()
    (pack_dir / "checksums" / "manifest.sha256").write_text(f"{digest}  manifest.json\n")
    return raw


class TestParseManifest:
    def test_valid_manifest_defaults_table_format(self):
        manifest = parse_manifest(json.dumps(VALID_MANIFEST).encode())
        assert manifest.pack_id == "alumni-2024"
        assert manifest.tables[0].format == "csv"
        assert manifest.compat is None
        assert find_table(manifest, "person").path == "person.csv"
        assert find_table(manifest, "cohort") is None

    def test_missing_required_field(self):
        data = dict(VALID_MANIFEST)
        del data["pack_id"]
        with pytest.raises(ManifestInvalid, match="pack_id"):
            parse_manifest(json.dumps(data).encode())

    def test_content_version_must_be_integer(self):
        data = dict(VALID_MANIFEST, content_version="7")
        with pytest.raises(ManifestInvalid, match="content_version"):
            parse_manifest(json.dumps(data).encode())

    def test_unknown_table_format_rejected(self):
        data = dict(VALID_MANIFEST, tables=[{"name": "person", "path": "p.x", "format": "xlsx"}])
        with pytest.raises(ManifestInvalid):
            parse_manifest(json.dumps(data).encode())

    def test_not_json(self):
        with pytest.raises(ManifestInvalid, match="not valid JSON"):
            parse_manifest(b"{nope")


class TestVersionGate:
    @pytest.mark.parametrize(
        "current,minimum,expected",
        [
            ("1.4.0", "1.4", True),
            ("1.4", "1.4.0", True),
            ("1.3.9", "1.4.0", False),
            ("2.0.0", "1.10.0", True),
            ("1.10.0", "1.9.5", True),
            ("0.9", "1", False),
        ],
    )
    def test_field_wise_comparison(self, current, minimum, expected):
        assert is_version_satisfied(current, minimum) is expected

    def test_lower_app_version_raises(self):
        manifest = parse_manifest(json.dumps(dict(VALID_MANIFEST, compat={"min_app_semver": "9.0.0"})).encode())
        with pytest.raises(IncompatiblePack, match="9.0.0"):
            ensure_semver_compatible(manifest, "1.4.0")

    def test_equal_version_passes(self):
        manifest = parse_manifest(json.dumps(dict(VALID_MANIFEST, compat={"min_app_semver": "1.4.0"})).encode())
        ensure_semver_compatible(manifest, "1.4.0")


class TestManifestHash:
    def test_matching_hash_returns_digest(self, tmp_path):
        raw = _write_pack(tmp_path, VALID_MANIFEST)
        assert verify_manifest_hash(tmp_path, raw) == hashlib.sha256(raw).hexdigest()

    def test_uppercase_checksum_accepted(self, tmp_path):
        raw = json.dumps(VALID_MANIFEST).encode()
        _write_pack(tmp_path, raw, checksum=hashlib.sha256(raw).hexdigest().upper())
        verify_manifest_hash(tmp_path, raw)

    def test_mismatch_raises_tampered(self, tmp_path):
        raw = _write_pack(tmp_path, VALID_MANIFEST, checksum="0" * 64)
        with pytest.raises(ManifestTampered, match="hash mismatch"):
            verify_manifest_hash(tmp_path, raw)

    def test_missing_checksum_file(self, tmp_path):
        raw = json.dumps(VALID_MANIFEST).encode()
        (tmp_path / "manifest.json").write_bytes(raw)
        with pytest.raises(ManifestTampered):
            verify_manifest_hash(tmp_path, raw)

    def test_empty_checksum_file(self, tmp_path):
        raw = _write_pack(tmp_path, VALID_MANIFEST, checksum="")
        (tmp_path / "checksums" / "manifest.sha256").write_text("   \n")
        with pytest.raises(ManifestTampered, match="empty"):
            verify_manifest_hash(tmp_path, raw)


class TestSignature:
    def test_valid_signature(self, tmp_path):
        key = SigningKey.generate()
        raw = _write_pack(tmp_path, VALID_MANIFEST)
        signature = key.sign(raw).signature
        (tmp_path / "signature.sig").write_bytes(signature)
        assert verify_manifest_signature(tmp_path, raw, bytes(key.verify_key)) == signature

    def test_base64_signature_text(self, tmp_path):
        key = SigningKey.generate()
        raw = _write_pack(tmp_path, VALID_MANIFEST)
        (tmp_path / "signature.sig").write_text(base64.b64encode(key.sign(raw).signature).decode() + "\n")
        verify_manifest_signature(tmp_path, raw, bytes(key.verify_key))

    def test_wrong_key_rejected(self, tmp_path):
        raw = _write_pack(tmp_path, VALID_MANIFEST)
        (tmp_path / "signature.sig").write_bytes(SigningKey.generate().sign(raw).signature)
        with pytest.raises(SignatureInvalid, match="verification failed"):
            verify_manifest_signature(tmp_path, raw, bytes(SigningKey.generate().verify_key))

    def test_signature_covers_exact_bytes(self, tmp_path):
        key = SigningKey.generate()
        raw = _write_pack(tmp_path, VALID_MANIFEST)
        (tmp_path / "signature.sig").write_bytes(key.sign(raw).signature)
        with pytest.raises(SignatureInvalid):
            verify_manifest_signature(tmp_path, raw + b" ", bytes(key.verify_key))

    def test_missing_signature_file(self, tmp_path):
        raw = _write_pack(tmp_path, VALID_MANIFEST)
        with pytest.raises(SignatureInvalid, match="missing"):
            verify_manifest_signature(tmp_path, raw, bytes(SigningKey.generate().verify_key))


class TestPublicKeyFormats:
    def test_raw_hex_base64_and_pem(self):
        raw = bytes(SigningKey.generate().verify_key)
        spki = bytes.fromhex("302a300506032b6570032100") + raw
        pem = (
            "-----BEGIN PUBLIC KEY-----\n"
            + base64.b64encode(spki).decode()
            + "\n-----END PUBLIC KEY-----\n"
        ).encode()
        assert normalise_public_key(raw) == raw
        assert normalise_public_key(raw.hex().encode() + b"\n") == raw
        assert normalise_public_key(base64.b64encode(raw)) == raw
        assert normalise_public_key(pem) == raw

    def test_wrong_length_rejected(self):
        with pytest.raises(SignatureInvalid, match="32 bytes"):
            normalise_public_key(base64.b64encode(b"short"))


class TestLoadAndVerify:
    def test_happy_path(self, tmp_path):
        raw = _write_pack(tmp_path, VALID_MANIFEST)
        verified = load_and_verify_manifest(tmp_path, "1.0.0")
        assert verified.raw == raw
        assert verified.manifest.content_version == 7
        assert verified.signature is None

    def test_tampering_reported_before_parse_errors(self, tmp_path):
        raw = json.dumps(VALID_MANIFEST).encode()
        _write_pack(tmp_path, raw)
        (tmp_path / "manifest.json").write_bytes(raw[:-1])
        with pytest.raises(ManifestTampered):
            load_and_verify_manifest(tmp_path, "1.0.0")

    def test_strict_mode_requires_key(self, tmp_path):
        _write_pack(tmp_path, VALID_MANIFEST)
        with pytest.raises(SignatureInvalid, match="no public key"):
            load_and_verify_manifest(tmp_path, "1.0.0", require_signature=True)

    def test_strict_mode_returns_signature(self, tmp_path):
        key = SigningKey.generate()
        raw = _write_pack(tmp_path, VALID_MANIFEST)
        (tmp_path / "signature.sig").write_bytes(key.sign(raw).signature)
        verified = load_and_verify_manifest(
            tmp_path, "1.0.0", public_key=bytes(key.verify_key), require_signature=True
        )
        assert len(verified.signature) == 64


def test_resolve_pack_path_strips_leading_slash(tmp_path):
    assert resolve_pack_path(tmp_path, "/images") == (tmp_path / "images").resolve()


def test_resolve_pack_path_rejects_escape(tmp_path):
    with pytest.raises(ManifestInvalid, match="Security violation"):
        resolve_pack_path(tmp_path, "../outside")
