import hashlib
import zipfile

from nacl.signing import SigningKey

from Archivist.tools.pack_builder import CHECKSUM_NAME, SIGNATURE_NAME, build_pack, image_filename


def test_build_pack_writes_checksum_and_signature(pack_source, tmp_path):
    key = SigningKey.generate()
    source = pack_source.write()
    out = tmp_path / "out" / "pack.zip"

    digest = build_pack(source, out, key)

    raw = (source / "manifest.json").read_bytes()
    assert digest == hashlib.sha256(raw).hexdigest()
    with zipfile.ZipFile(out) as zf:
        names = set(zf.namelist())
        assert "tables/person.csv" in names
        assert zf.read(CHECKSUM_NAME).decode() == f"{digest}  manifest.json\n"
        signature = zf.read(SIGNATURE_NAME)
    assert len(signature) == 64
    key.verify_key.verify(raw, signature)


def test_stale_integrity_files_replaced(pack_source, tmp_path):
    source = pack_source.write()
    (source / "checksums").mkdir()
    (source / CHECKSUM_NAME).write_text("0" * 64)
    (source / SIGNATURE_NAME).write_bytes(b"old")

    digest = build_pack(source, tmp_path / "pack.zip")

    with zipfile.ZipFile(tmp_path / "pack.zip") as zf:
        assert zf.namelist().count(CHECKSUM_NAME) == 1
        assert zf.read(CHECKSUM_NAME).decode().startswith(digest)
        assert SIGNATURE_NAME not in zf.namelist()


def test_image_filename_is_content_addressed():
    assert image_filename(b"abc", ".JPG") == hashlib.sha256(b"abc").hexdigest() + ".jpg"
