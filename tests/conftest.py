# tests/conftest.py

import io
import json
import zipfile
from pathlib import Path

import pytest
from PIL import Image

from Archivist.layout import ContentLayout, ensure_content_layout
from Archivist.logging import setup_logging
from Archivist.metrics import reset_counters
from Archivist.normalizer import TABLE_NAMES
from Archivist.tools.pack_builder import build_pack, image_filename


def png_bytes(size: tuple[int, int] = (64, 32), color: tuple[int, int, int] = (200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


SAMPLE_IMAGE = png_bytes()
SAMPLE_IMAGE_NAME = image_filename(SAMPLE_IMAGE, "png")
SAMPLE_IMAGE_SHA = SAMPLE_IMAGE_NAME.split(".")[0]

SAMPLE_TABLES = {
    "person": (
        "id,first_name,middle_name,last_name,suffix,display_name,slug,bio,is_faculty,created_at,updated_at\n"
        ",Jane,,Doe,,,,,no,,\n"
        "p-2,John,Q,Public,Jr.,,,Class clown,yes,2020-01-01T00:00:00Z,\n"
    ),
    "cohort": "id,year,label\nc-1999,1999,\n",
    "person_cohort": "person_id,cohort_id,is_class_president,homeroom,notes\np-2,c-1999,1,101,\n",
    "photo": (
        "id,sha256,ext,width,height,bytes,caption,credit,created_at\n"
        f"ph-1,{SAMPLE_IMAGE_SHA},png,64,32,,Portrait,,\n"
    ),
    "person_photo": "person_id,photo_id,kind,is_primary\np-2,ph-1,portrait,1\n",
    "publication": (
        "id,title,issue_date,volume,number,slug,cover_photo_id,flipbook_manifest_path\n"
        "pub-1,Spring Gazette,1999-04-01,3,2,,ph-1,assets/flipbooks/gazette/manifest.json\n"
    ),
    "archive_item": (
        "id,title,year,kind,photo_id,flipbook_manifest_path,description\n"
        "ai-1,Regional Cup,1987,photo,ph-1,,Trophy case\n"
    ),
}


class PackSource:
    """A pack source tree under ``tmp_path`` that tests can edit before zipping."""

    sample_image_name = SAMPLE_IMAGE_NAME

    def __init__(self, root: Path):
        self.root = root
        self.tables: dict[str, str] = dict(SAMPLE_TABLES)
        self.images: dict[str, bytes] = {SAMPLE_IMAGE_NAME: SAMPLE_IMAGE}
        self.flipbooks: dict[str, str] = {"gazette/manifest.json": json.dumps({"pages": ["p1.jpg"]})}
        self.manifest: dict = {
            "pack_id": "alumni-test",
            "content_version": 3,
            "created_utc": "2024-05-01T00:00:00Z",
            "tables": [{"name": name, "path": f"tables/{name}.csv"} for name in TABLE_NAMES],
            "assets": {"images": {"path": "images", "count": 1}, "flipbooks": {"path": "flipbooks"}},
            "compat": {"min_app_semver": "1.0.0"},
        }

    def add_image(self, data: bytes, ext: str = "png", name: str | None = None) -> str:
        name = name or image_filename(data, ext)
        self.images[name] = data
        return name

    def write(self) -> Path:
        (self.root / "manifest.json").parent.mkdir(parents=True, exist_ok=True)
        (self.root / "manifest.json").write_text(json.dumps(self.manifest, indent=2), encoding="utf-8")
        for name, text in self.tables.items():
            path = self.root / "tables" / f"{name}.csv"
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        for name, data in self.images.items():
            path = self.root / "images" / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        for rel, text in self.flipbooks.items():
            path = self.root / "flipbooks" / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        return self.root

    def build(self, out: Path | None = None, signing_key=None) -> Path:
        out = out or self.root.parent / "pack.zip"
        build_pack(self.write(), out, signing_key)
        return out

    @staticmethod
    def rewrite_member(zip_path: Path, member: str, data: bytes) -> None:
        """Replace one member of an existing pack without touching the others."""
        with zipfile.ZipFile(zip_path) as zf:
            members = {info.filename: zf.read(info) for info in zf.infolist()}
        members[member] = data
        with zipfile.ZipFile(zip_path, "w") as zf:
            for name, content in members.items():
                zf.writestr(name, content)


@pytest.fixture(autouse=True)
def _fresh_observability():
    reset_counters()
    setup_logging(None)
    yield
    reset_counters()


@pytest.fixture
def layout(tmp_path: Path) -> ContentLayout:
    return ensure_content_layout(tmp_path / "content")


@pytest.fixture
def pack_source(tmp_path: Path) -> PackSource:
    return PackSource(tmp_path / "pack-src")


@pytest.fixture
def make_png():
    return png_bytes
