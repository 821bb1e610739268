"""Tests for branchsync.archive — ZIP import as a content source, and export."""

import io
import zipfile

import pytest

from branchsync.archive import (
    ArchiveSource,
    default_export_name,
    export_archive,
    read_archive,
    read_archive_file,
)
from branchsync.errors import ArchiveParseError
from branchsync.hashing import git_blob_sha
from branchsync.paths import PathFilter


def _zip(members: dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    return buf.getvalue()


# ── read_archive ────────────────────────────────────────────────────


class TestReadArchive:
    def test_filters_to_tracked_extensions(self):
        data = _zip({"config/app.xml": b"<app/>", "README.md": b"# hi", "__MACOSX/config/._app.xml": b"x"})
        source = read_archive(data, PathFilter())
        assert list(source.entries) == ["config/app.xml"]
        assert len(source) == 1

    def test_addresses_are_git_blob_shas_of_raw_bytes(self):
        raw = b"<app/>\r\n"
        source = read_archive(_zip({"app.xml": raw}))
        assert source.entries["app.xml"] == git_blob_sha(raw)

    async def test_read_returns_exact_bytes(self):
        source = read_archive(_zip({"app.xml": b"\xef\xbb\xbf<app/>"}))
        assert await source.read("app.xml") == b"\xef\xbb\xbf<app/>"
        with pytest.raises(KeyError):
            await source.read("missing.xml")

    def test_backslash_and_leading_slash_names_are_normalized(self):
        source = read_archive(_zip({"\\config\\app.xml": b"<a/>", "/other.xml": b"<b/>"}))
        assert set(source.entries) == {"config/app.xml", "other.xml"}

    def test_strip_components(self):
        source = read_archive(_zip({"export-main/config/app.xml": b"<a/>"}), strip_components=1)
        assert list(source.entries) == ["config/app.xml"]

    def test_rejects_traversal(self):
        with pytest.raises(ArchiveParseError, match="Unsafe path"):
            read_archive(_zip({"../evil.xml": b"<x/>"}))

    def test_rejects_duplicates_after_normalization(self):
        with pytest.raises(ArchiveParseError, match="Duplicate"):
            read_archive(_zip({"a/b.xml": b"1", "/a/b.xml": b"2"}))

    def test_rejects_corrupt_input(self):
        with pytest.raises(ArchiveParseError, match="not a valid ZIP"):
            read_archive(b"definitely not a zip", name="upload.zip")

    def test_label_and_ref(self):
        source = read_archive(_zip({}), name="drop.zip")
        assert isinstance(source, ArchiveSource)
        assert source.label == "archive:drop.zip"
        assert source.ref is None

    def test_read_archive_file(self, tmp_path):
        path = tmp_path / "bundle.zip"
        path.write_bytes(_zip({"a.xml": b"<a/>"}))
        source = read_archive_file(path)
        assert source.name == "bundle.zip"
        assert list(source.entries) == ["a.xml"]

    def test_read_archive_file_missing(self, tmp_path):
        with pytest.raises(ArchiveParseError):
            read_archive_file(tmp_path / "nope.zip")


# ── export ──────────────────────────────────────────────────────────


class TestExport:
    def test_export_archive_is_deflated_zip_of_exact_bytes(self):
        blob = export_archive({"config/app.xml": b"<app/>\r\n", "b.xml": b""})
        with zipfile.ZipFile(io.BytesIO(blob)) as zf:
            assert zf.read("config/app.xml") == b"<app/>\r\n"
            assert zf.getinfo("config/app.xml").compress_type == zipfile.ZIP_DEFLATED
            assert sorted(zf.namelist()) == ["b.xml", "config/app.xml"]

    def test_exported_archive_reads_back_with_same_addresses(self):
        files = {"x/one.xml": b"<one/>", "two.xml": b"<two/>\n"}
        source = read_archive(export_archive(files))
        assert dict(source.entries) == {p: git_blob_sha(d) for p, d in files.items()}

    def test_default_export_name(self):
        assert default_export_name("acme/configs", "main", "release/1.0") == (
            "export_configs_main_vs_release-1.0.zip"
        )
        assert default_export_name("acme/configs", "main") == "export_configs_main.zip"
