"""
测试 pack_to_zip。
"""

import zipfile
from unittest.mock import patch

import pytest

from src.usercert.issuance.errors import PackagingFailedError
from src.usercert.packaging.services import pack_to_zip


@pytest.fixture
def artifacts(tmp_path):
    source = tmp_path / "swanctl"
    source.mkdir()
    key = source / "alice.example.key.pem"
    cert = source / "alice.example.pem"
    p12 = source / "alice.example.p12"
    key.write_bytes(b"key")
    cert.write_bytes(b"cert")
    p12.write_bytes(b"p12")
    return key, cert, p12


@pytest.fixture
def scratch(tmp_path):
    path = tmp_path / "scratch"
    path.mkdir()
    return path


def test_pack_to_zip(tmp_path, artifacts, scratch):
    """三个文件以固定文件名打包，源文件保留，临时目录被清理"""
    output = tmp_path / "out" / "alice.zip"
    output.parent.mkdir()

    assert pack_to_zip(output, *artifacts, scratch_dir=scratch) == output

    with zipfile.ZipFile(output) as archive:
        assert sorted(archive.namelist()) == ["certificate.p12", "certificate.pem", "key.pem"]
        assert archive.read("key.pem") == b"key"
        assert archive.read("certificate.pem") == b"cert"
        assert archive.read("certificate.p12") == b"p12"
        assert all(info.compress_type == zipfile.ZIP_DEFLATED for info in archive.infolist())

    assert all(path.exists() for path in artifacts)
    assert list(scratch.iterdir()) == []
    assert [p.name for p in output.parent.iterdir()] == ["alice.zip"]


def test_pack_replaces_existing_archive(tmp_path, artifacts, scratch):
    output = tmp_path / "alice.zip"
    with zipfile.ZipFile(output, "w") as archive:
        archive.writestr("stale.txt", "old")

    pack_to_zip(output, *artifacts, scratch_dir=scratch)
    with zipfile.ZipFile(output) as archive:
        assert "stale.txt" not in archive.namelist()


def test_missing_source_file(tmp_path, artifacts, scratch):
    key, cert, _ = artifacts
    with pytest.raises(PackagingFailedError) as ei:
        pack_to_zip(tmp_path / "alice.zip", key, cert, tmp_path / "missing.p12", scratch_dir=scratch)

    assert ei.value.context["pkcs12"] == str(tmp_path / "missing.p12")
    assert list(scratch.iterdir()) == []
    assert not (tmp_path / "alice.zip").exists()


def test_compression_failure_cleans_up(tmp_path, artifacts, scratch):
    """压缩失败时清理临时目录与未完成的 zip"""
    output = tmp_path / "out"
    output.mkdir()
    with patch("src.usercert.packaging.services.zipfile.ZipFile", side_effect=OSError("No space left on device")):
        with pytest.raises(PackagingFailedError):
            pack_to_zip(output / "alice.zip", *artifacts, scratch_dir=scratch)

    assert list(scratch.iterdir()) == []
    assert list(output.iterdir()) == []
