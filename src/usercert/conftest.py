"""
测试公共夹具：生成一次性的自签 CA。
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Tuple

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519
from cryptography.x509.oid import NameOID

from src.usercert.config import Config


def make_ca(directory: Path, not_after: datetime, common_name: str = "Test CA") -> Tuple[Path, Path]:
    """在 directory 下写入 CA 证书与私钥，返回 (证书路径, 私钥路径)。"""
    key = ed25519.Ed25519PrivateKey.generate()
    name = x509.Name(
        [
            x509.NameAttribute(NameOID.COUNTRY_NAME, "US"),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=1))
        .not_valid_after(not_after)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, None)
    )

    directory.mkdir(parents=True, exist_ok=True)
    cert_path = directory / "ca_cert.pem"
    key_path = directory / "ca_key.pem"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    return cert_path, key_path


@pytest.fixture
def ca_factory():
    """返回 make_ca，用于构造自定义到期时间的 CA。"""
    return make_ca


@pytest.fixture
def ca_files(tmp_path) -> Tuple[Path, Path]:
    """20 年后到期的 CA。"""
    return make_ca(tmp_path / "ca", datetime.now(timezone.utc) + timedelta(days=365 * 20))


@pytest.fixture
def settings(tmp_path) -> Config:
    """隔离的 swanctl 目录与临时目录。"""
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    return Config(base_dir=tmp_path / "swanctl", scratch_dir=scratch, engine="cryptography")
