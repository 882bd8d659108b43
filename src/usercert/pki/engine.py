"""
PKI 引擎接口定义。

签发流程只通过这里的 PkiEngine 协议与密码学实现交互，
具体实现见 local.py（进程内 cryptography）与 strongswan.py（调用 pki / openssl）。
"""

from __future__ import annotations

import ipaddress
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Iterable, Protocol, Sequence

from cryptography import x509

from src.usercert.issuance.schemas import CertificateFlag, DistinguishedName


class PkiEngineError(RuntimeError):
    """PKI 引擎执行失败。"""


class KeyAlgorithm(str, Enum):
    ED25519 = "ed25519"
    ED448 = "ed448"
    ECDSA = "ecdsa"
    RSA = "rsa"


class OutputFormat(str, Enum):
    PEM = "pem"
    DER = "der"


class CertificateField(str, Enum):
    COMMON_NAME = "commonName"
    NOT_AFTER = "notAfter"


class PkiEngine(Protocol):
    def generate_key(self, algorithm: KeyAlgorithm, output_format: OutputFormat) -> bytes: ...

    def generate_request(
        self,
        private_key: bytes,
        distinguished_name: DistinguishedName,
        subject_alt_names: Sequence[str],
    ) -> bytes: ...

    def issue_certificate(
        self,
        csr: bytes,
        ca_certificate: Path,
        ca_key: Path,
        lifetime_days: int,
        flags: Iterable[CertificateFlag],
    ) -> bytes: ...

    def read_certificate_field(self, certificate: bytes, field: CertificateField) -> str | datetime: ...

    def export_pkcs12(
        self,
        private_key: bytes,
        certificate: bytes,
        ca_certificate: bytes,
        container_name: str,
        ca_name: str | None = None,
        password: str | None = None,
    ) -> bytes: ...

    def describe_certificate(self, certificate: bytes) -> str: ...


# id-on-SmtpUTF8Mailbox（RFC 8398），用于本地部分含非 ASCII 字符的邮箱
SMTP_UTF8_MAILBOX_OID = x509.ObjectIdentifier("1.3.6.1.5.5.7.8.9")


def non_blank(names: Iterable[str]) -> list[str]:
    """去掉空的备用名称，空值不应出现在请求中。"""
    return [name for name in names if name and name.strip()]


def to_a_label(label: str) -> str:
    """
    将单个 DNS 标签转换为 A-label。
    ASCII 标签原样保留；其余先按 IDNA 编码，无法通过 nameprep 或超长的标签直接做 punycode 编码。
    """
    if label.isascii():
        return label
    try:
        return label.encode("idna").decode("ascii")
    except UnicodeError:
        return "xn--" + label.encode("punycode").decode("ascii")


def to_a_labels(name: str) -> str:
    return ".".join(to_a_label(label) for label in name.split("."))


def _der_utf8_string(text: str) -> bytes:
    data = text.encode("utf-8")
    if len(data) < 0x80:
        length = bytes([len(data)])
    else:
        size = len(data).to_bytes((len(data).bit_length() + 7) // 8, "big")
        length = bytes([0x80 | len(size)]) + size
    return b"\x0c" + length + data


def general_name(value: str) -> x509.GeneralName:
    """
    按 strongSwan 的身份解析规则将备用名称转换为 GeneralName：
    IP 地址 -> IPAddress，包含 '@' -> 邮箱，其余视为 DNS 名称。
    非 ASCII 的域名按标签转换为 A-label；本地部分非 ASCII 的邮箱写为 SmtpUTF8Mailbox。
    """
    try:
        return x509.IPAddress(ipaddress.ip_address(value))
    except ValueError:
        pass
    if "@" in value and not value.startswith("@"):
        local_part, _, domain = value.rpartition("@")
        if not local_part.isascii():
            return x509.OtherName(SMTP_UTF8_MAILBOX_OID, _der_utf8_string(value))
        return x509.RFC822Name(f"{local_part}@{to_a_labels(domain)}")
    return x509.DNSName(to_a_labels(value.lstrip("@")))
