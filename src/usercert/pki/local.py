"""
基于 cryptography 的进程内 PKI 引擎实现。
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, Sequence

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed448, ed25519, rsa
from cryptography.hazmat.primitives.serialization import (
    BestAvailableEncryption,
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    pkcs12,
)
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID, ObjectIdentifier
from loguru import logger

from src.usercert.issuance.schemas import CertificateFlag, DistinguishedName, RdnType

from .engine import (
    SMTP_UTF8_MAILBOX_OID,
    CertificateField,
    KeyAlgorithm,
    OutputFormat,
    PkiEngineError,
    general_name,
    non_blank,
)

RDN_OIDS = {
    RdnType.COMMON_NAME: NameOID.COMMON_NAME,
    RdnType.GIVEN_NAME: NameOID.GIVEN_NAME,
    RdnType.SURNAME: NameOID.SURNAME,
    RdnType.ORGANIZATION_NAME: NameOID.ORGANIZATION_NAME,
    RdnType.COUNTRY_NAME: NameOID.COUNTRY_NAME,
}

# iKEIntermediate (RFC 4945)，strongSwan 的 ikeIntermediate 标志
IKE_INTERMEDIATE_OID = ObjectIdentifier("1.3.6.1.5.5.8.2.2")

FLAG_OIDS = {
    CertificateFlag.SERVER_AUTH: ExtendedKeyUsageOID.SERVER_AUTH,
    CertificateFlag.IKE_INTERMEDIATE: IKE_INTERMEDIATE_OID,
}


def to_x509_name(distinguished_name: DistinguishedName) -> x509.Name:
    return x509.Name(
        [x509.NameAttribute(RDN_OIDS[rdn.type], rdn.value) for rdn in distinguished_name.rdns]
    )


def _signature_hash(private_key) -> hashes.HashAlgorithm | None:
    # EdDSA 自带摘要，签名时必须传 None
    if isinstance(private_key, (ed25519.Ed25519PrivateKey, ed448.Ed448PrivateKey)):
        return None
    return hashes.SHA256()


def _load_private_key(data: bytes):
    try:
        return serialization.load_pem_private_key(data, password=None)
    except ValueError:
        return serialization.load_der_private_key(data, password=None)


def _load_certificate(data: bytes) -> x509.Certificate:
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError:
        return x509.load_der_x509_certificate(data)


def _common_name(name: x509.Name) -> str:
    attributes = name.get_attributes_for_oid(NameOID.COMMON_NAME)
    return str(attributes[0].value) if attributes else ""


def _public_key_der(key) -> bytes:
    return key.public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)


def _alt_name_text(name: x509.GeneralName) -> str:
    if isinstance(name, x509.OtherName) and name.type_id == SMTP_UTF8_MAILBOX_OID:
        data = name.value
        offset = 2 if data[1] < 0x80 else 2 + (data[1] & 0x7F)
        return data[offset:].decode("utf-8")
    if isinstance(name, x509.OtherName):
        return name.type_id.dotted_string
    return str(name.value)


class CryptographyPkiEngine:
    """不依赖外部二进制的 PKI 引擎，行为与 strongSwan pki 保持一致。"""

    def generate_key(self, algorithm: KeyAlgorithm, output_format: OutputFormat) -> bytes:
        if algorithm == KeyAlgorithm.ED25519:
            key = ed25519.Ed25519PrivateKey.generate()
        elif algorithm == KeyAlgorithm.ED448:
            key = ed448.Ed448PrivateKey.generate()
        elif algorithm == KeyAlgorithm.ECDSA:
            key = ec.generate_private_key(ec.SECP256R1())
        elif algorithm == KeyAlgorithm.RSA:
            key = rsa.generate_private_key(public_exponent=65537, key_size=3072)
        else:
            raise PkiEngineError(f"不支持的密钥类型: {algorithm}")

        encoding = Encoding.PEM if output_format == OutputFormat.PEM else Encoding.DER
        return key.private_bytes(
            encoding=encoding,
            format=PrivateFormat.PKCS8,
            encryption_algorithm=NoEncryption(),
        )

    def generate_request(
        self,
        private_key: bytes,
        distinguished_name: DistinguishedName,
        subject_alt_names: Sequence[str],
    ) -> bytes:
        key = _load_private_key(private_key)
        builder = x509.CertificateSigningRequestBuilder().subject_name(to_x509_name(distinguished_name))

        names = [general_name(name) for name in non_blank(subject_alt_names)]
        if names:
            builder = builder.add_extension(x509.SubjectAlternativeName(names), critical=False)

        csr = builder.sign(key, _signature_hash(key))
        return csr.public_bytes(Encoding.PEM)

    def issue_certificate(
        self,
        csr: bytes,
        ca_certificate: Path,
        ca_key: Path,
        lifetime_days: int,
        flags: Iterable[CertificateFlag],
    ) -> bytes:
        request = x509.load_pem_x509_csr(csr)
        if not request.is_signature_valid:
            raise PkiEngineError("CSR 签名无效")

        ca_cert = _load_certificate(Path(ca_certificate).read_bytes())
        ca_private_key = _load_private_key(Path(ca_key).read_bytes())
        if _public_key_der(ca_private_key.public_key()) != _public_key_der(ca_cert.public_key()):
            raise PkiEngineError(f"CA 私钥与 CA 证书不匹配: {ca_key}")

        now = datetime.now(timezone.utc)
        builder = (
            x509.CertificateBuilder()
            .subject_name(request.subject)
            .issuer_name(ca_cert.subject)
            .public_key(request.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + timedelta(days=lifetime_days))
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(request.public_key()), critical=False)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_private_key.public_key()),
                critical=False,
            )
        )

        usages = [FLAG_OIDS[CertificateFlag(flag)] for flag in flags]
        if usages:
            builder = builder.add_extension(x509.ExtendedKeyUsage(usages), critical=False)

        # 沿用 CSR 中请求的备用名称
        try:
            san = request.extensions.get_extension_for_class(x509.SubjectAlternativeName)
            builder = builder.add_extension(san.value, critical=san.critical)
        except x509.ExtensionNotFound:
            logger.debug("CSR 中没有主体备用名称")

        cert = builder.sign(private_key=ca_private_key, algorithm=_signature_hash(ca_private_key))
        return cert.public_bytes(Encoding.PEM)

    def read_certificate_field(self, certificate: bytes, field: CertificateField) -> str | datetime:
        cert = _load_certificate(certificate)
        if field == CertificateField.COMMON_NAME:
            return _common_name(cert.subject)
        if field == CertificateField.NOT_AFTER:
            return cert.not_valid_after_utc
        raise PkiEngineError(f"不支持的证书字段: {field}")

    def export_pkcs12(
        self,
        private_key: bytes,
        certificate: bytes,
        ca_certificate: bytes,
        container_name: str,
        ca_name: str | None = None,
        password: str | None = None,
    ) -> bytes:
        key = _load_private_key(private_key)
        cert = _load_certificate(certificate)
        ca_cert = _load_certificate(ca_certificate)

        ca_entry = pkcs12.PKCS12Certificate(ca_cert, ca_name.encode("utf-8") if ca_name else None)
        encryption = BestAvailableEncryption(password.encode("utf-8")) if password else NoEncryption()
        return pkcs12.serialize_key_and_certificates(
            name=container_name.encode("utf-8"),
            key=key,
            cert=cert,
            cas=[ca_entry],
            encryption_algorithm=encryption,
        )

    def describe_certificate(self, certificate: bytes) -> str:
        cert = _load_certificate(certificate)
        lines = [
            f"  subject:  \"{cert.subject.rfc4514_string()}\"",
            f"  issuer:   \"{cert.issuer.rfc4514_string()}\"",
            f"  validity: not before {cert.not_valid_before_utc.isoformat()}",
            f"            not after  {cert.not_valid_after_utc.isoformat()}",
            f"  serial:   {cert.serial_number:x}",
        ]
        try:
            san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
            lines.append(f"  altNames: {', '.join(_alt_name_text(name) for name in san)}")
        except x509.ExtensionNotFound:
            pass
        try:
            eku = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
            flags = {oid: flag.value for flag, oid in FLAG_OIDS.items()}
            lines.append(f"  flags:    {' '.join(flags.get(oid, oid.dotted_string) for oid in eku)}")
        except x509.ExtensionNotFound:
            pass
        return "\n".join(lines)
