"""
证书签发流程的业务逻辑层。
此模块按固定顺序编排主体解析、有效期校验、密钥/CSR/证书生成、PKCS#12 导出与打包。

已生成的私钥、证书与 PKCS#12 文件在后续步骤失败时保留在磁盘上，
以相同主体重新执行即可覆盖。CSR 为临时文件，任何退出路径都会删除。
同一主体的并发执行互相覆盖，没有加锁。
"""

from __future__ import annotations

import os
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, Type

from loguru import logger

from src.usercert.config import Config, config
from src.usercert.packaging.services import pack_to_zip
from src.usercert.pki import CertificateField, KeyAlgorithm, OutputFormat, PkiEngine, PkiEngineError, get_engine

from . import core
from .errors import (
    AuthorityUnreadableError,
    CertificateIssuanceFailedError,
    CsrGenerationFailedError,
    FilesystemPermissionDeniedError,
    InvalidOutputPathError,
    IssuanceError,
    KeyGenerationFailedError,
    LifetimeExceedsAuthorityError,
    PackagingFailedError,
    Pkcs12ExportFailedError,
)
from .schemas import (
    ISSUANCE_FLAGS,
    IssuanceRequest,
    IssuanceResult,
    IssuedArtifact,
    IssuedBundle,
    LifetimeCheck,
)

READABLE_MODE = 0o644

Packager = Callable[..., Any]


@contextmanager
def _fatal(error_cls: Type[IssuanceError], message: str, **context: Any) -> Iterator[None]:
    """将步骤中的非预期异常转换为该步骤对应的签发错误。"""
    try:
        yield
    except IssuanceError:
        raise
    except PermissionError as e:
        logger.error(f"{message}: {e}")
        raise FilesystemPermissionDeniedError(message, error=str(e), **context) from e
    except Exception as e:
        logger.error(f"{message}: {e}")
        raise error_cls(message, error=str(e), **context) from e


@contextmanager
def _scoped_csr_file(scratch_dir: Path | None) -> Iterator[Path]:
    """创建 CSR 临时文件，退出时无条件删除。"""
    fd, name = tempfile.mkstemp(suffix=".csr.pem", dir=scratch_dir)
    os.close(fd)
    path = Path(name)
    try:
        yield path
    finally:
        path.unlink(missing_ok=True)
        logger.info(f"已删除 CSR {path}")


def make_readable(path: Path) -> None:
    # 兼容既有部署，私钥同样设为 -rw-r--r--
    try:
        os.chmod(path, READABLE_MODE)
    except OSError as e:
        raise FilesystemPermissionDeniedError("无法修改文件权限", path=str(path), error=str(e)) from e
    logger.info(f"已将 {path} 的访问权限修改为 '-rw-r--r--'")


def _check_output_path(output_path: Path | str) -> Path:
    if not str(output_path).strip():
        logger.error("输出文件名不能为空")
        raise InvalidOutputPathError("输出文件名不能为空")
    output = Path(output_path)
    folder = output.parent
    if not folder.is_dir() or not os.access(folder, os.W_OK):
        logger.error(f"{folder} 不可写")
        raise FilesystemPermissionDeniedError("输出目录不可写", path=str(folder))
    return output


def _ensure_layout(settings: Config) -> None:
    for folder in (settings.pkcs8_dir, settings.x509_dir, settings.pkcs12_dir):
        try:
            folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise FilesystemPermissionDeniedError("无法创建输出目录", path=str(folder), error=str(e)) from e


def _check_lifetime(
    request: IssuanceRequest, settings: Config, engine: PkiEngine, now: datetime
) -> tuple[LifetimeCheck, bytes]:
    core.parse_lifetime_years(request.lifetime_years)

    with _fatal(AuthorityUnreadableError, "无法读取 CA 证书", path=str(request.ca_certificate)):
        ca_certificate = Path(request.ca_certificate).read_bytes()
        authority_expiration = engine.read_certificate_field(ca_certificate, CertificateField.NOT_AFTER)

    lifetime = core.check_lifetime(request.lifetime_years, authority_expiration, now)
    if not lifetime.within_authority:
        error = LifetimeExceedsAuthorityError(
            lifetime.requested_years, lifetime.supposed_expiration, authority_expiration
        )
        logger.error(f"[ERR] {error}")
        if settings.strict_lifetime:
            raise error
        logger.warning("宽松模式：忽略有效期超出 CA 到期时间的错误，继续签发")
    return lifetime, ca_certificate


def issue_user_certificate(
    request: IssuanceRequest,
    settings: Config | None = None,
    engine: PkiEngine | None = None,
    packager: Packager = pack_to_zip,
    now: datetime | None = None,
) -> IssuanceResult:
    """
    签发一张由指定 CA 签名的用户证书，并将私钥、证书与 PKCS#12 打包为 zip。
    :param request: 签发参数。
    :param settings: 配置，默认使用全局 config。
    :param engine: PKI 引擎，默认按配置选择。
    :param packager: 打包函数，签名与 pack_to_zip 一致。
    :param now: 当前时间，默认取 UTC 当前时间。
    :return: 签发结果。
    :raises IssuanceError: 任一步骤失败。
    """
    settings = settings or config
    engine = engine or get_engine(settings)
    now = now or datetime.now(timezone.utc)

    output_path = _check_output_path(request.output_path)

    subject = core.resolve_subject(
        common_name=request.common_name,
        given_name=request.given_name,
        surname=request.surname,
        country_name=request.country_name,
        organization_name=request.organization_name,
        alternative_name=request.alternative_name,
    )
    identifier = subject.normalized_identifier

    lifetime, ca_certificate = _check_lifetime(request, settings, engine, now)

    _ensure_layout(settings)
    key_path = settings.pkcs8_dir / f"{identifier}.pem"
    cert_path = settings.x509_dir / f"{identifier}.pem"
    pkcs12_path = settings.pkcs12_dir / f"{identifier}.p12"

    with _fatal(KeyGenerationFailedError, "生成私钥失败", path=str(key_path)):
        private_key = engine.generate_key(KeyAlgorithm.ED25519, OutputFormat.PEM)
        key_path.write_bytes(private_key)
    make_readable(key_path)
    logger.info(f"已生成新的私钥 {key_path}")

    logger.info("生成证书请求的参数：")
    distinguished_name = core.build_distinguished_name(subject)
    dn = str(distinguished_name)

    logger.info(f"使用私钥 {key_path} 生成 CSR")
    with _scoped_csr_file(settings.scratch_dir) as csr_path:
        with _fatal(CsrGenerationFailedError, "生成 CSR 失败", subject=dn, csr=str(csr_path)):
            logger.info(f"主体备用名称：{subject.subject_alternative_name}")
            csr = engine.generate_request(private_key, distinguished_name, [subject.subject_alternative_name])
            csr_path.write_bytes(csr)
        logger.info(f"已生成 CSR：subject='{dn}'，subject alternative name='{subject.subject_alternative_name}'")

        logger.info(f"使用 CSR {csr_path} 生成证书")
        with _fatal(
            CertificateIssuanceFailedError,
            "签发证书失败",
            path=str(cert_path),
            ca_certificate=str(request.ca_certificate),
            lifetime_days=lifetime.lifetime_days,
        ):
            certificate = engine.issue_certificate(
                csr_path.read_bytes(),
                Path(request.ca_certificate),
                Path(request.ca_key),
                lifetime.lifetime_days,
                ISSUANCE_FLAGS,
            )
            cert_path.write_bytes(certificate)
        make_readable(cert_path)

    try:
        logger.info(f"证书信息：\n{engine.describe_certificate(certificate)}")
    except (PkiEngineError, ValueError) as e:
        logger.warning(f"无法输出证书信息: {e}")

    logger.info("将生成的文件收集到 PKCS#12 容器中")
    with _fatal(Pkcs12ExportFailedError, "导出 PKCS#12 失败", path=str(pkcs12_path)):
        ca_name = engine.read_certificate_field(ca_certificate, CertificateField.COMMON_NAME)
        password = settings.pkcs12_password.get_secret_value() if settings.pkcs12_password else None
        container = engine.export_pkcs12(
            private_key,
            certificate,
            ca_certificate,
            subject.common_name,
            ca_name=str(ca_name) or None,
            password=password,
        )
        pkcs12_path.write_bytes(container)
    make_readable(pkcs12_path)
    logger.info(f"已创建容器 {pkcs12_path}")

    with _fatal(PackagingFailedError, "打包生成文件失败", output=str(output_path)):
        packager(output_path, key_path, cert_path, pkcs12_path, scratch_dir=settings.scratch_dir)

    return IssuanceResult(
        subject=subject,
        distinguished_name=dn,
        lifetime=lifetime,
        bundle=IssuedBundle(
            private_key=IssuedArtifact(path=key_path, data=private_key),
            certificate=IssuedArtifact(path=cert_path, data=certificate),
            pkcs12=IssuedArtifact(path=pkcs12_path, data=container),
        ),
        archive_path=output_path,
    )
