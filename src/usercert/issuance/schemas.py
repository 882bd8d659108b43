"""
证书签发流程的数据模型定义。
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List

from pydantic import BaseModel, ConfigDict


class RdnType(str, Enum):
    """主题中可用的相对可分辨名称（RDN）类型。"""

    COMMON_NAME = "CN"
    GIVEN_NAME = "GN"
    SURNAME = "SN"
    ORGANIZATION_NAME = "O"
    COUNTRY_NAME = "C"


class CertificateFlag(str, Enum):
    """签发证书时附加的扩展用途标志，取值与 strongSwan pki --flag 一致。"""

    SERVER_AUTH = "serverAuth"
    IKE_INTERMEDIATE = "ikeIntermediate"


# VPN / IPsec 侧依赖这两个标志，签发时固定使用
ISSUANCE_FLAGS = (CertificateFlag.SERVER_AUTH, CertificateFlag.IKE_INTERMEDIATE)


class Subject(BaseModel):
    """
    被签发证书的主体，构造后不可修改。
    """

    model_config = ConfigDict(frozen=True)

    common_name: str
    given_name: str = ""
    surname: str = ""
    country_name: str = ""
    organization_name: str = ""
    subject_alternative_name: str
    normalized_identifier: str


class RelativeDistinguishedName(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: RdnType
    value: str

    def __str__(self) -> str:
        return f"{self.type.value}={self.value}"


class DistinguishedName(BaseModel):
    """
    有序的 RDN 序列。顺序固定为 CN, GN, SN, O, C，仅包含非空值。
    """

    model_config = ConfigDict(frozen=True)

    rdns: List[RelativeDistinguishedName]

    def __str__(self) -> str:
        return ", ".join(str(rdn) for rdn in self.rdns)


class IssuanceRequest(BaseModel):
    """
    调用方提交的签发参数。
    lifetime_years 保留原始输入，由有效期校验统一解析。
    """

    ca_certificate: Path
    ca_key: Path
    lifetime_years: int | str
    output_path: Path | str
    common_name: str = ""
    given_name: str = ""
    surname: str = ""
    country_name: str = ""
    organization_name: str = ""
    alternative_name: str = ""


class LifetimeCheck(BaseModel):
    """有效期校验结果。"""

    requested_years: int
    lifetime_days: int
    supposed_expiration: datetime
    authority_expiration: datetime
    within_authority: bool


class IssuedArtifact(BaseModel):
    path: Path
    data: bytes


class IssuedBundle(BaseModel):
    """
    签发产物：私钥（PKCS#8 PEM）、证书（X.509 PEM）与 PKCS#12 容器。
    """

    private_key: IssuedArtifact
    certificate: IssuedArtifact
    pkcs12: IssuedArtifact


class IssuanceResult(BaseModel):
    subject: Subject
    distinguished_name: str
    lifetime: LifetimeCheck
    bundle: IssuedBundle
    archive_path: Path
