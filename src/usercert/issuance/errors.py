"""
证书签发流程的异常体系。

约定与签发服务一致：输入校验类错误同时继承 ValueError，
处理过程中的失败继承 RuntimeError。每个异常都携带 context，
其中包含路径、日期、数量等足以复现问题的信息。
"""

from __future__ import annotations

from datetime import datetime
from typing import Any


class IssuanceError(RuntimeError):
    """签发流程中所有致命错误的基类。"""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"


class MissingIdentityError(IssuanceError, ValueError):
    """未提供通用名称，且名字与姓氏均为空。"""


class InvalidLifetimeError(IssuanceError, ValueError):
    """有效期不是正整数年。"""


class LifetimeExceedsAuthorityError(IssuanceError, ValueError):
    """新证书的预期到期时间不早于 CA 证书的到期时间。"""

    def __init__(
        self,
        requested_years: int,
        supposed_expiration: datetime,
        authority_expiration: datetime,
    ) -> None:
        super().__init__(
            f"CA 证书的到期时间早于 {requested_years} 年后",
            requested_years=requested_years,
            supposed_expiration=supposed_expiration.isoformat(),
            authority_expiration=authority_expiration.isoformat(),
        )
        self.requested_years = requested_years
        self.supposed_expiration = supposed_expiration
        self.authority_expiration = authority_expiration


class InvalidOutputPathError(IssuanceError, ValueError):
    """输出文件名为空。"""


class AuthorityUnreadableError(IssuanceError):
    """无法读取 CA 证书或其字段。"""


class KeyGenerationFailedError(IssuanceError):
    pass


class CsrGenerationFailedError(IssuanceError):
    pass


class CertificateIssuanceFailedError(IssuanceError):
    pass


class Pkcs12ExportFailedError(IssuanceError):
    pass


class PackagingFailedError(IssuanceError):
    pass


class ExternalToolTimeoutError(IssuanceError):
    """外部工具在限定时间内未返回。"""


class FilesystemPermissionDeniedError(IssuanceError):
    pass
