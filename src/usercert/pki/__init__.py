"""
PKI 引擎模块集合。

签发流程通过 get_engine 按配置选择进程内实现或 strongSwan 命令行实现。
"""

from src.usercert.config import Config

from .engine import CertificateField, KeyAlgorithm, OutputFormat, PkiEngine, PkiEngineError
from .local import CryptographyPkiEngine
from .strongswan import StrongswanPkiEngine


def get_engine(settings: Config) -> PkiEngine:
    """根据配置构造 PKI 引擎。"""
    if settings.engine == "strongswan":
        return StrongswanPkiEngine(
            pki_binary=settings.pki_binary,
            openssl_binary=settings.openssl_binary,
            timeout=settings.tool_timeout,
            scratch_dir=settings.scratch_dir,
        )
    return CryptographyPkiEngine()


__all__ = [
    "CertificateField",
    "CryptographyPkiEngine",
    "KeyAlgorithm",
    "OutputFormat",
    "PkiEngine",
    "PkiEngineError",
    "StrongswanPkiEngine",
    "get_engine",
]
