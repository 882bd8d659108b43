"""
命令行入口：签发由 CA 私钥签名的 X.509 证书，并将生成的文件打包为 .zip。
"""

from __future__ import annotations

import argparse
import sys
from typing import List, NoReturn, Sequence

from loguru import logger

from src.usercert.config import Config
from src.usercert.issuance.errors import IssuanceError
from src.usercert.issuance.schemas import IssuanceRequest
from src.usercert.issuance.services import issue_user_certificate

EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


class _ArgumentParser(argparse.ArgumentParser):
    """参数错误时输出帮助并以 1 退出。"""

    def error(self, message: str) -> NoReturn:
        logger.error(f"用法错误: {message}")
        self.print_help(sys.stderr)
        sys.exit(EXIT_FAILURE)


def build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="usercert",
        description="签发由 CA 私钥签名的 X.509 证书，并将生成的文件打包为 .zip。",
    )
    parser.add_argument("-c", dest="ca_certificate", required=True, help="CA 证书路径")
    parser.add_argument("-k", dest="ca_key", required=True, help="CA 证书私钥路径")
    parser.add_argument("-z", dest="output_path", required=True, help="输出 .zip 文件路径")

    cert = parser.add_argument_group("证书参数")
    cert.add_argument(
        "-l",
        dest="lifetime_years",
        required=True,
        help="证书有效期（年），到期时间不能晚于 CA 证书的到期时间",
    )
    cert.add_argument(
        "-n",
        dest="common_name",
        default="",
        help="通用名称 (CN)。未提供时由名字 (GN) 与姓氏 (SN) 组成，两者都为空则退出",
    )
    cert.add_argument("-g", dest="given_name", default="", help="名字 (GN)")
    cert.add_argument("-s", dest="surname", default="", help="姓氏 (SN)")
    cert.add_argument("-C", dest="country_name", default="", help="国家 (C)")
    cert.add_argument("-o", dest="organization_name", default="", help="组织 (O)")
    cert.add_argument("-a", dest="alternative_name", default="", help="主体备用名称，默认为通用名称 (CN)")

    runtime = parser.add_argument_group("运行参数")
    runtime.add_argument("--base-dir", dest="base_dir", help="swanctl 目录，默认 /etc/swanctl")
    runtime.add_argument("--engine", choices=["cryptography", "strongswan"], help="PKI 引擎")
    runtime.add_argument(
        "--permissive-lifetime",
        action="store_true",
        help="有效期超过 CA 到期时间时仅记录错误并继续签发",
    )
    runtime.add_argument("--log-level", dest="log_level", help="日志级别，默认 INFO")
    return parser


def _settings_from_args(args: argparse.Namespace) -> Config:
    overrides = {}
    if args.base_dir:
        overrides["base_dir"] = args.base_dir
    if args.engine:
        overrides["engine"] = args.engine
    if args.permissive_lifetime:
        overrides["strict_lifetime"] = False
    if args.log_level:
        overrides["log_level"] = args.log_level
    return Config(**overrides)


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper())


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = _settings_from_args(args)
    configure_logging(settings.log_level)

    request = IssuanceRequest(
        ca_certificate=args.ca_certificate,
        ca_key=args.ca_key,
        lifetime_years=args.lifetime_years,
        output_path=args.output_path,
        common_name=args.common_name,
        given_name=args.given_name,
        surname=args.surname,
        country_name=args.country_name,
        organization_name=args.organization_name,
        alternative_name=args.alternative_name,
    )

    try:
        result = issue_user_certificate(request, settings=settings)
    except IssuanceError as e:
        logger.error(f"[ERR] {e}")
        print(f"证书签发失败: {e}", file=sys.stderr)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        logger.warning("已中断，临时文件已清理")
        return EXIT_INTERRUPTED

    summary: List[str] = [
        f"subject:  {result.distinguished_name}",
        f"altName:  {result.subject.subject_alternative_name}",
        f"lifetime: {result.lifetime.requested_years} 年 ({result.lifetime.lifetime_days} 天)，"
        f"到期 {result.lifetime.supposed_expiration.isoformat()}",
        f"archive:  {result.archive_path}",
    ]
    print("\n".join(summary))
    return 0


if __name__ == "__main__":
    sys.exit(main())
