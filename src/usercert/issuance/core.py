"""
证书签发流程的核心逻辑实现。
包括主体解析、可分辨名称构造、标识符规范化以及有效期校验。
"""

import math
import re
from datetime import datetime
from typing import Tuple

from dateutil.relativedelta import relativedelta
from loguru import logger

from .errors import InvalidLifetimeError, LifetimeExceedsAuthorityError, MissingIdentityError
from .schemas import DistinguishedName, LifetimeCheck, RdnType, RelativeDistinguishedName, Subject

_WHITESPACE = re.compile(r"\s+")
_DIGITS = re.compile(r"^[0-9]+$")

SECONDS_PER_DAY = 86400

# 主体字段到 RDN 类型的映射，遍历顺序即可分辨名称中的顺序
RDN_FIELDS: Tuple[Tuple[str, RdnType], ...] = (
    ("common_name", RdnType.COMMON_NAME),
    ("given_name", RdnType.GIVEN_NAME),
    ("surname", RdnType.SURNAME),
    ("organization_name", RdnType.ORGANIZATION_NAME),
    ("country_name", RdnType.COUNTRY_NAME),
)


def _is_blank(value: str | None) -> bool:
    return value is None or not value.strip()


def normalize_identifier(common_name: str) -> str:
    """
    转为小写并将连续空白折叠为单个 '.'，作为生成文件的文件名。
    :param common_name: 通用名称。
    :return: 规范化后的标识符，例如 "Alice Example" -> "alice.example"。
    """
    return _WHITESPACE.sub(".", common_name.lower())


def compose_common_name(given_name: str, surname: str) -> str:
    """按 名字、姓氏 的顺序以单个空格拼接非空部分。"""
    return " ".join(f"{given_name or ''} {surname or ''}".split())


def resolve_subject(
    common_name: str = "",
    given_name: str = "",
    surname: str = "",
    country_name: str = "",
    organization_name: str = "",
    alternative_name: str = "",
) -> Subject:
    """
    根据调用方输入解析证书主体。
    :raises MissingIdentityError: 未提供通用名称且名字与姓氏均为空。
    """
    if _is_blank(common_name):
        if _is_blank(given_name) and _is_blank(surname):
            raise MissingIdentityError(
                "未提供通用名称，且名字与姓氏均为空",
                given_name=given_name,
                surname=surname,
            )
        common_name = compose_common_name(given_name, surname)
        logger.info(f"未提供通用名称，将由名字与姓氏构造：'{common_name}'")

    if _is_blank(alternative_name):
        logger.info(f"未提供主体备用名称，将使用通用名称 = {common_name}")
        alternative_name = common_name

    normalized = normalize_identifier(common_name)
    logger.info(f"规范化：'{common_name}' -> '{normalized}'")

    return Subject(
        common_name=common_name,
        given_name=given_name or "",
        surname=surname or "",
        country_name=country_name or "",
        organization_name=organization_name or "",
        subject_alternative_name=alternative_name,
        normalized_identifier=normalized,
    )


def build_distinguished_name(subject: Subject) -> DistinguishedName:
    """由主体中所有非空的 RDN 字段构造可分辨名称。"""
    rdns = []
    for field_name, rdn_type in RDN_FIELDS:
        value = getattr(subject, field_name)
        if _is_blank(value):
            continue
        rdn = RelativeDistinguishedName(type=rdn_type, value=value)
        logger.info(f"\t[{field_name}] -> [{rdn}]")
        rdns.append(rdn)
    return DistinguishedName(rdns=rdns)


def parse_lifetime_years(requested_years: int | str) -> int:
    """
    解析以年为单位的有效期。
    :raises InvalidLifetimeError: 非数字、负数或 0。
    """
    text = str(requested_years).strip()
    if not _DIGITS.match(text):
        raise InvalidLifetimeError("证书有效期取值不正确", lifetime=requested_years)
    years = int(text)
    if years == 0:
        raise InvalidLifetimeError("证书有效期不能为 0", lifetime=requested_years)
    return years


def add_years(moment: datetime, years: int) -> datetime:
    """
    按日历加年份，而不是按 365 天的倍数。
    与 GNU date 一致：2 月 29 日加到非闰年时顺延到 3 月 1 日。
    """
    result = moment + relativedelta(years=years)
    if (moment.month, moment.day) == (2, 29) and result.day == 28:
        result += relativedelta(days=1)
    return result


def lifetime_days(start: datetime, end: datetime) -> int:
    """
    将两个时间点之间的间隔换算为天数，结果包含起始日：
    floor((epoch(end) - epoch(start) + 1) / 86400) + 1
    """
    seconds = math.floor(end.timestamp()) - math.floor(start.timestamp())
    return (seconds + 1) // SECONDS_PER_DAY + 1


def check_lifetime(requested_years: int | str, authority_expiration: datetime, now: datetime) -> LifetimeCheck:
    """
    计算有效期并与 CA 证书到期时间比较，不抛出超期错误。
    :raises InvalidLifetimeError: 有效期取值不正确。
    """
    years = parse_lifetime_years(requested_years)
    logger.info(
        f"CA 证书到期时间：{authority_expiration.isoformat()} -> {math.floor(authority_expiration.timestamp())}"
    )

    supposed = add_years(now, years)
    logger.info(f"新证书预期到期时间：{supposed.isoformat()} -> {math.floor(supposed.timestamp())}")

    days = lifetime_days(now, supposed)
    logger.info(f"证书有效期换算：{years} 年 -> {days} 天")

    return LifetimeCheck(
        requested_years=years,
        lifetime_days=days,
        supposed_expiration=supposed,
        authority_expiration=authority_expiration,
        within_authority=supposed < authority_expiration,
    )


def validate_lifetime(requested_years: int | str, authority_expiration: datetime, now: datetime) -> LifetimeCheck:
    """
    校验有效期不超过 CA 证书的到期时间。
    :param requested_years: 申请的有效期（年）。
    :param authority_expiration: CA 证书的 notAfter。
    :param now: 当前时间，与 authority_expiration 同为带时区的时间。
    :return: 包含天数与预期到期时间的校验结果。
    :raises InvalidLifetimeError: 有效期取值不正确。
    :raises LifetimeExceedsAuthorityError: 预期到期时间不早于 CA 到期时间。
    """
    result = check_lifetime(requested_years, authority_expiration, now)
    if not result.within_authority:
        raise LifetimeExceedsAuthorityError(
            result.requested_years, result.supposed_expiration, authority_expiration
        )
    return result
