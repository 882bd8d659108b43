"""
测试 core.py 模块。
"""

from datetime import datetime, timezone

import pytest

from src.usercert.issuance import core
from src.usercert.issuance.errors import (
    InvalidLifetimeError,
    LifetimeExceedsAuthorityError,
    MissingIdentityError,
)


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "given_name, surname, expected",
    [
        ("Alice", "Example", "Alice Example"),
        ("Alice", "", "Alice"),
        ("", "Example", "Example"),
        ("  Mary   Ann ", "Smith", "Mary Ann Smith"),
    ],
)
def test_resolve_subject_composes_common_name(given_name, surname, expected):
    """测试未提供通用名称时由名字与姓氏组成"""
    subject = core.resolve_subject(common_name="  ", given_name=given_name, surname=surname)
    assert subject.common_name == expected
    assert subject.normalized_identifier == expected.lower().replace(" ", ".")


def test_resolve_subject_missing_identity():
    """测试通用名称、名字、姓氏都为空"""
    with pytest.raises(MissingIdentityError):
        core.resolve_subject(common_name="", given_name=" ", surname="")


def test_resolve_subject_keeps_explicit_common_name():
    subject = core.resolve_subject(common_name="VPN Gateway", given_name="Alice", surname="Example")
    assert subject.common_name == "VPN Gateway"
    assert subject.given_name == "Alice"


def test_alternative_name_defaults_to_common_name():
    """测试主体备用名称默认为通用名称"""
    subject = core.resolve_subject(common_name="Alice Example")
    assert subject.subject_alternative_name == "Alice Example"


def test_alternative_name_passed_through():
    subject = core.resolve_subject(common_name="Alice Example", alternative_name="alice@example.com")
    assert subject.subject_alternative_name == "alice@example.com"


def test_normalize_identifier_collapses_whitespace():
    """测试标识符规范化：小写并将连续空白折叠为 '.'"""
    assert core.normalize_identifier("Alice  \t Example") == "alice.example"
    assert core.normalize_identifier("ALICE") == "alice"


def test_distinguished_name_serialization():
    """测试可分辨名称的序列化"""
    subject = core.resolve_subject(common_name="Alice Example", country_name="US")
    assert str(core.build_distinguished_name(subject)) == "CN=Alice Example, C=US"


def test_distinguished_name_fixed_order():
    """测试可分辨名称顺序固定为 CN, GN, SN, O, C"""
    subject = core.resolve_subject(
        given_name="Alice",
        surname="Example",
        country_name="US",
        organization_name="Example Corp",
    )
    expected = "CN=Alice Example, GN=Alice, SN=Example, O=Example Corp, C=US"
    for _ in range(3):
        assert str(core.build_distinguished_name(subject)) == expected


def test_distinguished_name_skips_blank_values():
    subject = core.resolve_subject(common_name="Alice", organization_name="   ")
    assert str(core.build_distinguished_name(subject)) == "CN=Alice"


@pytest.mark.parametrize("value", [0, "0", -1, "-1", "abc", "", "1.5"])
def test_invalid_lifetime(value):
    """测试非法有效期"""
    with pytest.raises(InvalidLifetimeError):
        core.validate_lifetime(value, _utc(2035, 1, 1), _utc(2024, 1, 1))


def test_lifetime_exceeds_authority():
    """测试有效期超过 CA 到期时间"""
    with pytest.raises(LifetimeExceedsAuthorityError) as ei:
        core.validate_lifetime(7, _utc(2030, 1, 1), _utc(2024, 1, 1))
    assert ei.value.requested_years == 7
    assert ei.value.supposed_expiration == _utc(2031, 1, 1)
    assert ei.value.authority_expiration == _utc(2030, 1, 1)
    assert "2030-01-01" in str(ei.value)


def test_lifetime_equal_to_authority_is_rejected():
    """预期到期时间与 CA 到期时间相同也视为超期"""
    with pytest.raises(LifetimeExceedsAuthorityError):
        core.validate_lifetime("6", _utc(2030, 1, 1), _utc(2024, 1, 1))


def test_lifetime_within_authority():
    """
    2024-01-01 加 5 年为 2029-01-01，间隔 1827 天。
    天数按 floor((秒数 + 1) / 86400) + 1 计算，特意包含起始日，结果为 1828。
    """
    result = core.validate_lifetime("5", _utc(2035, 1, 1), _utc(2024, 1, 1))
    assert result.requested_years == 5
    assert result.supposed_expiration == _utc(2029, 1, 1)
    assert result.within_authority is True
    seconds = int(_utc(2029, 1, 1).timestamp() - _utc(2024, 1, 1).timestamp())
    assert result.lifetime_days == (seconds + 1) // 86400 + 1 == 1828


def test_add_years_is_calendar_aware():
    """闰日加一年顺延到 3 月 1 日，而不是加 365 天"""
    assert core.add_years(_utc(2024, 2, 29, 12), 1) == _utc(2025, 3, 1, 12)
    assert core.add_years(_utc(2024, 2, 29, 12), 4) == _utc(2028, 2, 29, 12)
    assert core.add_years(_utc(2023, 2, 28), 1) == _utc(2024, 2, 28)
    assert core.add_years(_utc(2023, 3, 1), 1) == _utc(2024, 3, 1)
    assert core.lifetime_days(_utc(2023, 3, 1), _utc(2024, 3, 1)) == 367


def test_check_lifetime_reports_without_raising():
    result = core.check_lifetime(10, _utc(2030, 1, 1), _utc(2024, 1, 1))
    assert result.within_authority is False
    assert result.lifetime_days > 0
