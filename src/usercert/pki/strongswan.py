"""
调用 strongSwan pki 与 openssl 命令行的 PKI 引擎实现。
"""

from __future__ import annotations

import os
import re
import subprocess
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Sequence

from dateutil import parser as date_parser
from loguru import logger

from src.usercert.issuance.errors import ExternalToolTimeoutError
from src.usercert.issuance.schemas import CertificateFlag, DistinguishedName

from .engine import CertificateField, KeyAlgorithm, OutputFormat, PkiEngineError, non_blank

_COMMON_NAME_LINE = re.compile(r"^\s*commonName\s*=\s*(.*)$", re.MULTILINE)

# 通过环境变量把 PKCS#12 口令传给 openssl，避免出现在进程参数中
PKCS12_PASSWORD_ENV = "USERCERT_PKCS12_PASSOUT"


class StrongswanPkiEngine:
    """
    :param pki_binary: strongSwan pki 可执行文件。
    :param openssl_binary: openssl 可执行文件。
    :param timeout: 单次命令的超时时间（秒）。
    :param scratch_dir: 导出 PKCS#12 时临时文件的根目录。
    """

    def __init__(
        self,
        pki_binary: str = "pki",
        openssl_binary: str = "openssl",
        timeout: float = 30.0,
        scratch_dir: Path | None = None,
    ) -> None:
        self.pki_binary = pki_binary
        self.openssl_binary = openssl_binary
        self.timeout = timeout
        self.scratch_dir = scratch_dir

    def _run(self, cmd: List[str], stdin: bytes | None = None, env: Dict[str, str] | None = None) -> bytes:
        logger.debug(f"Executing command: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                input=stdin,
                capture_output=True,
                timeout=self.timeout,
                env=env,
            )
        except subprocess.TimeoutExpired as e:
            raise ExternalToolTimeoutError(
                "外部工具执行超时", command=" ".join(cmd[:2]), timeout=self.timeout
            ) from e
        except OSError as e:
            raise PkiEngineError(f"无法执行 {cmd[0]}: {e}") from e

        if result.returncode != 0:
            stderr = (result.stderr or b"").decode("utf-8", errors="replace").strip()
            error_msg = f"{' '.join(cmd[:2])} 执行失败 (退出码 {result.returncode}): {stderr}"
            logger.error(error_msg)
            raise PkiEngineError(error_msg)
        return result.stdout

    def generate_key(self, algorithm: KeyAlgorithm, output_format: OutputFormat) -> bytes:
        return self._run(
            [
                self.pki_binary,
                "--gen",
                "--type",
                KeyAlgorithm(algorithm).value,
                "--outform",
                OutputFormat(output_format).value,
            ]
        )

    def generate_request(
        self,
        private_key: bytes,
        distinguished_name: DistinguishedName,
        subject_alt_names: Sequence[str],
    ) -> bytes:
        cmd = [self.pki_binary, "--req", "--type", "priv", "--dn", str(distinguished_name)]
        for name in non_blank(subject_alt_names):
            cmd.extend(["--san", name])
        cmd.extend(["--outform", "pem"])
        # 未指定 --in 时 pki 从标准输入读取私钥
        return self._run(cmd, stdin=private_key)

    def issue_certificate(
        self,
        csr: bytes,
        ca_certificate: Path,
        ca_key: Path,
        lifetime_days: int,
        flags: Iterable[CertificateFlag],
    ) -> bytes:
        cmd = [
            self.pki_binary,
            "--issue",
            "--type",
            "pkcs10",
            "--cacert",
            str(ca_certificate),
            "--cakey",
            str(ca_key),
            "--lifetime",
            str(lifetime_days),
        ]
        flag_values = [CertificateFlag(flag).value for flag in flags]
        logger.info(f"签发证书使用的标志：{', '.join(flag_values)}")
        for value in flag_values:
            cmd.extend(["--flag", value])
        cmd.extend(["--outform", "pem"])
        return self._run(cmd, stdin=csr)

    def read_certificate_field(self, certificate: bytes, field: CertificateField) -> str | datetime:
        if field == CertificateField.NOT_AFTER:
            output = self._run([self.openssl_binary, "x509", "-noout", "-enddate"], stdin=certificate)
            value = output.decode("utf-8").strip().split("=", 1)[-1]
            try:
                return date_parser.parse(value)
            except (ValueError, OverflowError) as e:
                raise PkiEngineError(f"无法解析证书到期时间: {value}") from e

        if field == CertificateField.COMMON_NAME:
            output = self._run(
                [self.openssl_binary, "x509", "-noout", "-subject", "-nameopt", "multiline"],
                stdin=certificate,
            )
            match = _COMMON_NAME_LINE.search(output.decode("utf-8"))
            return match.group(1).strip() if match else ""

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
        with tempfile.TemporaryDirectory(dir=self.scratch_dir) as tmpdir:
            key_path = os.path.join(tmpdir, "key.pem")
            cert_path = os.path.join(tmpdir, "certificate.pem")
            ca_path = os.path.join(tmpdir, "ca.pem")
            out_path = os.path.join(tmpdir, "certificate.p12")

            for path, data in ((key_path, private_key), (cert_path, certificate), (ca_path, ca_certificate)):
                with open(path, "wb") as f:
                    f.write(data)

            cmd = [
                self.openssl_binary,
                "pkcs12",
                "-export",
                "-inkey",
                key_path,
                "-in",
                cert_path,
                "-name",
                container_name,
                "-certfile",
                ca_path,
            ]
            if ca_name:
                cmd.extend(["-caname", ca_name])
            cmd.extend(["-out", out_path])

            env = None
            if password:
                env = {**os.environ, PKCS12_PASSWORD_ENV: password}
                cmd.extend(["-passout", f"env:{PKCS12_PASSWORD_ENV}"])
            else:
                cmd.extend(["-passout", "pass:"])

            self._run(cmd, env=env)
            with open(out_path, "rb") as f:
                return f.read()

    def describe_certificate(self, certificate: bytes) -> str:
        output = self._run([self.pki_binary, "--print", "--type", "x509"], stdin=certificate)
        return output.decode("utf-8", errors="replace").rstrip()
