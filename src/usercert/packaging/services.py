"""
将签发产物打包为 zip 文件。
"""

from __future__ import annotations

import os
import shutil
import tempfile
import zipfile
from pathlib import Path

from loguru import logger

from src.usercert.issuance.errors import PackagingFailedError

PACKED_PRIVATE_KEY_NAME = "key.pem"
PACKED_CERTIFICATE_NAME = "certificate.pem"
PACKED_PKCS12_NAME = "certificate.p12"


def pack_to_zip(
    output_path: Path | str,
    private_key_file: Path | str,
    certificate_file: Path | str,
    pkcs12_file: Path | str,
    scratch_dir: Path | None = None,
) -> Path:
    """
    将私钥、证书与 PKCS#12 容器以固定文件名打包到 output_path。

    文件先复制到临时目录，压缩后从临时目录移除；zip 先写入同目录下的
    临时文件，完成后再替换目标文件。任何情况下临时目录都会被清理。
    :return: 生成的 zip 文件路径。
    :raises PackagingFailedError: 复制、压缩或写入失败。
    """
    output = Path(output_path)
    sources = (
        (Path(private_key_file), PACKED_PRIVATE_KEY_NAME),
        (Path(certificate_file), PACKED_CERTIFICATE_NAME),
        (Path(pkcs12_file), PACKED_PKCS12_NAME),
    )

    try:
        with tempfile.TemporaryDirectory(dir=scratch_dir) as tmpdir:
            logger.info(f"已创建临时目录 {tmpdir}")
            tmp_path = Path(tmpdir)
            for source, name in sources:
                shutil.copyfile(source, tmp_path / name)

            fd, partial = tempfile.mkstemp(prefix=f".{output.name}.", suffix=".part", dir=output.parent)
            os.close(fd)
            try:
                with zipfile.ZipFile(partial, "w", compression=zipfile.ZIP_DEFLATED) as archive:
                    for _, name in sources:
                        archive.write(tmp_path / name, arcname=name)
                        (tmp_path / name).unlink()
                os.replace(partial, output)
            except BaseException:
                Path(partial).unlink(missing_ok=True)
                raise
    except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile) as e:
        logger.error(f"打包生成文件失败: {e}")
        raise PackagingFailedError(
            "打包生成文件失败",
            output=str(output),
            private_key=str(sources[0][0]),
            certificate=str(sources[1][0]),
            pkcs12=str(sources[2][0]),
        ) from e

    logger.info(f"生成的文件已放入 {output}")
    return output
