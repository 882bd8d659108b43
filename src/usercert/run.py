#!/usr/bin/env python
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

if __name__ == "__main__":
    load_dotenv(Path.cwd() / ".env")
    if "USERCERT_LOG_LEVEL" not in os.environ and os.getenv("LOG_LEVEL"):
        os.environ["USERCERT_LOG_LEVEL"] = os.environ["LOG_LEVEL"].upper()

    # 在加载 .env 之后再导入，使全局配置读取到其中的变量
    from src.usercert.config import config
    from src.usercert.main import main

    logger.info(f"swanctl 目录：{config.base_dir}，PKI 引擎：{config.engine}")
    sys.exit(main())
