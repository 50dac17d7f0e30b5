# v4.0
#!/usr/bin/env python
# -*- coding: utf-8 -*-

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
MAX_LOG_BYTES = 1024 * 1024
LOG_BACKUPS = 3


class LoggerManager:
    """
    チューナーのログ設定。
    記録するのはセッションの開始/終了、入力デバイス、設定の読み書きとエラーだけで、
    25Hz で回る検出ティックからはログを出さない。
    標準出力は音名表示に使うので、コンソール側のログは stderr に出す。
    """

    @staticmethod
    def _build_handlers(log_path: Path, level: int, console: bool) -> List[logging.Handler]:
        handlers: List[logging.Handler] = [
            RotatingFileHandler(log_path, maxBytes=MAX_LOG_BYTES,
                                backupCount=LOG_BACKUPS, encoding='utf-8')
        ]
        if console:
            handlers.append(logging.StreamHandler(sys.stderr))

        formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
        for handler in handlers:
            handler.setFormatter(formatter)
            handler.setLevel(level)
        return handlers

    @staticmethod
    def setup_logging(log_dir: Path, log_file: str = "tuner.log",
                      level: int = logging.INFO, console: bool = True) -> Path:
        """
        ルートロガーを初期化してログファイルのパスを返す。
        - 1MB でローテーション、3世代まで保持
        - 再初期化 (設定変更後の再起動など) では前のハンドラを閉じて差し替える
        """
        log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_dir / log_file

        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()

        root_logger.setLevel(level)
        for handler in LoggerManager._build_handlers(log_path, level, console):
            root_logger.addHandler(handler)

        logging.info(f"--- Tuner log started (level {logging.getLevelName(level)}) ---")
        logging.info(f"Log file: {log_path}")
        return log_path
