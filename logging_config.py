"""
corsgate 로깅 설정

HTTP 요청 단위 로깅을 위한 설정 모듈.
- text/JSON 포맷 (JSON은 한 줄 한 레코드)
- 요청 필드(method, path, origin, status)를 extra로 받아 출력
- Authorization/Cookie 헤더 값, URL 자격 증명, 토큰 자동 마스킹
- 선택적 회전 파일 로그

사용법:
    from logging_config import setup_logging, get_logger, request_extra
    setup_logging(level="INFO", log_format="json")
    logger = get_logger("server")
    logger.info("handled", extra=request_extra(request, 204))
"""

import os
import re
import json
import logging
import logging.handlers
from datetime import datetime, timezone
from typing import Any, Optional


ROOT_LOGGER_NAME = "corsgate"
REDACTED = "[REDACTED]"

# LogRecord 속성 이름 -> 출력 키
REQUEST_FIELDS = {
    "http_method": "method",
    "http_path": "path",
    "http_origin": "origin",
    "http_status": "status",
}

# (패턴, 치환) 순서대로 적용
_SECRET_PATTERNS = [
    # 민감 헤더: 이름은 남기고 값 전체를 가림 ("Cookie: a=1; b=2", "'authorization': '...'")
    (
        re.compile(
            r"(?i)\b(authorization|proxy-authorization|cookie|set-cookie|x-api-key)"
            r"(['\"]?\s*[:=]\s*['\"]?)[^'\"\r\n]+"
        ),
        r"\1\2" + REDACTED,
    ),
    # 헤더 이름 없이 나타난 인증 스킴 값
    (re.compile(r"\b(Bearer|Basic) [A-Za-z0-9._~+/=-]{8,}"), r"\1 " + REDACTED),
    # URL 내 user:password@
    (re.compile(r"(?<=://)[^/\s:@]+:[^/\s@]+(?=@)"), REDACTED),
    # API 키 형식 토큰
    (re.compile(r"\b(?:sk-[a-zA-Z0-9_-]{20,}|ghp_[a-zA-Z0-9]{36,})"), REDACTED),
]


def _mask_secrets(text: Any) -> str:
    """헤더 값, 자격 증명, 토큰 마스킹"""
    text = str(text)
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def _mask_arg(value: Any) -> Any:
    return _mask_secrets(value) if isinstance(value, str) else value


def request_extra(request, status: Optional[int] = None) -> dict:
    """logger 호출의 extra 인자로 쓸 요청 필드 생성

    Args:
        request: corsgate.messages.Request (method, url, headers)
        status: 응답 상태 코드 (없으면 생략)
    """
    extra = {
        "http_method": request.method,
        "http_path": request.url,
        "http_origin": request.headers.get("Origin"),
    }
    if status is not None:
        extra["http_status"] = status
    return extra


def _request_fields(record: logging.LogRecord) -> dict:
    fields = {}
    for attr, key in REQUEST_FIELDS.items():
        value = getattr(record, attr, None)
        if value is not None:
            fields[key] = value
    return fields


class SecretMaskingFilter(logging.Filter):
    """메시지, 문자열 인자, 요청 경로의 비밀값 마스킹

    문자열이 아닌 인자는 그대로 둔다 (%d 등 포맷 유지).
    """

    def filter(self, record):
        if isinstance(record.msg, str):
            record.msg = _mask_secrets(record.msg)
        if isinstance(record.args, dict):
            record.args = {k: _mask_arg(v) for k, v in record.args.items()}
        elif record.args:
            record.args = tuple(_mask_arg(a) for a in record.args)
        path = getattr(record, "http_path", None)
        if path:
            record.http_path = _mask_secrets(path)
        return True


class JSONFormatter(logging.Formatter):
    """한 줄 JSON 포매터

    키: timestamp(UTC), level, logger, message, 요청 필드가 있으면 request,
    예외가 있으면 exception.
    """

    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": _mask_secrets(record.getMessage()),
        }
        fields = _request_fields(record)
        if fields:
            entry["request"] = fields
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """텍스트 포매터, 요청 필드는 메시지 뒤에 key=value로 붙임"""

    def __init__(self):
        super().__init__(
            fmt="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def formatMessage(self, record):
        line = super().formatMessage(record)
        fields = _request_fields(record)
        if fields:
            line += " " + " ".join(f"{k}={v}" for k, v in fields.items())
        return line


def _make_formatter(log_format: str) -> logging.Formatter:
    return JSONFormatter() if log_format == "json" else TextFormatter()


def _console_handler() -> logging.Handler:
    return logging.StreamHandler()


def _file_handler(log_file: str, max_bytes: int, backup_count: int) -> logging.Handler:
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    return logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )


_initialized = False


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    log_file: Optional[str] = None,
    max_bytes: int = 10_485_760,
    backup_count: int = 5,
) -> None:
    """corsgate 로거 설정 (두 번째 호출부터는 무시)

    Args:
        level: 로그 레벨 (DEBUG, INFO, WARNING, ERROR)
        log_format: "text" 또는 "json"
        log_file: 회전 로그 파일 경로 (None 또는 빈 문자열이면 콘솔만)
        max_bytes: 파일 최대 크기
        backup_count: 보관할 백업 파일 수
    """
    global _initialized
    if _initialized:
        return
    _initialized = True

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    handlers = [_console_handler()]
    if log_file:
        handlers.append(_file_handler(log_file, max_bytes, backup_count))

    formatter = _make_formatter(log_format)
    secret_filter = SecretMaskingFilter()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(secret_filter)
        root_logger.addHandler(handler)


def setup_logging_from_config(cfg) -> None:
    """config.Config의 log_* 필드로 setup_logging 호출"""
    setup_logging(
        level=cfg.log_level,
        log_format=cfg.log_format,
        log_file=cfg.log_file or None,
        max_bytes=cfg.log_max_bytes,
        backup_count=cfg.log_backup_count,
    )


def get_logger(name: str) -> logging.Logger:
    """corsgate.{name} 로거 반환 (예: "server", "fetch")"""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def reset_logging() -> None:
    """로깅 설정 초기화 (테스트용), 핸들러는 닫고 제거"""
    global _initialized
    _initialized = False
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)
