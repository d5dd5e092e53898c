"""
corsgate 중앙 집중식 설정 모듈

모든 설정값을 단일 모듈로 통합합니다.
우선순위: 환경변수 > config.json > 기본값

사용법:
    from config import get_config
    cfg = get_config()
    print(cfg.server_port)  # 8080
"""

import os
import json
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Config:
    """중앙 집중식 설정 (불변 객체)"""

    # CORS 정책 (쉼표 구분, 빈 문자열 = 전부 거부)
    cors_allowed_origins: str = ""
    cors_allowed_methods: str = "GET, POST, PUT, DELETE, OPTIONS"
    cors_allowed_headers: str = "Content-Type, Authorization"

    # 서버
    server_host: str = "127.0.0.1"
    server_port: int = 8080
    max_body_size: int = 1_048_576     # 1MB
    server_access_log: bool = False

    # Fetch 헬퍼
    fetch_base_url: str = ""
    fetch_timeout: float = 30.0

    # 로깅
    log_level: str = "INFO"
    log_format: str = "text"           # "text" | "json"
    log_file: str = ""
    log_max_bytes: int = 10_485_760    # 10MB
    log_backup_count: int = 5


def _str_to_bool(s: str) -> bool:
    """문자열을 bool로 변환 (config.json의 bool 값은 그대로)"""
    if isinstance(s, bool):
        return s
    return str(s).lower() in ("true", "1", "yes")


# 환경변수 매핑 (ENV_NAME -> (field_name, type_converter))
_ENV_MAP = {
    "CORS_ALLOWED_ORIGINS": ("cors_allowed_origins", str),
    "CORS_ALLOWED_METHODS": ("cors_allowed_methods", str),
    "CORS_ALLOWED_HEADERS": ("cors_allowed_headers", str),
    "SERVER_HOST": ("server_host", str),
    "SERVER_PORT": ("server_port", int),
    "MAX_BODY_SIZE": ("max_body_size", int),
    "SERVER_ACCESS_LOG": ("server_access_log", _str_to_bool),
    "FETCH_BASE_URL": ("fetch_base_url", str),
    "FETCH_TIMEOUT": ("fetch_timeout", float),
    "LOG_LEVEL": ("log_level", str),
    "LOG_FORMAT": ("log_format", str),
    "LOG_FILE": ("log_file", str),
    "LOG_MAX_BYTES": ("log_max_bytes", int),
    "LOG_BACKUP_COUNT": ("log_backup_count", int),
}


# 설정 필드 범위 제한
_FIELD_BOUNDS = {
    "server_port": (1, 65535),
    "max_body_size": (1024, 104_857_600),   # 1KB ~ 100MB
    "fetch_timeout": (1.0, 300.0),
    "log_max_bytes": (1024, 1_073_741_824),
    "log_backup_count": (0, 100),
}


def _clamp(field_name, value):
    """설정값의 범위를 제한"""
    if field_name in _FIELD_BOUNDS:
        lo, hi = _FIELD_BOUNDS[field_name]
        return type(value)(max(lo, min(hi, value)))
    return value


def _load_config_file(path: str = "config.json") -> dict:
    """config.json 로드 (없으면 빈 dict 반환)"""
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}
    except (json.JSONDecodeError, OSError):
        return {}


def load_config(config_path: str = "config.json") -> Config:
    """설정 로드 (환경변수 > config.json > 기본값)"""
    file_config = _load_config_file(config_path)
    overrides = {}

    for env_name, (field_name, converter) in _ENV_MAP.items():
        # 1. 환경변수 확인
        env_val = os.environ.get(env_name)
        if env_val is not None:
            try:
                overrides[field_name] = _clamp(field_name, converter(env_val))
            except (ValueError, TypeError):
                pass  # 변환 실패 시 무시
            continue

        # 2. config.json 확인
        if field_name in file_config:
            try:
                overrides[field_name] = _clamp(field_name, converter(file_config[field_name]))
            except (ValueError, TypeError):
                pass

    return Config(**overrides)


# 싱글턴 캐시
_cached_config: Optional[Config] = None


def get_config(config_path: str = "config.json") -> Config:
    """설정 싱글턴 반환 (최초 호출 시 로드)"""
    global _cached_config
    if _cached_config is None:
        _cached_config = load_config(config_path)
    return _cached_config


def reset_config() -> None:
    """설정 캐시 초기화 (테스트용)"""
    global _cached_config
    _cached_config = None
