"""
corsgate HTTP 서버 어댑터

표준 라이브러리 http.server 위에서 임의의 핸들러를 CORS 게이트 뒤에 둡니다.
- 모든 메서드(GET/POST/PUT/PATCH/DELETE/HEAD/OPTIONS)를 게이트로 전달
- 요청 본문 크기 제한 (기본 1MB)
- 게이트 결과(상태 코드, 헤더, 본문)를 그대로 전송

사용법:
    CORS_ALLOWED_ORIGINS=http://localhost:3000 python3 -m corsgate.server
"""

import argparse
import http.server
from typing import Callable, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

from config import get_config
from corsgate.cors import CORSPolicy, create_cors_middleware, create_cors_policy
from corsgate.messages import HeaderMap, Request, RequestContext, Response
from logging_config import get_logger, request_extra, setup_logging_from_config

logger = get_logger("server")

_MAX_BODY_SIZE = 1_048_576  # 요청 본문 크기 제한 (1MB)

# 본문이 없어야 하는 상태 코드
_NO_BODY_STATUSES = (204, 304)


def request_from_handler(handler: http.server.BaseHTTPRequestHandler, body: Optional[bytes] = None) -> Request:
    """BaseHTTPRequestHandler의 현재 요청을 Request로 변환"""
    headers = HeaderMap()
    if handler.headers is not None:
        for name, value in handler.headers.items():
            headers.append(name, value)
    return Request(method=handler.command, url=handler.path, headers=headers, body=body)


def default_app(ctx: RequestContext) -> Response:
    """기본 다운스트림 앱: 요청 경로를 JSON으로 응답"""
    path = urlparse(ctx.request.url).path
    return Response.json({"ok": True, "method": ctx.request.method, "path": path})


class CORSRequestHandler(http.server.BaseHTTPRequestHandler):
    """모든 요청을 CORS 게이트에 통과시키는 핸들러.

    create_server()가 gate/app을 바인딩한 서브클래스를 만듭니다.
    """

    gate: Callable[[RequestContext], Response] = None
    app: Callable[[RequestContext], Response] = None
    max_body_size: int = _MAX_BODY_SIZE
    access_log: bool = False

    # ---- 헬퍼 ----

    def _read_body(self):
        """요청 본문 읽기 (크기 제한 적용). 오류 시 응답을 보내고 None 반환."""
        try:
            length = int(self.headers.get("Content-Length", "0"))
        except ValueError:
            self._send(Response.json({"error": "Invalid Content-Length"}, 400))
            return None
        if length < 0:
            self._send(Response.json({"error": "Invalid Content-Length"}, 400))
            return None
        if length > self.max_body_size:
            self._send(Response.json({"error": "Request body too large"}, 413))
            return None
        if length == 0:
            return b""
        return self.rfile.read(length)

    def _call_app(self, ctx: RequestContext) -> Response:
        """다운스트림 앱 호출. 예외는 로깅 후 500 응답으로 변환."""
        try:
            return self.app(ctx)
        except Exception:
            logger.exception("app failed", extra=request_extra(ctx.request))
            return Response.json({"error": "Internal server error"}, 500)

    def _send(self, response: Response):
        """Response 전송

        HEAD는 본문만 생략하고 Content-Length는 유지한다.
        204/304는 본문과 Content-Length를 모두 생략한다.
        """
        body = response.body or b""
        no_body_status = response.status in _NO_BODY_STATUSES
        self.send_response(response.status)
        for name, value in response.headers.items():
            if no_body_status and name.lower() == "content-length":
                continue
            self.send_header(name, value)
        if not no_body_status and "Content-Length" not in response.headers:
            self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if body and not no_body_status and self.command != "HEAD":
            self.wfile.write(body)

    def _dispatch(self):
        body = self._read_body()
        if body is None:
            return
        request = request_from_handler(self, body or None)
        ctx = RequestContext(request=request, next=self._call_app, response=Response())
        response = self.gate(ctx)
        logger.debug("gate decision", extra=request_extra(request, response.status))
        self._send(response)

    def log_message(self, format, *args):
        """접근 로그 (server_access_log 설정 시에만)"""
        if self.access_log:
            logger.info("%s - %s", self.address_string(), format % args)

    # ---- HTTP 메서드 ----

    do_GET = _dispatch
    do_POST = _dispatch
    do_PUT = _dispatch
    do_PATCH = _dispatch
    do_DELETE = _dispatch
    do_HEAD = _dispatch
    do_OPTIONS = _dispatch


def create_server(
    app: Callable[[RequestContext], Response],
    policy: CORSPolicy,
    host: str = "127.0.0.1",
    port: int = 8080,
    max_body_size: int = _MAX_BODY_SIZE,
    access_log: bool = False,
) -> http.server.ThreadingHTTPServer:
    """app을 CORS 게이트 뒤에 둔 ThreadingHTTPServer 생성 (아직 serve 하지 않음)"""
    handler_cls = type(
        "BoundCORSRequestHandler",
        (CORSRequestHandler,),
        {
            "gate": staticmethod(create_cors_middleware(policy)),
            "app": staticmethod(app),
            "max_body_size": max_body_size,
            "access_log": access_log,
        },
    )
    return http.server.ThreadingHTTPServer((host, port), handler_cls)


def main(argv=None):
    load_dotenv()

    parser = argparse.ArgumentParser(description="corsgate demo server")
    parser.add_argument("--host", default=None)
    parser.add_argument("--port", type=int, default=None)
    args = parser.parse_args(argv)

    cfg = get_config()
    setup_logging_from_config(cfg)

    policy = create_cors_policy(
        cfg.cors_allowed_origins,
        cfg.cors_allowed_methods,
        cfg.cors_allowed_headers,
    )
    if not policy.origins:
        logger.warning("CORS_ALLOWED_ORIGINS is empty: every cross-origin request will get 403")

    host = args.host or cfg.server_host
    port = args.port or cfg.server_port
    server = create_server(
        default_app,
        policy,
        host=host,
        port=port,
        max_body_size=cfg.max_body_size,
        access_log=cfg.server_access_log,
    )
    logger.info("corsgate listening on http://%s:%d (origins: %s)", host, port, ", ".join(policy.origins) or "-")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("shutting down")
    finally:
        server.server_close()


if __name__ == "__main__":
    main()
