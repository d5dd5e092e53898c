import os
import sys
import pytest

# 프로젝트 루트를 path에 추가
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from corsgate.messages import HeaderMap, Request, RequestContext, Response


DEFAULT_ORIGIN = "http://example.com"


class RecordingNext:
    """다운스트림 핸들러 대역 (호출 횟수 기록)"""

    def __init__(self, response=None, content_type=None):
        self.response = response
        self.content_type = content_type
        self.calls = []

    def __call__(self, ctx):
        self.calls.append(ctx)
        response = self.response if self.response is not None else ctx.response
        if self.content_type:
            response.headers.append("Content-Type", self.content_type)
        return response

    @property
    def call_count(self):
        return len(self.calls)


@pytest.fixture
def make_context():
    """RequestContext 팩토리"""
    def _make(method="GET", headers=None, response=None, next_handler=None):
        request = Request(method=method, url=DEFAULT_ORIGIN + "/", headers=HeaderMap(headers))
        if response is None:
            response = Response()
        if next_handler is None:
            next_handler = RecordingNext()
        return RequestContext(request=request, next=next_handler, response=response)
    return _make
