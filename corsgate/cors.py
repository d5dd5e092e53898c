"""
CORS (Cross-Origin Resource Sharing) request gate.

Wraps a downstream handler: rejects requests without an Origin (400) or from
an origin outside the policy (403), answers preflight OPTIONS requests itself
(204, or 405 for a method that is not allowed) and stamps CORS headers on
every other allowed response.

Thread-safe: stateless after construction, the policy is frozen.
No external dependencies (stdlib only).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Optional

from corsgate.messages import RequestContext, Response

WILDCARD = "*"

ALLOW_ORIGIN = "Access-Control-Allow-Origin"
ALLOW_METHODS = "Access-Control-Allow-Methods"
ALLOW_HEADERS = "Access-Control-Allow-Headers"
REQUEST_METHOD = "Access-Control-Request-Method"


@dataclass(frozen=True)
class CORSPolicy:
    """Immutable CORS policy.

    Attributes:
        origins: Allowed origins. "*" allows all origins, empty denies all.
        methods: Methods advertised (and accepted on preflight).
        headers: Request headers advertised as allowed.
    """
    origins: tuple[str, ...] = ()
    methods: tuple[str, ...] = ()
    headers: tuple[str, ...] = ()

    def __post_init__(self):
        # lists in, tuples stored
        object.__setattr__(self, "origins", tuple(self.origins))
        object.__setattr__(self, "methods", tuple(self.methods))
        object.__setattr__(self, "headers", tuple(self.headers))

    @property
    def allows_any_origin(self) -> bool:
        return WILDCARD in self.origins


def is_allowed_origin(origin: Optional[str], policy: CORSPolicy) -> bool:
    """Check if the given origin is allowed by the policy.

    Matching is exact and case-sensitive; no scheme, port or subdomain
    relaxation. A present but empty origin passes only under "*".

    Args:
        origin: The Origin header value from the request.
        policy: CORSPolicy instance.

    Returns:
        True if the origin is allowed, False otherwise.
    """
    if origin is None:
        return False
    if policy.allows_any_origin:
        return True
    return origin in policy.origins


def get_cors_headers(origin: str, policy: CORSPolicy) -> dict[str, str]:
    """Build the CORS response headers for an admitted origin.

    Args:
        origin: The Origin header value from the request.
        policy: CORSPolicy instance.

    Returns:
        Dictionary with Allow-Origin, Allow-Methods and Allow-Headers.
        Lists are joined with ", " in configured order.
    """
    return {
        ALLOW_ORIGIN: WILDCARD if policy.allows_any_origin else origin,
        ALLOW_METHODS: ", ".join(policy.methods),
        ALLOW_HEADERS: ", ".join(policy.headers),
    }


def _apply_headers(response: Response, origin: str, policy: CORSPolicy) -> Response:
    for name, value in get_cors_headers(origin, policy).items():
        response.headers.set(name, value)
    return response


def _check(ctx: RequestContext, policy: CORSPolicy) -> Optional[Response]:
    """Run the terminal part of the gate.

    Returns the terminal response for rejected or preflight requests, or
    None when the request must go downstream.
    """
    request = ctx.request
    origin = request.headers.get("Origin")
    if origin is None:
        return Response(status=400)
    if not is_allowed_origin(origin, policy):
        return Response(status=403)

    if request.method.upper() == "OPTIONS":
        requested = request.headers.get(REQUEST_METHOD)
        if requested not in policy.methods:
            return Response(status=405)
        response = ctx.response if ctx.response is not None else Response()
        _apply_headers(response, origin, policy)
        response.status = 204
        return response

    return None


def _resolve_policy(
    policy: Optional[CORSPolicy],
    origins: Optional[Iterable[str]],
    methods: Optional[Iterable[str]],
    headers: Optional[Iterable[str]],
) -> CORSPolicy:
    if policy is not None:
        return policy
    return CORSPolicy(
        origins=origins or (),
        methods=methods or (),
        headers=headers or (),
    )


def create_cors_middleware(
    policy: Optional[CORSPolicy] = None,
    *,
    origins: Optional[Iterable[str]] = None,
    methods: Optional[Iterable[str]] = None,
    headers: Optional[Iterable[str]] = None,
) -> Callable[[RequestContext], Response]:
    """Create a synchronous CORS gate.

    Either pass a CORSPolicy or the three lists as keyword arguments; omitted
    lists are empty. The returned handler never raises for a rejected
    request. Exceptions from ``ctx.next`` propagate unchanged.
    """
    policy = _resolve_policy(policy, origins, methods, headers)

    def cors_middleware(ctx: RequestContext) -> Response:
        terminal = _check(ctx, policy)
        if terminal is not None:
            return terminal
        response = ctx.next(ctx)
        return _apply_headers(response, ctx.request.headers.get("Origin"), policy)

    cors_middleware.policy = policy
    return cors_middleware


def create_async_cors_middleware(
    policy: Optional[CORSPolicy] = None,
    *,
    origins: Optional[Iterable[str]] = None,
    methods: Optional[Iterable[str]] = None,
    headers: Optional[Iterable[str]] = None,
) -> Callable[[RequestContext], Awaitable[Response]]:
    """Same gate as create_cors_middleware, for an awaitable ``ctx.next``."""
    policy = _resolve_policy(policy, origins, methods, headers)

    async def cors_middleware(ctx: RequestContext) -> Response:
        terminal = _check(ctx, policy)
        if terminal is not None:
            return terminal
        response = await ctx.next(ctx)
        return _apply_headers(response, ctx.request.headers.get("Origin"), policy)

    cors_middleware.policy = policy
    return cors_middleware


def _split_csv(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def create_cors_policy(
    allowed_origins_str: str = "",
    allowed_methods_str: str = "",
    allowed_headers_str: str = "",
) -> CORSPolicy:
    """Create a CORSPolicy from comma-separated strings.

    Args:
        allowed_origins_str: Comma-separated origins, "*" for any origin.
            An empty string yields a deny-all policy.
        allowed_methods_str: Comma-separated HTTP methods.
        allowed_headers_str: Comma-separated header names.

    Returns:
        CORSPolicy instance.
    """
    return CORSPolicy(
        origins=_split_csv(allowed_origins_str),
        methods=_split_csv(allowed_methods_str),
        headers=_split_csv(allowed_headers_str),
    )
