import asyncio
from typing import Dict, List, Optional, Tuple

from fastapi import Depends, HTTPException, Request, Response, status

from cms_infra.core.config import DEFAULT_ORG_QUOTA, DEFAULT_USER_QUOTA
from cms_infra.schemas.rate_limit import HitResult, ScopeLimit
from cms_infra.services.rate_limiter import RateLimiter, get_rate_limiter


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "0.0.0.0"


def rate_limit_headers(result: HitResult) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(max(0, result.remaining)),
        "X-RateLimit-Reset": str(result.reset_seconds),
    }


class RateLimit:
    """
    Route dependency enforcing per-user, per-org and per-IP quotas.

    Usage:
        @router.post("/", dependencies=[Depends(RateLimit(per_ip=ScopeLimit(limit=10, window_sec=60)))])

    Each configured scope is counted independently and concurrently. The request is
    rejected with 429 if any scope is over quota; the X-RateLimit-* headers describe
    the scope whose window resets soonest.
    """

    def __init__(
        self,
        per_user: Optional[ScopeLimit] = None,
        per_org: Optional[ScopeLimit] = None,
        per_ip: Optional[ScopeLimit] = None,
    ):
        if per_user is None and per_org is None and per_ip is None:
            per_user = ScopeLimit(limit=DEFAULT_USER_QUOTA[0], window_sec=DEFAULT_USER_QUOTA[1])
            per_org = ScopeLimit(limit=DEFAULT_ORG_QUOTA[0], window_sec=DEFAULT_ORG_QUOTA[1])
        self.per_user = per_user
        self.per_org = per_org
        self.per_ip = per_ip

    def scope_keys(self, request: Request) -> List[Tuple[str, ScopeLimit]]:
        route_key = f"{request.method}:{request.url.path}"
        scopes = []
        if self.per_user:
            user_id = getattr(request.state, "user_id", None) or "anon"
            scopes.append((f"user:{user_id}:{route_key}", self.per_user))
        if self.per_org:
            org_id = request.headers.get("x-org-id") or getattr(request.state, "org_id", None) or "no-org"
            scopes.append((f"org:{org_id}:{route_key}", self.per_org))
        if self.per_ip:
            scopes.append((f"ip:{_client_ip(request)}:{route_key}", self.per_ip))
        return scopes

    async def __call__(
        self,
        request: Request,
        response: Response,
        limiter: RateLimiter = Depends(get_rate_limiter),
    ):
        scopes = self.scope_keys(request)
        results = await asyncio.gather(
            *(limiter.hit(key, scope.limit, scope.window_sec) for key, scope in scopes)
        )
        if not results:
            return

        tightest = min(results, key=lambda r: r.reset_seconds)
        headers = rate_limit_headers(tightest)
        response.headers.update(headers)

        if not all(r.allowed for r in results):
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Rate limit exceeded",
                headers=headers,
            )
