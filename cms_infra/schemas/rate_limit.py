from pydantic import BaseModel, Field


class HitResult(BaseModel):
    """Outcome of counting one hit against a quota key."""
    allowed: bool
    remaining: int
    limit: int
    reset_seconds: int = Field(..., description="Seconds until the current window ends.")


class ScopeLimit(BaseModel):
    """Quota for one scope (user, org or IP): `limit` hits per `window_sec` seconds."""
    limit: int
    window_sec: int = Field(..., gt=0)
