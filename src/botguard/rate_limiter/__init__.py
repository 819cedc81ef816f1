from botguard.rate_limiter.limiter import (
    RateLimiter,
    RateLimitResult,
    TempBlockResult,
    rate_limit_headers,
)

__all__ = ["RateLimiter", "RateLimitResult", "TempBlockResult", "rate_limit_headers"]
