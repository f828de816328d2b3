"""Error taxonomy for the trust & entitlement engine.

Every error is an ``HTTPException`` carrying a coarse, fixed ``detail`` code,
so routes can let them propagate and clients never see internal details.
"""

from fastapi import HTTPException


class EngineError(HTTPException):
    status_code: int = 500
    code: str = "server_error"

    def __init__(self, code: str | None = None, headers: dict[str, str] | None = None) -> None:
        super().__init__(status_code=self.status_code, detail=code or self.code, headers=headers)

    @property
    def error_code(self) -> str:
        return str(self.detail)


class Unauthenticated(EngineError):
    """Missing, malformed, forged or expired session credential."""

    status_code = 401
    code = "invalid_token"

    def __init__(self) -> None:
        super().__init__(headers={"WWW-Authenticate": "Bearer"})


class Forbidden(EngineError):
    """Valid credential, insufficient role or entitlement."""

    status_code = 403
    code = "forbidden"


class InvalidReceipt(EngineError):
    """Receipt signature, structure or payer check failed. Nothing was applied."""

    status_code = 400
    code = "invalid_receipt"


class UnknownProduct(EngineError):
    status_code = 400
    code = "unknown_product"


class InvalidPurchase(EngineError):
    """Receipt is valid but the purchase context (photo, comment) is not."""

    status_code = 400
    code = "invalid_purchase"


class NoCredential(EngineError):
    """Broadcaster never authorized, or the refresh token was revoked."""

    status_code = 409
    code = "broadcaster_reconnect_required"


class UpstreamUnavailable(EngineError):
    """Twitch API call failed or timed out."""

    status_code = 502
    code = "upstream_unavailable"
