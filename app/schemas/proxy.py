"""Schemas for proxy rotation."""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ProxyTier = Literal["high", "medium", "low"]
ProxyProtocol = Literal["http", "https", "socks5"]


class Proxy(BaseModel):
    """An outbound proxy endpoint."""

    model_config = ConfigDict(frozen=True)

    address: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None
    tier: ProxyTier = "medium"
    protocol: ProxyProtocol = "http"

    @property
    def server(self) -> str:
        return f"{self.protocol}://{self.address}:{self.port}"

    @property
    def key(self) -> str:
        """Identity used for per-target exclusion."""
        return f"{self.address}:{self.port}"


class ProxyUsageRecord(BaseModel):
    proxy_address: str
    tier: ProxyTier
    target_id: Optional[str] = None
    success: bool
    response_time_ms: Optional[int] = Field(None, ge=0)
    error_message: Optional[str] = None


class ProxyTierStats(BaseModel):
    tier: str
    success: bool
    count: int
    avg_response_time_ms: Optional[float] = None
