"""Client device identification."""
from dataclasses import dataclass
import hashlib

UNKNOWN = "unknown"


@dataclass(frozen=True)
class DeviceInfo:
    """User-agent and IP of the calling client."""

    user_agent: str = UNKNOWN
    ip_address: str = UNKNOWN

    @classmethod
    def from_headers(cls, user_agent: str | None, ip_address: str | None) -> "DeviceInfo":
        """Build from raw request values, clipped to the stored column widths."""
        return cls(
            user_agent=(user_agent or UNKNOWN)[:255],
            ip_address=(ip_address or UNKNOWN)[:45],
        )

    @property
    def fingerprint(self) -> str:
        """Stable identifier scoping one session per user per device."""
        raw = f"{self.user_agent}|{self.ip_address}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()
