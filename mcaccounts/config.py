"""Configuration loaded from environment variables."""

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_CLIENT_ID = "00000000402b5328"
DEFAULT_TOKEN_URL = "https://login.live.com/oauth20_token.srf"
DEFAULT_SCOPE = "service::user.auth.xboxlive.com::MBI_SSL"


def _default_data_dir() -> Path:
    return Path.home() / ".mcaccounts"


@dataclass
class AccountsConfig:
    """Settings for the account store and the token refresh exchange.

    >>> cfg = AccountsConfig(data_dir=Path("/tmp/mca"))
    >>> cfg.accounts_file.name
    'accounts.json'
    >>> cfg.expiry_skew
    60
    """

    data_dir: Path = field(default_factory=_default_data_dir)
    client_id: str = DEFAULT_CLIENT_ID
    token_url: str = DEFAULT_TOKEN_URL
    scope: str = DEFAULT_SCOPE
    expiry_skew: int = 60
    refresh_timeout: float = 30.0
    refresh_buffer: int = 900

    @property
    def accounts_file(self) -> Path:
        return self.data_dir / "accounts.json"

    @property
    def recovery_file(self) -> Path:
        return self.data_dir / ".token_recovery.json"

    @classmethod
    def from_env(cls) -> "AccountsConfig":
        """Build config from MCACCOUNTS_* environment variables.

        Raises ValueError when a numeric variable does not parse or is negative.
        """
        home = os.getenv("MCACCOUNTS_HOME")
        data_dir = Path(home).expanduser() if home else _default_data_dir()

        try:
            skew = int(os.getenv("MCACCOUNTS_EXPIRY_SKEW", "60"))
            timeout = float(os.getenv("MCACCOUNTS_REFRESH_TIMEOUT", "30"))
            buffer = int(os.getenv("MCACCOUNTS_REFRESH_BUFFER", "900"))
        except ValueError as e:
            raise ValueError(f"Invalid numeric setting in environment: {e}") from e

        if skew < 0 or timeout <= 0 or buffer < 0:
            raise ValueError(
                "MCACCOUNTS_EXPIRY_SKEW and MCACCOUNTS_REFRESH_BUFFER must be >= 0, "
                "MCACCOUNTS_REFRESH_TIMEOUT must be > 0"
            )

        return cls(
            data_dir=data_dir,
            client_id=os.getenv("MCACCOUNTS_CLIENT_ID", DEFAULT_CLIENT_ID),
            token_url=os.getenv("MCACCOUNTS_TOKEN_URL", DEFAULT_TOKEN_URL),
            scope=os.getenv("MCACCOUNTS_SCOPE", DEFAULT_SCOPE),
            expiry_skew=skew,
            refresh_timeout=timeout,
            refresh_buffer=buffer,
        )
