"""Runtime settings read from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Optional

DEFAULT_RPC_URL = "https://mainnet.infura.io/v3/your_api_key"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass(frozen=True)
class Settings:
    rpc_url: str = DEFAULT_RPC_URL
    beacon_api_url: Optional[str] = None
    private_key: Optional[str] = None
    proof_profile: str = "dev"
    prover_command: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            rpc_url=os.getenv("RPC_URL", DEFAULT_RPC_URL),
            beacon_api_url=os.getenv("BEACON_API_URL") or None,
            private_key=os.getenv("ETH_WALLET_PRIVATE_KEY", "").strip() or None,
            proof_profile=os.getenv("PROOF_PROFILE", "dev"),
            prover_command=os.getenv("PROVER_COMMAND") or None,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def override(self, **values) -> "Settings":
        """Replace the values that were actually given (``None`` keeps the current one)."""
        return replace(self, **{k: v for k, v in values.items() if v is not None})


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
