from __future__ import annotations
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import yaml
from dotenv import load_dotenv

# Load .env (POLYGON_RPC_URL / BIOMETRIC_* take effect)
load_dotenv()

HERE = os.path.dirname(os.path.abspath(__file__))
CONFIG_PATH = os.path.join(HERE, "configs", "chains.yaml")

def load_yaml(path: str):
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)

CHAINS = load_yaml(CONFIG_PATH)
DEFAULTS: Dict[str, Any] = CHAINS.get("defaults", {})


@dataclass
class RetrySettings:
    max_attempts: int = 3
    delay: float = 1.0
    timeout: Optional[float] = 15.0  # per attempt, seconds


@dataclass
class TxSettings:
    max_retries: int = 3
    gas_multiplier: float = 1.2
    backoff_base: float = 1.0
    backoff_cap: float = 10.0
    receipt_interval: float = 2.0
    receipt_attempts: int = 50


@dataclass
class Settings:
    chain: str
    chain_id: int
    rpc_endpoints: List[str]
    wss_endpoint: Optional[str] = None
    biometric_http_url: Optional[str] = None
    biometric_ws_url: Optional[str] = None
    probe_timeout: float = 5.0
    health_interval: float = 30.0
    retry: RetrySettings = field(default_factory=RetrySettings)
    tx: TxSettings = field(default_factory=TxSettings)

    @property
    def override_endpoint(self) -> Optional[str]:
        env_key = _chain_conf(self.chain).get("rpc_env")
        value = (os.getenv(env_key) or "").strip() if env_key else ""
        return value or None


def _chain_conf(chain: str) -> Dict[str, Any]:
    chain = chain.lower()
    if chain == "defaults" or chain not in CHAINS:
        raise KeyError(f"Unknown chain: {chain}")
    return CHAINS[chain]

def _env(key: Optional[str]) -> Optional[str]:
    if not key:
        return None
    value = os.getenv(key)
    return value.strip() if value and value.strip() else None

def endpoints_for(chain: str) -> List[str]:
    conf = _chain_conf(chain)
    eps = []
    override = _env(conf.get("rpc_env"))
    if override:
        eps.append(override)
    eps.extend(conf.get("rpc_fallbacks") or [])
    # Deduplicate while preserving order
    seen = set(); uniq = []
    for e in eps:
        if e and e not in seen:
            uniq.append(e); seen.add(e)
    return uniq

def load_settings(chain: str = "polygon") -> Settings:
    conf = _chain_conf(chain)
    retry_conf = DEFAULTS.get("retry", {})
    tx_conf = DEFAULTS.get("tx", {})
    return Settings(
        chain=chain.lower(),
        chain_id=int(conf["chain_id"]),
        rpc_endpoints=endpoints_for(chain),
        wss_endpoint=_env(conf.get("wss_env")),
        biometric_http_url=_env("BIOMETRIC_HTTP_URL"),
        biometric_ws_url=_env("BIOMETRIC_WS_URL"),
        probe_timeout=float(DEFAULTS.get("probe_timeout", 5.0)),
        health_interval=float(DEFAULTS.get("health_interval", 30.0)),
        retry=RetrySettings(**retry_conf),
        tx=TxSettings(**tx_conf),
    )
