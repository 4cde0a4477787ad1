"""
Network presets and relay configuration.

Presets ship in ``networks.json``. Every value can be overridden from the
environment, so the relay and the originators signing for it can be pointed
at the same domain without code changes. The four domain parameters (name,
version, chain id, forwarder address) must match on both sides or every
signature is rejected.
"""
import json
import logging
import os
import urllib.parse
from importlib import resources
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, SecretStr, field_validator, model_validator

from .models import EIP712Domain, to_checksum

logger = logging.getLogger(__name__)

DEFAULT_NETWORK = "anvil"
DEFAULT_CALL_TIMEOUT = 10.0


def is_local_url(url: str) -> bool:
    """Whether ``url`` points at a loopback host."""
    host = urllib.parse.urlparse(url).hostname or ""
    return host in ("localhost", "127.0.0.1", "::1")


def validate_rpc_url(url: str, allow_insecure: bool = False) -> str:
    """
    Check that an RPC URL is usable and secure.

    Raises:
        ValueError: If the URL has no host or uses plain HTTP to a remote host
    """
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ValueError(f"Invalid RPC URL '{url}'")
    if parsed.scheme != "https" and not is_local_url(url) and not allow_insecure:
        raise ValueError(
            f"rpc_url must use https:// for security (got: {parsed.scheme}://). "
            "Set RELAY_INSECURE_RPC=1 to allow HTTP for development."
        )
    return url


class NetworkConfig:
    """Access to the bundled network presets."""

    _networks_cache: Optional[Dict[str, Dict[str, Any]]] = None

    @classmethod
    def load_networks(cls) -> Dict[str, Dict[str, Any]]:
        """Load and cache ``networks.json``."""
        if cls._networks_cache is None:
            text = resources.files("gasless_relay").joinpath("networks.json").read_text(encoding="utf-8")
            cls._networks_cache = json.loads(text)
        return cls._networks_cache

    @classmethod
    def get_network(cls, network: str) -> Dict[str, Any]:
        """
        Get one network preset.

        Raises:
            ValueError: If the network is unknown
        """
        networks = cls.load_networks()
        if network not in networks:
            available = ", ".join(sorted(networks))
            raise ValueError(f"Unknown network '{network}'. Available networks: {available}")
        return networks[network]

    @classmethod
    def get_rpc_url(cls, network: str, override: Optional[str] = None) -> str:
        """
        RPC URL for a network.

        Precedence: ``override``, then ``<NETWORK>_RPC_URL``, then the preset.
        """
        if override:
            return override
        env_name = f"{network.upper().replace('-', '_')}_RPC_URL"
        env_value = os.environ.get(env_name)
        if env_value:
            return env_value
        return cls.get_network(network)["rpc"]

    @classmethod
    def get_chain_id(cls, network: str) -> int:
        return int(cls.get_network(network)["chainId"])

    @classmethod
    def get_forwarder_address(cls, network: str) -> str:
        return cls.get_network(network)["forwarder"]

    @classmethod
    def get_domain(cls, network: str) -> EIP712Domain:
        """EIP-712 domain of a network's forwarder deployment."""
        preset = cls.get_network(network)
        return EIP712Domain(
            name=preset["domainName"],
            version=preset["domainVersion"],
            chain_id=preset["chainId"],
            verifying_contract=preset["forwarder"],
        )


class RelayConfig(BaseModel):
    """Settings of one relay instance."""
    network: str = DEFAULT_NETWORK
    rpc_url: str
    chain_id: int
    forwarder_address: str
    domain_name: str
    domain_version: str
    relayer_key: Optional[SecretStr] = None
    call_timeout: float = DEFAULT_CALL_TIMEOUT
    insecure_rpc: bool = False

    @field_validator("forwarder_address", mode="before")
    @classmethod
    def _check_forwarder(cls, v):
        return to_checksum(v, "forwarder_address")

    @field_validator("call_timeout")
    @classmethod
    def _check_timeout(cls, v):
        if v <= 0:
            raise ValueError("call_timeout must be positive")
        return v

    @model_validator(mode="after")
    def _check_rpc_url(self):
        validate_rpc_url(self.rpc_url, self.insecure_rpc)
        return self

    @property
    def domain(self) -> EIP712Domain:
        """Signing domain the relay verifies against."""
        return EIP712Domain(
            name=self.domain_name,
            version=self.domain_version,
            chain_id=self.chain_id,
            verifying_contract=self.forwarder_address,
        )

    @classmethod
    def from_env(cls, network: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> "RelayConfig":
        """
        Build a configuration from a network preset and ``RELAY_*`` variables.

        Args:
            network: Preset name; defaults to ``RELAY_NETWORK`` or ``anvil``
            environ: Environment mapping (defaults to ``os.environ``)

        Raises:
            ValueError: If the network is unknown or a value is invalid
        """
        env = os.environ if environ is None else environ
        network = network or env.get("RELAY_NETWORK") or DEFAULT_NETWORK
        preset = NetworkConfig.get_network(network)

        relayer_key = env.get("RELAY_PRIVATE_KEY")
        config = cls(
            network=network,
            rpc_url=env.get("RELAY_RPC_URL") or NetworkConfig.get_rpc_url(network),
            chain_id=int(env.get("RELAY_CHAIN_ID") or preset["chainId"]),
            forwarder_address=env.get("RELAY_FORWARDER_ADDRESS") or preset["forwarder"],
            domain_name=env.get("RELAY_DOMAIN_NAME") or preset["domainName"],
            domain_version=env.get("RELAY_DOMAIN_VERSION") or preset["domainVersion"],
            relayer_key=SecretStr(relayer_key) if relayer_key else None,
            call_timeout=float(env.get("RELAY_CALL_TIMEOUT") or DEFAULT_CALL_TIMEOUT),
            insecure_rpc=env.get("RELAY_INSECURE_RPC") == "1",
        )
        logger.debug(f"Loaded relay config for network {network} (chain id {config.chain_id})")
        return config
