"""
Configuration management for TLS Expiry Monitor.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from tls_expiry_monitor.errors import ConfigurationError
from tls_expiry_monitor.models import DEFAULT_PORT, canonicalize_endpoint

SINK_TYPES = {"oci", "log"}
OCI_AUTH_TYPES = {"resource_principal", "config_file"}


class Config(BaseModel):
    """Configuration model for TLS Expiry Monitor."""

    # Monitored endpoints, canonical host:port
    endpoints: List[str] = Field(default_factory=list)

    # Metric destination
    namespace: Optional[str] = None
    metric_name: Optional[str] = None
    compartment_id: Optional[str] = None
    function_id: Optional[str] = None

    # Sink settings
    sink: str = Field(default="oci")
    oci_auth: str = Field(default="resource_principal")
    oci_config_file: str = Field(default="~/.oci/config")
    oci_profile: str = Field(default="DEFAULT")

    # Probe settings
    connect_timeout: float = Field(default=10.0, gt=0)
    endpoint_timeout: float = Field(default=20.0, gt=0)
    max_retries: int = Field(default=3, ge=0, le=10)
    backoff_base: float = Field(default=0.1, ge=0)
    backoff_jitter: float = Field(default=0.1, ge=0)

    # Service mode
    check_interval: str = Field(default="5m")
    port: int = Field(default=3200, ge=1, le=65535)
    bind_address: str = Field(default="0.0.0.0")  # nosec B104

    # Logging
    log_level: str = Field(default="INFO")
    log_file: Optional[str] = None

    # Operation modes
    dry_run: bool = Field(default=False)

    # Security settings
    allowed_ips: List[str] = Field(default_factory=lambda: ["127.0.0.1", "::1"])
    enable_ip_whitelist: bool = Field(default=True)

    @field_validator("endpoints", mode="before")
    @classmethod
    def validate_endpoints(cls, v: Any) -> List[str]:
        """Canonicalize endpoints and drop duplicates, keeping the first occurrence."""
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split(",")

        canonical: List[str] = []
        for raw in v:
            if not isinstance(raw, str) or not raw.strip():
                continue
            endpoint = canonicalize_endpoint(raw, DEFAULT_PORT)
            if endpoint in canonical:
                logging.warning(f"Ignoring duplicate endpoint '{raw.strip()}' ({endpoint})")
                continue
            canonical.append(endpoint)
        return canonical

    @field_validator("namespace", "metric_name", "compartment_id", "function_id")
    @classmethod
    def validate_optional_string(cls, v: Optional[str]) -> Optional[str]:
        """Treat blank strings as unset."""
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("sink")
    @classmethod
    def validate_sink(cls, v: str) -> str:
        if v.lower() not in SINK_TYPES:
            raise ValueError(f"sink must be one of {sorted(SINK_TYPES)}, got '{v}'")
        return v.lower()

    @field_validator("oci_auth")
    @classmethod
    def validate_oci_auth(cls, v: str) -> str:
        if v.lower() not in OCI_AUTH_TYPES:
            raise ValueError(f"oci_auth must be one of {sorted(OCI_AUTH_TYPES)}, got '{v}'")
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("allowed_ips")
    @classmethod
    def validate_allowed_ips(cls, v: List[str]) -> List[str]:
        """Validate IP addresses and CIDR blocks in allowed_ips list."""
        import ipaddress

        validated_ips = []
        for ip_str in v:
            try:
                if "/" in ip_str:
                    ipaddress.ip_network(ip_str, strict=False)
                else:
                    ipaddress.ip_address(ip_str)
                validated_ips.append(ip_str)
            except ValueError as e:
                logging.error(f"Invalid IP address or network '{ip_str}': {e}")

        # Localhost is always allowed for health checks
        for localhost in ["127.0.0.1", "::1"]:
            if localhost not in validated_ips:
                validated_ips.append(localhost)

        return validated_ips

    @field_validator("check_interval")
    @classmethod
    def validate_duration(cls, v: str) -> str:
        """Validate duration format (e.g., '5m', '1h', '30s')."""
        if not v:
            raise ValueError("Duration cannot be empty")

        pattern = r"^\d+[smhd]$"
        if not re.match(pattern, v):
            raise ValueError("Duration must be in format like '5m', '1h', '30s', '1d'")
        return v

    def parse_duration_seconds(self, duration: str) -> int:
        """Parse duration string to seconds."""
        match = re.match(r"^(\d+)([smhd])$", duration)
        if not match:
            raise ValueError(f"Invalid duration format: {duration}")

        value, unit = match.groups()
        multipliers = {"s": 1, "m": 60, "h": 3600, "d": 86400}

        return int(value) * multipliers[unit]

    @property
    def check_interval_seconds(self) -> int:
        """Get check interval in seconds."""
        return self.parse_duration_seconds(self.check_interval)

    @property
    def uses_oci_sink(self) -> bool:
        return self.sink == "oci" and not self.dry_run

    def missing_required(self) -> List[str]:
        """Names of required settings that are not set."""
        missing = []
        if not self.endpoints:
            missing.append("ENDPOINTS")
        if not self.namespace:
            missing.append("NAMESPACE")
        if not self.metric_name:
            missing.append("METRIC_NAME")
        if self.uses_oci_sink and not (self.compartment_id or self.function_id):
            missing.append("COMPARTMENT_ID (or FN_FN_ID)")
        return missing

    def ensure_complete(self) -> None:
        """
        Fail fast when a required setting is missing.

        Raises:
            ConfigurationError: Listing every missing setting
        """
        missing = self.missing_required()
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}"
            )


def load_config(config_path: Optional[str] = None, validate: bool = True) -> Config:
    """
    Load configuration from file or environment variables.

    Args:
        config_path: Path to configuration file
        validate: Require every setting a check run needs

    Returns:
        Config object

    Raises:
        FileNotFoundError: If config_path does not exist
        ConfigurationError: If the configuration is invalid or incomplete
    """
    config_data: Dict[str, Any] = {}

    if config_path:
        config_file = Path(config_path)
        if config_file.exists():
            with open(config_file, "r", encoding="utf-8") as f:
                try:
                    config_data = yaml.safe_load(f) or {}
                except yaml.YAMLError as e:
                    raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
        else:
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

    if not isinstance(config_data, dict):
        raise ConfigurationError(f"Configuration file {config_path} must contain a mapping")

    config_data.update(_get_env_overrides())

    try:
        config = Config(**config_data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    if validate:
        config.ensure_complete()

    return config


def _as_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _get_env_overrides() -> dict:
    """Get configuration overrides from environment variables."""
    env_mapping: Dict[str, tuple[str, Callable[[str], Any]]] = {
        "NAMESPACE": ("namespace", str),
        "METRIC_NAME": ("metric_name", str),
        "COMPARTMENT_ID": ("compartment_id", str),
        "FN_FN_ID": ("function_id", str),
        "TLS_EXPIRY_SINK": ("sink", str),
        "TLS_EXPIRY_OCI_AUTH": ("oci_auth", str),
        "TLS_EXPIRY_OCI_CONFIG_FILE": ("oci_config_file", str),
        "TLS_EXPIRY_OCI_PROFILE": ("oci_profile", str),
        "TLS_EXPIRY_CONNECT_TIMEOUT": ("connect_timeout", float),
        "TLS_EXPIRY_ENDPOINT_TIMEOUT": ("endpoint_timeout", float),
        "TLS_EXPIRY_MAX_RETRIES": ("max_retries", int),
        "TLS_EXPIRY_BACKOFF_BASE": ("backoff_base", float),
        "TLS_EXPIRY_BACKOFF_JITTER": ("backoff_jitter", float),
        "TLS_EXPIRY_CHECK_INTERVAL": ("check_interval", str),
        "TLS_EXPIRY_PORT": ("port", int),
        "TLS_EXPIRY_BIND_ADDRESS": ("bind_address", str),
        "TLS_EXPIRY_LOG_LEVEL": ("log_level", str),
        "TLS_EXPIRY_LOG_FILE": ("log_file", str),
        "TLS_EXPIRY_DRY_RUN": ("dry_run", _as_bool),
        "TLS_EXPIRY_ENABLE_IP_WHITELIST": ("enable_ip_whitelist", _as_bool),
    }

    overrides = {}
    for env_var, (config_key, converter) in env_mapping.items():
        value = os.getenv(env_var)
        if value is not None:
            try:
                overrides[config_key] = converter(value)
            except (ValueError, TypeError) as e:
                logging.warning(f"Invalid value for {env_var}: {value} - {e}")

    # ENDPOINTS wins over the single-value ENDPOINT
    endpoints = os.getenv("ENDPOINTS") or os.getenv("ENDPOINT")
    if endpoints:
        overrides["endpoints"] = [e.strip() for e in endpoints.split(",")]

    allowed_ips = os.getenv("TLS_EXPIRY_ALLOWED_IPS")
    if allowed_ips:
        overrides["allowed_ips"] = [ip.strip() for ip in allowed_ips.split(",")]

    return overrides


def create_example_config(output_path: str = "config.example.yaml") -> None:
    """Create an example configuration file."""
    example_config = {
        "endpoints": ["example.com", "api.example.com:8443"],
        "namespace": "tls_monitoring",
        "metric_name": "certificate_days_remaining",
        "compartment_id": "ocid1.compartment.oc1..example",
        "sink": "oci",
        "oci_auth": "resource_principal",
        "connect_timeout": 10.0,
        "endpoint_timeout": 20.0,
        "max_retries": 3,
        "backoff_base": 0.1,
        "backoff_jitter": 0.1,
        "check_interval": "5m",
        "port": 3200,
        "bind_address": "0.0.0.0",  # nosec B104
        "log_level": "INFO",
        "dry_run": False,
        "allowed_ips": ["127.0.0.1", "::1"],
        "enable_ip_whitelist": True,
    }

    with open(output_path, "w", encoding="utf-8") as f:
        yaml.dump(example_config, f, default_flow_style=False, sort_keys=False)
