"""
Configuration module for M365 License Tools.
Defines authentication settings, Graph API endpoints, retry tuning, and output paths.
"""

from __future__ import annotations

import os
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from datetime import datetime, timezone


class ConfigError(Exception):
    """Raised when the configuration file or CLI options are unusable."""
    pass


# ─── Tenant Authentication ───────────────────────────────────────────────────

@dataclass
class CertificateAuth:
    """Certificate-based app-only authentication configuration."""
    tenant_id: str
    client_id: str
    certificate_path: str          # Path to base64-encoded PFX
    certificate_password: str = "" # Will be prompted if empty
    thumbprint: str = ""

@dataclass
class DelegatedAuth:
    """Delegated (interactive) authentication configuration."""
    tenant_id: str
    client_id: str
    scopes: list[str] = field(default_factory=lambda: [
        "User.Read.All",
        "Organization.Read.All",
        "LicenseAssignment.ReadWrite.All",
    ])

@dataclass
class AuthConfig:
    """Authentication configuration — supports both modes."""
    mode: str = "certificate"  # "certificate" or "delegated"
    certificate: Optional[CertificateAuth] = None
    delegated: Optional[DelegatedAuth] = None


# ─── Graph API Settings ─────────────────────────────────────────────────────

GRAPH_BASE_URL = "https://graph.microsoft.com"
GRAPH_API_VERSION = "v1.0"

# Throttling / retry
MAX_ATTEMPTS = 5                  # Attempts per request, first try included
INITIAL_BACKOFF_SECONDS = 2.0     # First retry delay
MAX_BACKOFF_SECONDS = 60.0        # Cap on exponential backoff
BACKOFF_MULTIPLIER = 2.0          # Exponential factor
THROTTLE_STATUS_CODES = (429, 503, 504)

# Pagination
DEFAULT_PAGE_SIZE = 999           # Maximum items per page ($top)
MAX_PAGES_PER_ENDPOINT = 10000   # Safety cap on pagination loops

USER_SELECT_FIELDS = (
    "id,displayName,userPrincipalName,accountEnabled,"
    "assignedLicenses,licenseAssignmentStates"
)


@dataclass
class RetryConfig:
    """Bounded retry with doubling delay for throttled calls."""
    max_attempts: int = MAX_ATTEMPTS
    initial_delay: float = INITIAL_BACKOFF_SECONDS
    max_delay: float = MAX_BACKOFF_SECONDS
    multiplier: float = BACKOFF_MULTIPLIER

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ConfigError("max_attempts must be at least 1")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ConfigError("retry delays cannot be negative")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given 1-based failed attempt."""
        delay = self.initial_delay * (self.multiplier ** (attempt - 1))
        return min(delay, self.max_delay)


# ─── Output Configuration ───────────────────────────────────────────────────

def new_run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")


@dataclass
class OutputConfig:
    """Output directory and run stamp."""
    base_dir: str = ""
    run_id: str = ""

    def __post_init__(self):
        if not self.run_id:
            self.run_id = new_run_id()
        if not self.base_dir:
            self.base_dir = os.getcwd()

    @property
    def output_dir(self) -> Path:
        return Path(self.base_dir)


# ─── Master Configuration ───────────────────────────────────────────────────

@dataclass
class ToolConfig:
    """Top-level configuration shared by every command."""
    auth: AuthConfig = field(default_factory=AuthConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    verbose: bool = False
    log_file: str = ""

    @classmethod
    def from_file(cls, path) -> "ToolConfig":
        """Load configuration from a JSON file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            raise ConfigError(f"Configuration file not found: {path}")
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}")

        config = cls()
        if "auth" in data:
            auth_data = data["auth"]
            config.auth.mode = auth_data.get("mode", "certificate")
            try:
                if "certificate" in auth_data:
                    c = auth_data["certificate"]
                    config.auth.certificate = CertificateAuth(
                        tenant_id=c["tenant_id"],
                        client_id=c["client_id"],
                        certificate_path=c.get("certificate_path", "./base64.txt"),
                        certificate_password=c.get("certificate_password", ""),
                        thumbprint=c.get("thumbprint", ""),
                    )
                if "delegated" in auth_data:
                    d = auth_data["delegated"]
                    config.auth.delegated = DelegatedAuth(
                        tenant_id=d["tenant_id"],
                        client_id=d["client_id"],
                    )
                    if d.get("scopes"):
                        config.auth.delegated.scopes = list(d["scopes"])
            except KeyError as e:
                raise ConfigError(f"Missing auth setting in {path}: {e}")
        if "retry" in data:
            for k, v in data["retry"].items():
                if hasattr(config.retry, k):
                    setattr(config.retry, k, v)
            config.retry.__post_init__()
        if "output" in data:
            for k, v in data["output"].items():
                if hasattr(config.output, k):
                    setattr(config.output, k, v)
        config.verbose = data.get("verbose", False)
        config.log_file = data.get("log_file", "")
        return config


# ─── Required Graph API Permissions ─────────────────────────────────────────

REQUIRED_PERMISSIONS = {
    "User.Read.All": "Enumerate users and their license assignment states",
    "Organization.Read.All": "Read subscribed SKUs to resolve part numbers",
    "LicenseAssignment.ReadWrite.All": "Remove licenses from users (remove command only)",
}
