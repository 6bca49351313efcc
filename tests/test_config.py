from __future__ import annotations

import json

import pytest

from m365_license_tools.config import ConfigError, RetryConfig, ToolConfig


def test_from_file_reads_auth_retry_and_output(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "auth": {
            "mode": "certificate",
            "certificate": {"tenant_id": "t", "client_id": "c", "certificate_path": "cert.txt"},
        },
        "retry": {"max_attempts": 3, "max_delay": 30},
        "output": {"base_dir": str(tmp_path / "out")},
        "verbose": True,
    }))

    config = ToolConfig.from_file(path)

    assert config.auth.certificate.tenant_id == "t"
    assert config.auth.certificate.certificate_path == "cert.txt"
    assert config.retry.max_attempts == 3
    assert config.retry.max_delay == 30
    assert config.output.output_dir == tmp_path / "out"
    assert config.verbose


def test_from_file_reports_bad_input(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        ToolConfig.from_file(tmp_path / "missing.json")

    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    with pytest.raises(ConfigError, match="Invalid JSON"):
        ToolConfig.from_file(bad)

    partial = tmp_path / "partial.json"
    partial.write_text(json.dumps({"auth": {"certificate": {"tenant_id": "t"}}}))
    with pytest.raises(ConfigError, match="client_id"):
        ToolConfig.from_file(partial)


def test_retry_config_rejects_zero_attempts():
    with pytest.raises(ConfigError):
        RetryConfig(max_attempts=0)
