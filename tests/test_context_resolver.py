"""
Unit tests for settings and context resolution.
"""
import os
import sys

# Add parent directory to path to import modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest
from pydantic import ValidationError
from unittest.mock import patch

from services.context_resolver import ContextResolver
from services.errors import ConfigurationError
from src.ado_writeback_agent.config import AdoWriteBackSettings


def _settings(**overrides):
    values = {"organization": "contoso", "project": "Web Shop", "access_token": "configured-token"}
    values.update(overrides)
    return AdoWriteBackSettings(**values)


def test_resolves_from_settings():
    """Test a context built entirely from configured settings."""
    context = ContextResolver(settings=_settings(team="Payments")).resolve()

    assert context.organization == "contoso"
    assert context.project == "Web Shop"
    assert context.access_token == "configured-token"
    assert context.team == "Payments"
    assert context.project_url == "https://dev.azure.com/contoso/Web Shop"
    assert context.api_version == "7.0"
    assert context.timeout == 90


def test_overrides_win_over_settings():
    """Test that per-request values take precedence."""
    resolver = ContextResolver(
        settings=_settings(),
        organization="fabrikam",
        project="Mobile",
        access_token="request-token",
        team="Core"
    )

    context = resolver.resolve()

    assert context.organization == "fabrikam"
    assert context.project == "Mobile"
    assert context.access_token == "request-token"
    assert context.team == "Core"


def test_blank_overrides_fall_back_to_settings():
    """Test that blank strings are treated as absent."""
    context = ContextResolver(settings=_settings(), organization="  ", access_token="").resolve()

    assert context.organization == "contoso"
    assert context.access_token == "configured-token"


def test_missing_token_raises_configuration_error():
    """Test that no credential means no context."""
    with pytest.raises(ConfigurationError) as exc_info:
        ContextResolver(settings=_settings(access_token=None)).resolve()

    assert "access token" in exc_info.value.message


def test_missing_organization_raises_configuration_error():
    with pytest.raises(ConfigurationError) as exc_info:
        ContextResolver(settings=_settings(organization=None)).resolve()

    assert "organization" in exc_info.value.message


def test_missing_project_raises_configuration_error():
    with pytest.raises(ConfigurationError) as exc_info:
        ContextResolver(settings=_settings(project="   ")).resolve()

    assert "project" in exc_info.value.message


def test_settings_load_failure_becomes_configuration_error():
    """Test that a broken environment is reported as a configuration problem."""
    with patch("services.context_resolver.get_settings", side_effect=ValueError("bad ADO_API_TIMEOUT")):
        with pytest.raises(ConfigurationError) as exc_info:
            ContextResolver().resolve()

    assert "bad ADO_API_TIMEOUT" in exc_info.value.message


def test_settings_read_prefixed_environment(monkeypatch):
    """Test ADO_* environment variables and the ADO_PAT alias."""
    monkeypatch.setenv("ADO_ORGANIZATION", "contoso")
    monkeypatch.setenv("ADO_PROJECT", "Web Shop")
    monkeypatch.delenv("ADO_ACCESS_TOKEN", raising=False)
    monkeypatch.setenv("ADO_PAT", "pat-token")
    monkeypatch.setenv("ADO_API_TIMEOUT", "30")

    settings = AdoWriteBackSettings()

    assert settings.organization == "contoso"
    assert settings.project == "Web Shop"
    assert settings.access_token == "pat-token"
    assert settings.api_timeout == 30


def test_context_is_immutable():
    """Test that a resolved context cannot be modified during a run."""
    context = ContextResolver(settings=_settings()).resolve()

    with pytest.raises(ValidationError):
        context.project = "Other"


def test_token_is_not_in_repr():
    context = ContextResolver(settings=_settings()).resolve()
    assert "configured-token" not in repr(context)
