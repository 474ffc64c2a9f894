"""Tests for the provider registry and startup checks."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from config.policies import AutoScalePolicy
from config.settings import Settings
from models.sandbox import MachineType
from providers.ec2_provider import Ec2SandboxProvider
from providers.kasm_provider import KasmSandboxProvider
from providers.macos_provider import MacOsSandboxProvider
from providers.registry import SandboxProviderRegistry, build_default_registry
from services.errors import ConfigurationError, ProviderNotRegisteredError
from services.startup_checks import has_failure, run_startup_checks


@pytest.fixture
def registry():
    return SandboxProviderRegistry([
        Ec2SandboxProvider(AsyncMock()),
        MacOsSandboxProvider(),
    ])


class TestSandboxProviderRegistry:
    """Lookup rules."""

    def test_resolves_by_machine_type(self, registry, sandbox_factory):
        """Test provider lookup per sandbox."""
        provider = registry.get_provider(sandbox_factory(machine_type=MachineType.MACOS))
        assert isinstance(provider, MacOsSandboxProvider)

    def test_unset_machine_type_means_ec2(self, registry, sandbox_factory):
        """Test the legacy default."""
        provider = registry.get_provider(sandbox_factory(machine_type=None))
        assert isinstance(provider, Ec2SandboxProvider)

    def test_get_by_type_accepts_strings(self, registry):
        """Test string lookup."""
        assert registry.get_by_type("ec2").machine_type == MachineType.EC2

    def test_unregistered_type_fails_loudly(self, registry, sandbox_factory):
        """Test that a missing provider is a configuration error."""
        with pytest.raises(ProviderNotRegisteredError) as exc:
            registry.get_provider(sandbox_factory(machine_type=MachineType.KASM))
        assert "kasm" in str(exc.value)
        assert isinstance(exc.value, ConfigurationError)

    def test_unknown_type_string_fails_loudly(self, registry):
        """Test that a bogus type name is rejected the same way."""
        with pytest.raises(ProviderNotRegisteredError):
            registry.get_by_type("mainframe")

    def test_duplicate_registration_rejected(self, registry):
        """Test one provider per machine type."""
        with pytest.raises(ValueError):
            registry.register(MacOsSandboxProvider())

    def test_missing_types(self, registry):
        """Test the coverage report."""
        assert set(registry.missing_types()) == {MachineType.KASM, MachineType.LOCAL_DOCKER}


class TestBuildDefaultRegistry:
    """Default wiring from settings."""

    def test_without_kasm(self):
        """Test that Kasm is skipped when unconfigured."""
        registry = build_default_registry(Settings(kasm_api_url=None), ec2=MagicMock())
        assert set(registry.registered_types) == {MachineType.EC2, MachineType.MACOS}

    def test_with_kasm(self):
        """Test that Kasm is registered when configured."""
        registry = build_default_registry(
            Settings(kasm_api_url="https://kasm.example.com/api/public"),
            ec2=MagicMock(),
        )
        assert isinstance(registry.get_by_type(MachineType.KASM), KasmSandboxProvider)


class TestStartupChecks:
    """Startup validation."""

    def test_autoscale_on_unregistered_type_fails(self, registry):
        """Test that auto-scaling a type with no provider is flagged."""
        settings = Settings(autoscale_enabled=True, autoscale_machine_type="kasm")
        results = run_startup_checks(settings, registry)
        assert has_failure(results, "autoscale")

    def test_autoscale_on_registered_type_passes(self, registry):
        """Test the passing case."""
        settings = Settings(autoscale_enabled=True, autoscale_machine_type="ec2")
        results = run_startup_checks(settings, registry)
        assert not has_failure(results, "autoscale")

    def test_autoscale_bounds_inverted_fails(self, registry):
        """Test min > max."""
        settings = Settings(
            autoscale_enabled=True,
            autoscale_machine_type="ec2",
            autoscale_min_instances=6,
            autoscale_max_instances=2,
        )
        assert has_failure(run_startup_checks(settings, registry), "autoscale")

    def test_missing_backend_config_is_a_warning(self, registry):
        """Test that absent optional config does not fail startup."""
        results = run_startup_checks(Settings(ghosthands_api_url=None, database_direct_url=None), registry)
        assert all(r.status != "fail" for r in results)
        assert {r.name for r in results if r.status == "warn"} >= {"execution_backend", "job_queue"}

    def test_explicit_policy_is_used(self, registry):
        """Test that a passed policy overrides settings."""
        settings = Settings(autoscale_enabled=True, autoscale_machine_type="kasm")
        policy = AutoScalePolicy(enabled=True, machine_type=MachineType.MACOS)
        assert not has_failure(run_startup_checks(settings, registry, policy), "autoscale")
