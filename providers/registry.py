"""
Machine type -> provider lookup.

Populated once at startup. Resolving a machine type nobody registered is a
configuration error and fails loudly.
"""

import logging
from typing import Iterable, Optional, Union

import httpx

from config.settings import Settings, settings as default_settings
from models.sandbox import DEFAULT_MACHINE_TYPE, MachineType, SandboxRecord
from services.ec2 import EC2Service
from services.errors import ProviderNotRegisteredError
from services.kasm import KasmClient

from .base import SandboxProvider
from .ec2_provider import Ec2SandboxProvider
from .kasm_provider import KasmSandboxProvider
from .macos_provider import MacOsSandboxProvider

logger = logging.getLogger(__name__)


class SandboxProviderRegistry:
    def __init__(self, providers: Iterable[SandboxProvider] = ()):
        self._providers: dict[MachineType, SandboxProvider] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: SandboxProvider) -> None:
        if provider.machine_type in self._providers:
            raise ValueError(f"Provider already registered for {provider.machine_type.value}")
        self._providers[provider.machine_type] = provider
        logger.debug(f"[Registry] Registered provider for {provider.machine_type.value}")

    def get_provider(self, sandbox: SandboxRecord) -> SandboxProvider:
        """Provider for a sandbox; an unset machine type means EC2."""
        return self.get_by_type(sandbox.machine_type or DEFAULT_MACHINE_TYPE)

    def get_by_type(self, machine_type: Union[MachineType, str]) -> SandboxProvider:
        try:
            key = MachineType(machine_type)
        except ValueError:
            raise ProviderNotRegisteredError(str(machine_type)) from None

        provider = self._providers.get(key)
        if provider is None:
            raise ProviderNotRegisteredError(key.value)
        return provider

    @property
    def registered_types(self) -> list[MachineType]:
        return list(self._providers)

    def missing_types(self) -> list[MachineType]:
        return [t for t in MachineType if t not in self._providers]

    def ensure_registered(self, *machine_types: MachineType) -> None:
        for machine_type in machine_types:
            self.get_by_type(machine_type)


def build_default_registry(
    settings: Optional[Settings] = None,
    ec2: Optional[EC2Service] = None,
    kasm: Optional[KasmClient] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> SandboxProviderRegistry:
    """EC2 and macOS always; Kasm only when its API is configured."""
    settings = settings or default_settings
    registry = SandboxProviderRegistry([
        Ec2SandboxProvider(
            ec2 or EC2Service(settings.aws_region, settings.aws_timeout_seconds),
            agent_port=settings.agent_port,
            http_client=http_client,
        ),
        MacOsSandboxProvider(
            deploy_secret=settings.gh_deploy_secret,
            agent_port=settings.agent_port,
            http_client=http_client,
        ),
    ])

    if kasm is not None or settings.kasm_api_url:
        registry.register(KasmSandboxProvider(
            kasm or KasmClient(settings.kasm_api_url),
            default_image_id=settings.kasm_default_image_id,
            default_user_id=settings.kasm_default_user_id,
            http_client=http_client,
        ))
    else:
        logger.info("[Registry] KASM_API_URL not set, Kasm provider not registered")

    logger.info(
        f"[Registry] Providers: {', '.join(t.value for t in registry.registered_types)}"
    )
    return registry
