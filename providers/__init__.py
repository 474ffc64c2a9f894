"""Sandbox providers, one per machine type."""

from .base import SandboxProvider
from .ec2_provider import Ec2SandboxProvider
from .kasm_provider import KasmSandboxProvider
from .macos_provider import MacOsSandboxProvider
from .registry import SandboxProviderRegistry, build_default_registry

__all__ = [
    "SandboxProvider",
    "Ec2SandboxProvider",
    "KasmSandboxProvider",
    "MacOsSandboxProvider",
    "SandboxProviderRegistry",
    "build_default_registry",
]
