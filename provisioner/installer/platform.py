from __future__ import annotations

import platform
from dataclasses import dataclass

from provisioner.errors import UnsupportedPlatformError


_OS_MAP = {
    "linux": "linux",
    "darwin": "osx",
}

_ARCH_MAP = {
    "x86_64": "x64",
    "amd64": "x64",
    "aarch64": "arm64",
    "arm64": "arm64",
}


@dataclass(slots=True, frozen=True)
class RunnerPlatform:
    """OS/arch pair as spelled in runner release archive names"""

    os: str
    arch: str

    @property
    def slug(self) -> str:
        return f"{self.os}-{self.arch}"


def detect_platform(system: str | None = None, machine: str | None = None) -> RunnerPlatform:
    system = (system if system is not None else platform.system()).lower()
    machine = (machine if machine is not None else platform.machine()).lower()

    runner_os = _OS_MAP.get(system)
    if runner_os is None:
        raise UnsupportedPlatformError(f"Unsupported operating system: {system or 'unknown'}")

    arch = _ARCH_MAP.get(machine)
    if arch is None:
        raise UnsupportedPlatformError(f"Unsupported architecture: {machine or 'unknown'}")

    return RunnerPlatform(os=runner_os, arch=arch)
