"""Runtime environment definitions for remote jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from azure.ai.ml.entities import Environment

DEFAULT_IMAGE = "mcr.microsoft.com/azureml/openmpi4.1.0-ubuntu22.04:latest"

# Needed by the parallel worker and by metric logging inside training scripts
BASE_PIP_PACKAGES = ("cloudpickle", "mlflow", "azureml-mlflow")

__all__ = ["BASE_PIP_PACKAGES", "DEFAULT_IMAGE", "EnvironmentSpec"]


def _package_name(requirement: str) -> str:
    for separator in ("[", "=", "<", ">", "!", "~", ";", " "):
        requirement = requirement.split(separator, 1)[0]
    return requirement.strip().lower().replace("_", "-")


@dataclass
class EnvironmentSpec:
    """Docker image plus the Python packages a job needs on top of it."""

    name: Optional[str] = None
    image: str = DEFAULT_IMAGE
    python_version: str = "3.10"
    pip_packages: List[str] = field(default_factory=list)
    conda_channels: List[str] = field(default_factory=lambda: ["conda-forge"])
    environment_variables: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_section(cls, section: Any) -> "EnvironmentSpec":
        return cls(
            name=section.name,
            image=section.image,
            python_version=section.python_version,
            pip_packages=list(section.pip_packages),
            conda_channels=list(section.conda_channels),
            environment_variables=dict(section.environment_variables),
        )

    def with_packages(self, packages: Sequence[str]) -> "EnvironmentSpec":
        return EnvironmentSpec(
            name=self.name,
            image=self.image,
            python_version=self.python_version,
            pip_packages=[*self.pip_packages, *packages],
            conda_channels=list(self.conda_channels),
            environment_variables=dict(self.environment_variables),
        )

    def resolved_pip_packages(self) -> List[str]:
        """User packages first, then the base packages that are not already listed, without duplicates."""
        seen: set[str] = set()
        resolved: List[str] = []
        for requirement in [*self.pip_packages, *BASE_PIP_PACKAGES]:
            key = _package_name(requirement)
            if key in seen:
                continue
            seen.add(key)
            resolved.append(requirement)
        return resolved

    def conda_specification(self) -> Dict[str, Any]:
        return {
            "name": self.name or "amlrun-env",
            "channels": list(self.conda_channels),
            "dependencies": [
                f"python={self.python_version}",
                "pip",
                {"pip": self.resolved_pip_packages()},
            ],
        }

    def to_environment(self) -> Environment:
        kwargs: Dict[str, Any] = {
            "image": self.image,
            "conda_file": self.conda_specification(),
        }
        if self.name:
            kwargs["name"] = self.name
        return Environment(**kwargs)
