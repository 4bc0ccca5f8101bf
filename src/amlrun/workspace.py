"""Workspace configuration files and workspace handles.

An Azure ML workspace is addressed by subscription, resource group and name.
Those three values live in a ``config.json`` that the portal lets you download;
this module finds that file, validates it and turns it into an ``MLClient``.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from azure.ai.ml import MLClient
from azure.identity import DefaultAzureCredential
from pydantic import BaseModel, ValidationError

from .core.exceptions import WorkspaceConfigError

LOGGER = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"
CONFIG_SUBDIRS = ("", ".azureml")

ENV_SUBSCRIPTION = "AZURE_SUBSCRIPTION_ID"
ENV_RESOURCE_GROUP = "AZURE_RESOURCE_GROUP"
ENV_WORKSPACE = "AZUREML_WORKSPACE_NAME"

__all__ = [
    "WorkspaceConfig",
    "find_workspace_config",
    "get_workspace",
    "load_workspace_from_config",
    "write_workspace_config",
]


class WorkspaceConfig(BaseModel):
    subscription_id: str
    resource_group: str
    workspace_name: str
    tenant_id: Optional[str] = None

    model_config = {"extra": "ignore"}

    @classmethod
    def from_file(cls, path: Path) -> "WorkspaceConfig":
        try:
            with Path(path).open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except json.JSONDecodeError as exc:
            raise WorkspaceConfigError(f"Workspace config {path} is not valid JSON: {exc}") from exc
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            raise WorkspaceConfigError(
                f"Workspace config {path} is missing required fields: {exc}",
                metadata={"path": str(path)},
            ) from exc

    @classmethod
    def from_env(cls) -> Optional["WorkspaceConfig"]:
        values = {
            "subscription_id": os.environ.get(ENV_SUBSCRIPTION),
            "resource_group": os.environ.get(ENV_RESOURCE_GROUP),
            "workspace_name": os.environ.get(ENV_WORKSPACE),
        }
        if not all(values.values()):
            return None
        return cls(tenant_id=os.environ.get("AZURE_TENANT_ID"), **values)  # type: ignore[arg-type]


def _candidate_paths(start: Path) -> list[Path]:
    candidates = []
    for directory in (start, *start.parents):
        for subdir in CONFIG_SUBDIRS:
            candidates.append(directory / subdir / CONFIG_FILENAME)
    return candidates


def find_workspace_config(path: str | Path | None = None, *, start: Path | None = None) -> WorkspaceConfig:
    """Locate and parse the workspace configuration.

    An explicit ``path`` may point at the file itself or at a directory holding it.
    Without one, the current directory and its parents are searched (each also
    through its ``.azureml`` subdirectory). Environment variables are the last resort.
    """
    if path is not None:
        path = Path(path).expanduser()
        if path.is_dir():
            for subdir in CONFIG_SUBDIRS:
                candidate = path / subdir / CONFIG_FILENAME
                if candidate.exists():
                    return WorkspaceConfig.from_file(candidate)
            raise WorkspaceConfigError(f"No {CONFIG_FILENAME} found under {path}")
        if not path.exists():
            raise WorkspaceConfigError(f"Workspace config not found: {path}")
        return WorkspaceConfig.from_file(path)

    for candidate in _candidate_paths((start or Path.cwd()).resolve()):
        if candidate.is_file():
            LOGGER.debug("Using workspace config %s", candidate)
            return WorkspaceConfig.from_file(candidate)

    config = WorkspaceConfig.from_env()
    if config is not None:
        LOGGER.debug("Using workspace config from environment variables")
        return config
    raise WorkspaceConfigError(
        f"Could not find {CONFIG_FILENAME} in {start or Path.cwd()} or its parents, and "
        f"{ENV_SUBSCRIPTION}/{ENV_RESOURCE_GROUP}/{ENV_WORKSPACE} are not all set"
    )


def _default_credential(config: WorkspaceConfig) -> Any:
    if config.tenant_id:
        return DefaultAzureCredential(interactive_browser_tenant_id=config.tenant_id)
    return DefaultAzureCredential()


def get_workspace(
    name: str,
    subscription_id: str,
    resource_group: str,
    *,
    credential: Any = None,
) -> MLClient:
    """Return a client bound to an existing workspace."""
    config = WorkspaceConfig(subscription_id=subscription_id, resource_group=resource_group, workspace_name=name)
    return MLClient(
        credential or _default_credential(config),
        subscription_id=config.subscription_id,
        resource_group_name=config.resource_group,
        workspace_name=config.workspace_name,
    )


def load_workspace_from_config(path: str | Path | None = None, *, credential: Any = None) -> MLClient:
    config = find_workspace_config(path)
    LOGGER.info("Loading workspace '%s' (resource group %s)", config.workspace_name, config.resource_group)
    return MLClient(
        credential or _default_credential(config),
        subscription_id=config.subscription_id,
        resource_group_name=config.resource_group,
        workspace_name=config.workspace_name,
    )


def write_workspace_config(config: WorkspaceConfig, path: str | Path = ".azureml") -> Path:
    """Write ``config.json`` into ``path`` (a directory) or to ``path`` itself when it ends in .json."""
    target = Path(path).expanduser()
    if target.suffix != ".json":
        target = target / CONFIG_FILENAME
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8") as handle:
        json.dump(config.model_dump(exclude_none=True), handle, indent=2)
    LOGGER.info("Wrote workspace config to %s", target)
    return target
