"""AmlCompute cluster lifecycle: lookup, provisioning, scaling and teardown."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, List, Literal, Optional

from azure.ai.ml import MLClient
from azure.ai.ml.entities import AmlCompute
from azure.core.exceptions import ResourceNotFoundError

from .core.exceptions import ComputeProvisioningError, RunTimeoutError
from .core.retry import retry_call

LOGGER = logging.getLogger(__name__)

PROVISIONING_SUCCEEDED = "Succeeded"
PROVISIONING_FAILED = frozenset({"Failed", "Canceled"})

__all__ = [
    "ComputeSpec",
    "create_aml_compute",
    "delete_compute",
    "get_compute",
    "get_or_create_compute",
    "list_nodes_in_compute",
    "update_aml_compute",
    "wait_for_provisioning_completion",
]


@dataclass(frozen=True)
class ComputeSpec:
    """Desired shape of an AmlCompute cluster."""

    name: str
    vm_size: str = "STANDARD_D2_V2"
    min_nodes: int = 0
    max_nodes: int = 4
    idle_seconds_before_scaledown: int = 1800
    tier: Literal["dedicated", "low_priority"] = "dedicated"

    def __post_init__(self) -> None:
        if self.min_nodes < 0:
            raise ValueError("min_nodes must be >= 0")
        if self.max_nodes < max(self.min_nodes, 1):
            raise ValueError("max_nodes must be >= max(min_nodes, 1)")

    @classmethod
    def from_section(cls, section: Any) -> "ComputeSpec":
        return cls(
            name=section.name,
            vm_size=section.vm_size,
            min_nodes=section.min_nodes,
            max_nodes=section.max_nodes,
            idle_seconds_before_scaledown=section.idle_seconds_before_scaledown,
            tier=section.tier,
        )

    def to_entity(self) -> AmlCompute:
        return AmlCompute(
            name=self.name,
            size=self.vm_size,
            min_instances=self.min_nodes,
            max_instances=self.max_nodes,
            idle_time_before_scale_down=self.idle_seconds_before_scaledown,
            tier=self.tier,
        )


def get_compute(workspace: MLClient, name: str) -> Optional[Any]:
    """Return the compute target called ``name`` or ``None`` when it does not exist."""
    try:
        return retry_call(workspace.compute.get, name)
    except ResourceNotFoundError:
        return None


def create_aml_compute(workspace: MLClient, spec: ComputeSpec) -> Any:
    """Start provisioning a cluster and return the SDK poller."""
    LOGGER.info(
        "Provisioning AmlCompute '%s' (%s, %d-%d nodes, %s)",
        spec.name,
        spec.vm_size,
        spec.min_nodes,
        spec.max_nodes,
        spec.tier,
    )
    return retry_call(workspace.compute.begin_create_or_update, spec.to_entity())


def wait_for_provisioning_completion(
    workspace: MLClient,
    name: str,
    *,
    timeout: Optional[float] = 1200.0,
    poll_interval: float = 15.0,
) -> Any:
    """Poll until the cluster reports ``Succeeded``."""
    deadline = time.monotonic() + timeout if timeout else None
    last_state = None
    while True:
        compute = get_compute(workspace, name)
        if compute is None:
            raise ComputeProvisioningError(f"Compute target '{name}' does not exist", metadata={"compute": name})
        state = getattr(compute, "provisioning_state", None)
        if state != last_state:
            LOGGER.info("Compute '%s' provisioning state: %s", name, state)
            last_state = state
        if state == PROVISIONING_SUCCEEDED:
            return compute
        if state in PROVISIONING_FAILED:
            errors = getattr(compute, "provisioning_errors", None)
            raise ComputeProvisioningError(
                f"Provisioning of compute '{name}' ended in state {state}",
                metadata={"compute": name, "state": state, "errors": errors},
            )
        if deadline is not None and time.monotonic() >= deadline:
            raise RunTimeoutError(
                f"Compute '{name}' still '{state}' after {timeout:.0f}s",
                metadata={"compute": name, "state": state},
            )
        time.sleep(poll_interval)


def get_or_create_compute(
    workspace: MLClient,
    spec: ComputeSpec,
    *,
    wait: bool = True,
    timeout: Optional[float] = 1200.0,
    poll_interval: float = 15.0,
) -> Any:
    """Return the cluster, or the provisioning poller when a new one is created with ``wait=False``."""
    compute = get_compute(workspace, spec.name)
    if compute is not None:
        LOGGER.info("Reusing existing compute target '%s'", spec.name)
        if not wait:
            return compute
    else:
        poller = create_aml_compute(workspace, spec)
        if not wait:
            return poller
    return wait_for_provisioning_completion(workspace, spec.name, timeout=timeout, poll_interval=poll_interval)


def update_aml_compute(
    workspace: MLClient,
    name: str,
    *,
    min_nodes: Optional[int] = None,
    max_nodes: Optional[int] = None,
    idle_seconds_before_scaledown: Optional[int] = None,
) -> Any:
    """Change the scale settings of an existing cluster."""
    compute = get_compute(workspace, name)
    if compute is None:
        raise ComputeProvisioningError(f"Compute target '{name}' does not exist", metadata={"compute": name})
    if min_nodes is not None:
        compute.min_instances = min_nodes
    if max_nodes is not None:
        compute.max_instances = max_nodes
    if idle_seconds_before_scaledown is not None:
        compute.idle_time_before_scale_down = idle_seconds_before_scaledown
    if compute.min_instances > compute.max_instances:
        raise ValueError("min_nodes cannot exceed max_nodes")
    LOGGER.info(
        "Updating compute '%s': min=%s max=%s idle=%s",
        name,
        compute.min_instances,
        compute.max_instances,
        compute.idle_time_before_scale_down,
    )
    return retry_call(workspace.compute.begin_create_or_update, compute).result()


def list_nodes_in_compute(workspace: MLClient, name: str) -> List[Any]:
    return list(retry_call(workspace.compute.list_nodes, name))


def delete_compute(workspace: MLClient, name: str, *, wait: bool = True) -> bool:
    """Delete a cluster. Returns False when it was already gone."""
    try:
        poller = retry_call(workspace.compute.begin_delete, name)
    except ResourceNotFoundError:
        LOGGER.info("Compute '%s' not found; nothing to delete", name)
        return False
    LOGGER.info("Deleting compute '%s'", name)
    if wait:
        poller.result()
        LOGGER.info("Compute '%s' deleted", name)
    return True
