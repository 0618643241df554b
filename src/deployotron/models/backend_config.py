"""Runtime configuration for backend selection and the pipeline."""

from __future__ import annotations

import random
import re

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from deployotron.config.defaults import (
    DEFAULT_HEALTH_POLL_INTERVAL,
    DEFAULT_HEALTH_TIMEOUT,
    ENV_AZURE_PREFIX,
    ENV_HEALTH_POLL_INTERVAL,
    ENV_HEALTH_TIMEOUT,
    ENV_SHADOW_FAILURE_RATE,
    ENV_SHADOW_MODE,
)
from deployotron.config.env_loader import get_env_flag, get_env_float, get_env_var
from deployotron.lib.errors import ConfigError

AZURE_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
MEMORY_PATTERN = re.compile(r"^\d+(\.\d+)?(Mi|Gi)$")
VALID_CPUS = [0.25, 0.5, 0.75, 1.0, 1.25, 1.5, 1.75, 2.0]


class BackendConfig(BaseModel):
    """Selects real or shadow backends and tunes failure injection.

    Attributes:
        shadow_mode_enabled: Use in-memory shadow backends
        failure_rate: Probability in [0.0, 1.0] that a shadow operation fails
        simulate_delays: Sleep briefly inside shadow operations
    """

    model_config = ConfigDict(extra="forbid")

    shadow_mode_enabled: bool = Field(default=False, description="Use shadow mode")
    failure_rate: float = Field(default=0.0, description="Injected failure rate")
    simulate_delays: bool = Field(
        default=False, description="Simulate operation latency in shadow mode"
    )

    @field_validator("failure_rate", mode="before")
    @classmethod
    def clamp_failure_rate(cls, v: float) -> float:
        """Clamp the failure rate into [0.0, 1.0]."""
        rate = float(v)
        if rate != rate:  # NaN
            return 0.0
        return min(max(rate, 0.0), 1.0)

    @classmethod
    def from_env(cls) -> BackendConfig:
        """Read shadow mode and failure rate from the environment.

        Unset variables mean real backends with no injected failures.
        """
        return cls(
            shadow_mode_enabled=get_env_flag(ENV_SHADOW_MODE),
            failure_rate=get_env_float(ENV_SHADOW_FAILURE_RATE, 0.0),
        )

    def should_fail(self, rng: random.Random | None = None) -> bool:
        """Sample the failure rate once."""
        if self.failure_rate <= 0.0:
            return False
        if self.failure_rate >= 1.0:
            return True
        sample = (rng or random).random()
        return sample < self.failure_rate


class OrchestratorSettings(BaseModel):
    """Timing knobs for the deployment pipeline.

    The health step polls every ``health_poll_interval`` seconds and gives up
    after ``health_timeout`` seconds (30 polls with the defaults).
    """

    model_config = ConfigDict(extra="forbid")

    health_poll_interval: float = Field(
        default=DEFAULT_HEALTH_POLL_INTERVAL,
        ge=0,
        description="Seconds between health polls",
    )
    health_timeout: float = Field(
        default=DEFAULT_HEALTH_TIMEOUT,
        gt=0,
        description="Seconds to wait for the service to become healthy",
    )

    @classmethod
    def from_env(cls) -> OrchestratorSettings:
        """Read polling overrides from the environment."""
        return cls(
            health_poll_interval=get_env_float(
                ENV_HEALTH_POLL_INTERVAL, DEFAULT_HEALTH_POLL_INTERVAL, strict=True
            ),
            health_timeout=get_env_float(
                ENV_HEALTH_TIMEOUT, DEFAULT_HEALTH_TIMEOUT, strict=True
            ),
        )


class AzureTargetConfig(BaseModel):
    """Azure Container Apps target for the real deployment backend.

    Attributes:
        subscription_id: Azure subscription ID (UUID)
        resource_group: Azure resource group name
        environment_name: Container Apps environment name
        location: Azure region
        registry_name: Azure Container Registry name
        workspace_id: Log Analytics workspace ID used for log queries
        cpu: vCPU allocation
        memory: Memory allocation (e.g., 2Gi)
        ingress_external: Whether ingress is external
        min_replicas: Minimum replicas
        max_replicas: Maximum replicas
    """

    model_config = ConfigDict(extra="forbid")

    subscription_id: str = Field(..., description="Azure subscription ID (UUID)")
    resource_group: str = Field(..., description="Azure resource group name")
    environment_name: str | None = Field(
        default=None, description="Container Apps environment name"
    )
    location: str = Field(default="eastus", description="Azure region for deployment")
    registry_name: str = Field(..., description="Azure Container Registry name")
    workspace_id: str | None = Field(
        default=None, description="Log Analytics workspace ID"
    )
    cpu: float = Field(
        default=0.5,
        description="vCPU allocation (0.25, 0.5, 0.75, 1.0, 1.25, 1.5, 1.75, 2.0)",
    )
    memory: str = Field(default="1Gi", description="Memory allocation (e.g., 2Gi)")
    ingress_external: bool = Field(
        default=True, description="Whether ingress is external"
    )
    min_replicas: int = Field(default=1, ge=0, description="Minimum replicas")
    max_replicas: int = Field(default=10, ge=1, description="Maximum replicas")

    @field_validator("subscription_id")
    @classmethod
    def validate_subscription_id(cls, v: str) -> str:
        """Validate Azure subscription ID is a valid UUID."""
        if not AZURE_UUID_PATTERN.match(v):
            raise ValueError(
                f"Invalid Azure subscription ID: {v}. Must be a valid UUID."
            )
        return v

    @field_validator("cpu")
    @classmethod
    def validate_cpu(cls, v: float) -> float:
        """Validate CPU is a valid Azure Container Apps value."""
        if v not in VALID_CPUS:
            raise ValueError(f"Invalid CPU value: {v}. Must be one of: {VALID_CPUS}")
        return v

    @field_validator("memory")
    @classmethod
    def validate_memory(cls, v: str) -> str:
        """Validate memory format."""
        if not MEMORY_PATTERN.match(v):
            raise ValueError(
                f"Invalid memory format: {v}. Must be a number followed by Mi or Gi."
            )
        return v

    @model_validator(mode="after")
    def validate_replica_range(self) -> AzureTargetConfig:
        """Ensure min_replicas does not exceed max_replicas."""
        if self.min_replicas > self.max_replicas:
            raise ValueError(
                f"min_replicas ({self.min_replicas}) cannot exceed "
                f"max_replicas ({self.max_replicas})"
            )
        return self

    @classmethod
    def from_env(cls) -> AzureTargetConfig:
        """Build the target from ``DEPLOYOTRON_AZURE_*`` variables.

        Raises:
            ConfigError: If a required variable is missing or invalid
        """
        required = {
            "subscription_id": "SUBSCRIPTION_ID",
            "resource_group": "RESOURCE_GROUP",
            "registry_name": "REGISTRY_NAME",
        }
        optional = {
            "environment_name": "ENVIRONMENT_NAME",
            "location": "LOCATION",
            "workspace_id": "WORKSPACE_ID",
            "cpu": "CPU",
            "memory": "MEMORY",
            "min_replicas": "MIN_REPLICAS",
            "max_replicas": "MAX_REPLICAS",
        }

        values: dict[str, str] = {}
        for field, suffix in required.items():
            value = get_env_var(f"{ENV_AZURE_PREFIX}{suffix}")
            if not value:
                raise ConfigError(
                    f"{ENV_AZURE_PREFIX}{suffix}",
                    "Required for real deployments (or enable shadow mode)",
                )
            values[field] = value
        for field, suffix in optional.items():
            value = get_env_var(f"{ENV_AZURE_PREFIX}{suffix}")
            if value:
                values[field] = value

        try:
            return cls.model_validate(values)
        except ValueError as e:
            raise ConfigError("azure", str(e)) from e
