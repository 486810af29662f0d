"""
Configuration for a scope tree.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from scopebind.expr.limits import ExpressionLimits


class ScopeConfig(BaseModel):
    """
    Configuration shared by every scope of one tree.

    Supports both camelCase and snake_case property names for flexibility.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    # Extra digest passes allowed before DigestConvergenceError
    digest_ttl: int = Field(default=10, ge=1, alias="digestTtl")

    # Delay in seconds for deferred digest and apply-async flush callbacks
    async_delay: float = Field(default=0.0, ge=0.0, alias="asyncDelay")

    # Expression limits for text compiled by scopes of this tree
    expression_limits: Optional[ExpressionLimits] = Field(
        default=None, alias="expressionLimits"
    )

    @field_validator("expression_limits", mode="before")
    @classmethod
    def _normalize_expression_limits(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return ExpressionLimits.from_mapping(value)
        return value


DEFAULT_SCOPE_CONFIG = ScopeConfig()


def normalize_scope_config(config: ScopeConfig | dict[str, Any] | None) -> ScopeConfig:
    """Accepts a ScopeConfig, a dict with snake_case or camelCase keys, or None."""
    if config is None:
        return DEFAULT_SCOPE_CONFIG
    if isinstance(config, ScopeConfig):
        return config
    if isinstance(config, dict):
        return ScopeConfig.model_validate(config)
    raise TypeError(f"Expected ScopeConfig or dict, got {type(config).__name__}")
