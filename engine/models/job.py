"""
Job Models

Job catalog entries, job statuses and provider lifecycle actions.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    """Status stored in job_history."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ProviderAction(str, Enum):
    """Provider lifecycle events enqueued by the control plane."""
    CREATED = "created"
    ENABLED = "enabled"
    DISABLED = "disabled"
    DELETED = "deleted"
    CATEGORIES_CHANGED = "categories-changed"


class JobDefinition(BaseModel):
    """
    One entry of the job catalog.

    `interval` and `timeout` use the "<n>[ms|s|m|h|d]" format; jobs
    without an interval only run when triggered or chained.
    """
    name: str
    description: str = ""
    interval: Optional[str] = None
    timeout: str = "0"
    post_execute: List[str] = Field(default_factory=list)
    skip_if_other_in_progress: List[str] = Field(default_factory=list)


class JobTriggerRequest(BaseModel):
    """Body of a manual job trigger."""
    provider_id: Optional[str] = Field(None, alias="providerId")

    model_config = ConfigDict(populate_by_name=True)


class ProviderActionRequest(BaseModel):
    """Body of a provider lifecycle notification."""
    action: str
