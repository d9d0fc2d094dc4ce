# app/models/api/jobs_request.py
"""
Job trigger request models.
"""

from datetime import date

from pydantic import BaseModel, Field


class RunJobRequest(BaseModel):
    """Optional scope for a manual job run."""

    target_date: date | None = Field(default=None, description="Day to process (default depends on the job)")
    account_id: str | None = Field(default=None, description="Restrict the run to one account")
