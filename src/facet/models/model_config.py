"""AIModelConfig entity - operator-owned provider protocol mapping for one model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel

from facet.core.timezone import utcnow


class AIModelConfig(SQLModel, table=True):
    """Registry row describing how to talk to the provider behind a model id.

    Path fields hold either dot expressions ("data.response.resultImageUrl") or
    pre-split segment lists (["data", "response", "resultImageUrl"]).
    """

    __tablename__ = "ai_model_configs"  # type: ignore[assignment]

    id: str = Field(primary_key=True, max_length=100)  # e.g. "flux-kontext-pro"
    provider: str = Field(default="kie", max_length=50)
    submit_endpoint: str
    status_endpoint: str
    request_builder: str = Field(max_length=50)  # key into request builder variants
    request_template: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    task_id_path: Optional[list] = Field(default=None, sa_column=Column(JSON))
    result_url_paths: Optional[list] = Field(default=None, sa_column=Column(JSON))
    success_check: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    failure_check: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    max_processing_time_sec: int = Field(default=600)
    token_cost: int = Field(default=1)
    supports_callback: bool = Field(default=True)
    is_active: bool = Field(default=True)
    updated_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(), nullable=False)
    )
