"""Project entities - project settings, prompt templates and studio presets."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime
from sqlmodel import Field, SQLModel

from facet.core.timezone import utcnow


class PromptTemplate(SQLModel, table=True):
    """Reusable prompt template selected on a project."""

    __tablename__ = "prompt_templates"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    organization_id: Optional[UUID] = Field(default=None, index=True)
    name: str = Field(max_length=255)
    base_prompt: str
    style: Optional[str] = Field(default=None)
    background: Optional[str] = Field(default=None)
    lighting: Optional[str] = Field(default=None)


class StudioPreset(SQLModel, table=True):
    """Photography studio settings rendered into a prompt by the preset prompt builder."""

    __tablename__ = "studio_presets"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    organization_id: Optional[UUID] = Field(default=None, index=True)
    name: str = Field(default="Custom preset", max_length=255)

    camera_lens: str = Field(default="85mm", max_length=20)
    camera_aperture: str = Field(default="f/8", max_length=20)
    camera_angle: str = Field(default="45deg", max_length=20)
    camera_focus: str = Field(default="sharp", max_length=20)
    camera_distance: str = Field(default="medium", max_length=20)

    lighting_style: str = Field(default="studio-3point", max_length=30)
    lighting_key_intensity: int = Field(default=70)
    lighting_fill_intensity: int = Field(default=50)
    lighting_rim_intensity: int = Field(default=40)
    lighting_direction: str = Field(default="top-left", max_length=20)

    background_type: str = Field(default="white", max_length=20)
    background_surface: str = Field(default="none", max_length=20)
    background_shadow: str = Field(default="soft", max_length=20)
    background_reflection: int = Field(default=0)

    jewelry_metal: str = Field(default="auto", max_length=20)
    jewelry_finish: str = Field(default="high-polish", max_length=20)
    jewelry_sparkle: int = Field(default=60)
    jewelry_color_pop: int = Field(default=50)
    jewelry_detail: int = Field(default=60)

    composition_framing: str = Field(default="center", max_length=20)
    composition_aspect_ratio: str = Field(default="1:1", max_length=10)
    composition_padding: int = Field(default=20)


class Project(SQLModel, table=True):
    """Project groups queue items and carries AI settings and usage counters."""

    __tablename__ = "projects"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    organization_id: UUID = Field(index=True)
    name: str = Field(max_length=255)
    ai_model: Optional[str] = Field(default=None, max_length=100)
    template_id: Optional[UUID] = Field(default=None, foreign_key="prompt_templates.id")
    studio_preset_id: Optional[UUID] = Field(default=None, foreign_key="studio_presets.id")
    custom_prompt: Optional[str] = Field(default=None)

    # Usage counters, mutated only through ProjectRepository.record_completion
    trial_limit: int = Field(default=0)
    trial_completed: int = Field(default=0)
    processed_images: int = Field(default=0)
    total_tokens: int = Field(default=0)
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=Column(DateTime(), nullable=False)
    )
