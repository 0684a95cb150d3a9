"""Pydantic models for the Discourse API responses the loader consumes."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class DiscourseModel(BaseModel):
    """Discourse returns far more fields than we read; ignore the rest."""
    model_config = ConfigDict(extra="ignore")


class UserCreateResponse(DiscourseModel):
    """Response of ``POST /users.json``."""
    success: bool = False
    active: Optional[bool] = None
    message: Optional[str] = None
    user_id: Optional[int] = None
    errors: Dict[str, List[str]] = Field(default_factory=dict)


class CategoryBody(DiscourseModel):
    id: int
    name: str
    slug: Optional[str] = None
    parent_category_id: Optional[int] = None


class CategoryCreateResponse(DiscourseModel):
    """Response of ``POST /categories.json``."""
    category: CategoryBody


class PostCreateResponse(DiscourseModel):
    """Response of ``POST /posts.json`` and ``GET /posts/{id}.json``."""
    id: int
    topic_id: int
    post_number: Optional[int] = None
    username: Optional[str] = None


class UploadResponse(DiscourseModel):
    """Response of ``POST /uploads.json``."""
    id: int
    url: Optional[str] = None
    original_filename: Optional[str] = None


class AdminUser(DiscourseModel):
    """Response of ``GET /admin/users/{id}.json``."""
    id: int
    username: str


class ErrorResponse(DiscourseModel):
    """Body Discourse sends with 4xx responses."""
    errors: List[str] = Field(default_factory=list)
    error_type: Optional[str] = None

    @classmethod
    def describe(cls, payload: Any) -> str:
        """Render an error body as a single line."""
        if not isinstance(payload, dict):
            return str(payload)
        parsed = cls.model_validate(payload)
        if parsed.errors:
            return "; ".join(parsed.errors)
        return parsed.error_type or str(payload)
