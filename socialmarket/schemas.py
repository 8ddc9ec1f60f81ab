"""Request schemas (pydantic). Validate every API request body with these."""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from socialmarket.validation import is_valid_email


# ============================================
# Auth
# ============================================

class SignupSchema(BaseModel):
    email: str
    password: str = Field(min_length=8)
    username: Optional[str] = Field(
        default=None, min_length=3, max_length=30, pattern=r"^[a-zA-Z0-9_]+$"
    )

    @field_validator("email")
    @classmethod
    def check_email(cls, value):
        value = value.strip().lower()
        if not is_valid_email(value):
            raise ValueError("Invalid email format")
        return value


class RefreshSchema(BaseModel):
    refresh_token: str = Field(min_length=1)


# ============================================
# Billing & marketplace
# ============================================

class CheckoutSchema(BaseModel):
    tier: Literal["supporter", "vip"]


class PaymentIntentSchema(BaseModel):
    item_id: str = Field(min_length=1)
    quantity: int = Field(default=1, ge=1, le=100)


# ============================================
# Comments
# ============================================

class CreateCommentSchema(BaseModel):
    content: str = Field(min_length=1, max_length=2000)
    parent_comment_id: Optional[str] = None


class UpdateCommentSchema(BaseModel):
    content: str = Field(min_length=1, max_length=2000)


class PaginationSchema(BaseModel):
    cursor: Optional[str] = None
    limit: int = Field(default=20, ge=1, le=100)


# ============================================
# AI
# ============================================

class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str = Field(min_length=1, max_length=8000)


class ChatSchema(BaseModel):
    messages: List[ChatMessage] = Field(min_length=1, max_length=50)
    temperature: float = Field(default=0.7, ge=0, le=2)
    max_tokens: int = Field(default=500, ge=1, le=4000)


class GenerateImageSchema(BaseModel):
    prompt: str = Field(min_length=1, max_length=4000)
    width: Literal[256, 512, 1024] = 1024
    height: Literal[256, 512, 1024] = 1024


class ModerateSchema(BaseModel):
    text: str = Field(min_length=1, max_length=10000)
    content_type: Literal["post", "comment", "story", "message", "listing"] = "post"


class EmbeddingsSchema(BaseModel):
    text: str = Field(min_length=1, max_length=8000)
