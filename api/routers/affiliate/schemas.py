import uuid
from pydantic import BaseModel, Field

from services.affiliate import CartItem


class CodeIn(BaseModel):
    code: str = Field(max_length=64)


class CaptureIn(CodeIn):
    original_user_id: uuid.UUID | None = None


class CartIn(BaseModel):
    items: list[CartItem] = []


class ManualCodeIn(CartIn):
    code: str = Field(max_length=64)
