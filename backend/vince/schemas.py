"""Pydantic request bodies. Anything that does not parse is a 400."""
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class _Body(BaseModel):
    model_config = ConfigDict(extra='forbid', str_strip_whitespace=True)


class RegisterSchema(_Body):
    name: str = Field(min_length=1, max_length=128)
    email: str = Field(min_length=3, max_length=255, pattern=r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
    password: str = Field(min_length=6, max_length=128)

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.lower()


class LoginSchema(_Body):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=128)

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.lower()


class AttemptUpdateSchema(_Body):
    status: Optional[Literal['active', 'completed', 'expired', 'abandoned']] = None
    convincing_score: Optional[int] = Field(default=None, ge=0, le=100)

    @model_validator(mode='after')
    def require_a_field(self):
        if self.status is None and self.convincing_score is None:
            raise ValueError('status or convincing_score is required')
        return self


class TimeDebitSchema(_Body):
    seconds_to_subtract: int = Field(ge=0, le=24 * 3600)


class PaymentCreateSchema(_Body):
    amount_paid: float = Field(gt=0)
    time_purchased_seconds: int = Field(gt=0, le=24 * 3600)


class MessageCreateSchema(_Body):
    attempt_id: int
    message: str = Field(min_length=1, max_length=4000)


class AIResponseCreateSchema(_Body):
    attempt_id: int
    user_message_id: int
    ai_response: str = Field(min_length=1, max_length=4000)
    convincing_score_snapshot: int = Field(ge=0, le=100)


class WithdrawalCreateSchema(_Body):
    prize_id: int
    certificate_id: int
    # Defaults to the full prize amount
    amount_withdrawn: Optional[float] = Field(default=None, gt=0)
    description: Optional[str] = Field(default=None, max_length=500)


class WithdrawalUpdateSchema(_Body):
    status: Literal['approved', 'completed', 'rejected']
