from pydantic import BaseModel, Field, validator
from typing import Optional

DEFAULT_TECHNICAL_WEIGHT = 70


class WeightPair(BaseModel):
    """Technical / behavioural split used to combine category composites"""
    technical_weight: int = Field(default=DEFAULT_TECHNICAL_WEIGHT, ge=0, le=100)
    hr_weight: int = Field(default=100 - DEFAULT_TECHNICAL_WEIGHT, ge=0, le=100)

    @validator('hr_weight')
    def weights_sum_to_100(cls, v, values):
        technical = values.get('technical_weight')
        if technical is not None and technical + v != 100:
            raise ValueError('technical_weight and hr_weight must sum to 100')
        return v

    @classmethod
    def from_technical(cls, technical_weight: int) -> "WeightPair":
        return cls(technical_weight=technical_weight, hr_weight=100 - technical_weight)

    @classmethod
    def resolve(cls, weights: Optional["WeightPair"], default_technical: int = DEFAULT_TECHNICAL_WEIGHT) -> "WeightPair":
        """Weights of a posting, or the default pair when none were set"""
        if weights is None:
            return cls.from_technical(default_technical)
        return weights
