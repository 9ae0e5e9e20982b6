from pydantic import BaseModel
from typing import List
from decimal import Decimal


class RewardRuleOut(BaseModel):
    min_spend: Decimal
    points_awarded: int

    class Config:
        from_attributes = True


class WalletConfigOut(BaseModel):
    rupees_per_point: Decimal
    near_miss_tolerance: Decimal
    reward_rules: List[RewardRuleOut]


class WalletBalanceOut(BaseModel):
    wallet: int


class TaxConfigOut(BaseModel):
    rate: Decimal
