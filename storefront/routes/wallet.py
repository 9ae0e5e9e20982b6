# storefront/routes/wallet.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.database import get_db
from storefront.models.users import User
from storefront.schemas.wallet import RewardRuleOut, WalletBalanceOut, WalletConfigOut
from storefront.services.settings_store import load_wallet_settings
from storefront.utils.tokenJWT import get_current_user

router = APIRouter(prefix="/wallet", tags=["Wallet"])


@router.get("/balance", response_model=WalletBalanceOut)
def wallet_balance(current_user: User = Depends(get_current_user)):
    return WalletBalanceOut(wallet=current_user.wallet_balance or 0)


@router.get("/config", response_model=WalletConfigOut)
def wallet_config(db: Session = Depends(get_db)):
    wallet = load_wallet_settings(db)
    return WalletConfigOut(
        rupees_per_point=wallet.rupees_per_point,
        near_miss_tolerance=wallet.near_miss_tolerance,
        reward_rules=[
            RewardRuleOut(min_spend=rule.min_spend, points_awarded=rule.points_awarded)
            for rule in sorted(wallet.reward_rules, key=lambda r: r.min_spend, reverse=True)
        ],
    )
