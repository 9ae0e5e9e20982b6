"""Wallet point movements, all as conditional updates on ``users``."""

import logging

from sqlalchemy import case, update
from sqlalchemy.orm import Session

from storefront.models.users import User
from storefront.services.errors import InsufficientWalletBalance

logger = logging.getLogger(__name__)


def redeem_points(db: Session, user_id: int, points: int) -> None:
    if points <= 0:
        return
    result = db.execute(
        update(User)
        .where(User.id == user_id, User.wallet_balance >= points)
        .values(wallet_balance=User.wallet_balance - points)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InsufficientWalletBalance(
            f"Wallet balance is lower than the {points} points requested.",
            user_id=user_id,
            requested=points,
        )


def credit_points(db: Session, user_id: int, points: int) -> None:
    if points <= 0:
        return
    db.execute(
        update(User)
        .where(User.id == user_id)
        .values(wallet_balance=User.wallet_balance + points)
        .execution_options(synchronize_session=False)
    )


def claw_back_points(db: Session, user_id: int, points: int) -> None:
    """Take back awarded points, never pushing the balance below zero."""
    if points <= 0:
        return
    db.execute(
        update(User)
        .where(User.id == user_id)
        .values(
            wallet_balance=case(
                (User.wallet_balance >= points, User.wallet_balance - points),
                else_=0,
            )
        )
        .execution_options(synchronize_session=False)
    )
    logger.debug("Clawed back up to %s points from user %s", points, user_id)
