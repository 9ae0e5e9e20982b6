# storefront/routes/tax.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.database import get_db
from storefront.schemas.wallet import TaxConfigOut
from storefront.services.settings_store import load_tax_settings

router = APIRouter(prefix="/tax", tags=["Tax"])


@router.get("/config", response_model=TaxConfigOut)
def tax_config(db: Session = Depends(get_db)):
    return TaxConfigOut(rate=load_tax_settings(db).rate)
