# storefront/utils/audit.py
from sqlalchemy.orm import Session
from storefront.models.log import Log


# Stage an audit row in the caller's transaction; it is persisted (or rolled
# back) together with the change it describes.
def write_log(db: Session, *, user_id, action, resource, status="SUCCESS", ip=None, order_id=None, meta=None):
    entry = Log(
        user_id=user_id,
        order_id=order_id,
        action=action,
        resource=resource,
        status=status,
        ip=ip,
        meta=meta or {},
    )
    db.add(entry)
    return entry
