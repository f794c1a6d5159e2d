from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from storefront.models.database import PromoCode


class PromoCodeRepository:
    def __init__(self, session: Session):
        self.session = session

    def find_by_code(self, code: str) -> Optional[PromoCode]:
        return self.session.execute(
            select(PromoCode).where(PromoCode.code == code)
        ).scalar_one_or_none()

    def add(self, promo: PromoCode) -> PromoCode:
        self.session.add(promo)
        self.session.flush()
        return promo

    def increment_usage(self, promo_id: int) -> bool:
        """Count one redemption unless the code is inactive or already at max_usage."""
        result = self.session.execute(
            update(PromoCode)
            .where(
                PromoCode.id == promo_id,
                PromoCode.is_active.is_(True),
                or_(PromoCode.max_usage.is_(None), PromoCode.usage_count < PromoCode.max_usage),
            )
            .values(usage_count=PromoCode.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
