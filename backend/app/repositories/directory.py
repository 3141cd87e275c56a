"""Lookups for records the service-request core references but never mutates."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.service import Franchise, Product, Subscription, User


class UserRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: str) -> Optional[User]:
        return self.db.get(User, user_id)


class FranchiseRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, franchise_id: Optional[str]) -> Optional[Franchise]:
        if not franchise_id:
            return None
        return self.db.get(Franchise, franchise_id)

    def get_by_owner(self, owner_id: str) -> Optional[Franchise]:
        stmt = select(Franchise).where(Franchise.owner_id == owner_id).order_by(Franchise.created_at.asc()).limit(1)
        return self.db.execute(stmt).scalars().first()

    def get_by_city(self, city: str) -> Optional[Franchise]:
        stmt = (
            select(Franchise)
            .where(Franchise.city == city, Franchise.is_active.is_(True))
            .order_by(Franchise.created_at.asc())
            .limit(1)
        )
        return self.db.execute(stmt).scalars().first()

    def is_owned_by(self, franchise_id: Optional[str], user_id: str) -> bool:
        franchise = self.get(franchise_id)
        return franchise is not None and franchise.owner_id == user_id


class ProductRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, product_id: str) -> Optional[Product]:
        return self.db.get(Product, product_id)


class SubscriptionRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, subscription_id: str) -> Optional[Subscription]:
        return self.db.get(Subscription, subscription_id)
