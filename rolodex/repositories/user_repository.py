from uuid import UUID

from sqlalchemy.orm import Session

from rolodex.models.user import User


class UserRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, user_id: UUID) -> User | None:
        return self.db.query(User).filter(User.id == user_id).first()

    def get_by_email(self, email: str) -> User | None:
        return self.db.query(User).filter(User.email == email.lower()).first()

    def create(self, first_name: str, last_name: str, email: str) -> User:
        user = User(first_name=first_name, last_name=last_name, email=email.lower())
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return user
