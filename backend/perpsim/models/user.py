"""Database model for users resolved from bearer tokens"""
from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.sql import func
from perpsim.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String(255), nullable=False, unique=True, index=True)  # subject from the identity verifier
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<User(id={self.id}, external_id={self.external_id})>"
