# votequeue/database/models.py

from sqlalchemy import Column, String
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# One row per voter identity holding that voter's current choice
class TallyRow(Base):
    __tablename__ = 'votes'
    id = Column(String(255), primary_key=True, unique=True, nullable=False)  # voter identity
    vote = Column(String(255), nullable=False)

    def __repr__(self):
        return f'<TallyRow {self.id}: {self.vote}>'
