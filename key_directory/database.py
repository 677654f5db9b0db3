"""
Database models and operations for the key directory.

Uses SQLAlchemy with SQLite for storing one public key per user.
Note: Private keys are NEVER stored or accepted here.
"""

import os
from datetime import datetime
from typing import Optional
from sqlalchemy import Column, Integer, String, DateTime, Text, select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

Base = declarative_base()

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./keys.db"


class PublicKeyRecord(Base):
    """Registered public key for a user"""
    __tablename__ = "public_keys"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(128), unique=True, index=True, nullable=False)
    public_key_pem = Column(Text, nullable=False)  # SPKI PEM
    key_id = Column(String(32), nullable=False, default="v1")
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Database:
    """Database manager for async operations"""

    def __init__(self, database_url: Optional[str] = None):
        """
        Initialize database connection.

        Args:
            database_url: SQLAlchemy database URL; defaults to
                ``KEY_DIRECTORY_DATABASE_URL`` or a local SQLite file
        """
        database_url = database_url or os.getenv("KEY_DIRECTORY_DATABASE_URL", DEFAULT_DATABASE_URL)
        self.engine = create_async_engine(database_url, echo=False)
        self.async_session = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def create_tables(self):
        """Create all tables"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def store_public_key(self, user_id: str, public_key_pem: str, key_id: str) -> PublicKeyRecord:
        """
        Store or replace a user's public key.

        Args:
            user_id: Owner of the key
            public_key_pem: SPKI PEM public key
            key_id: Key version label
        """
        async with self.async_session() as session:
            result = await session.execute(
                select(PublicKeyRecord).where(PublicKeyRecord.user_id == user_id)
            )
            record = result.scalar_one_or_none()

            if record:
                record.public_key_pem = public_key_pem
                record.key_id = key_id
                record.updated_at = datetime.utcnow()
            else:
                record = PublicKeyRecord(
                    user_id=user_id,
                    public_key_pem=public_key_pem,
                    key_id=key_id
                )
                session.add(record)

            await session.commit()
            await session.refresh(record)
            return record

    async def get_public_key(self, user_id: str) -> Optional[PublicKeyRecord]:
        """
        Get a user's public key.

        Returns:
            PublicKeyRecord or None if the user has not registered a key
        """
        async with self.async_session() as session:
            result = await session.execute(
                select(PublicKeyRecord).where(PublicKeyRecord.user_id == user_id)
            )
            return result.scalar_one_or_none()

    async def close(self):
        await self.engine.dispose()
