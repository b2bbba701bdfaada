from sqlalchemy import Column, String, DateTime, Text
from datetime import datetime

from proxystats.core.database import Base


class AppConfig(Base):
    """Persisted key/value settings (retention policy, geo lookup provider)"""
    __tablename__ = "app_config"

    key = Column(String(128), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
