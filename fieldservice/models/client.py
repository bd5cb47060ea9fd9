"""
Модель клиента (обслуживаемого объекта).
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

from fieldservice.core.timeutils import utcnow


class Client(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    contact_person: str | None = None
    phone: str | None = None
    notes: str | None = None
    created_by: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
