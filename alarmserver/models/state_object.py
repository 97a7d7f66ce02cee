# alarmserver/models/state_object.py
"""
Object tree table, one row per device, channel or state definition.
Ids are dotted paths such as 'AABBCCDDEEFF.Ch1.VMD'.
"""

from sqlalchemy import Column, String, DateTime, Text
from alarmserver.database import Base


class StateObject(Base):
    __tablename__ = "objects"

    id = Column(String(255), primary_key=True)
    type = Column(String(20), nullable=False, index=True)   # device | channel | state
    descriptor = Column(Text, nullable=False)               # JSON
    created_at = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<StateObject {self.id} type={self.type}>"
