# alarmserver/models/state_value.py
"""
Current value of every state: alarm indicators and info.connection.
Values are stored JSON-encoded so booleans and strings share one column.
"""

from sqlalchemy import Column, Integer, String, DateTime, Text
from alarmserver.database import Base


class StateValue(Base):
    __tablename__ = "states"

    id = Column(String(255), primary_key=True)
    value = Column(Text)
    ack = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime, nullable=False, index=True)

    def __repr__(self):
        return f"<StateValue {self.id}={self.value} ack={self.ack}>"
