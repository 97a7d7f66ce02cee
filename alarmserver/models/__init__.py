# Alarm server database models
# Import all models here for SQLAlchemy discovery

from alarmserver.models.state_object import StateObject   # noqa
from alarmserver.models.state_value import StateValue     # noqa
