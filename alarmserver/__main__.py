# alarmserver/__main__.py
"""
Run the alarm server:  python -m alarmserver

uvicorn exits the process when the listening socket cannot be bound.
"""

import uvicorn

from alarmserver.config import settings


def main():
    uvicorn.run(
        "alarmserver.main:app",
        host=settings.BACKEND_IP,
        port=settings.BACKEND_PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
