from db import init_db, get_session
from models import User, Role
import random


def seed(drivers=5, riders=10):
    init_db()
    session = get_session()
    # around the University District, Seattle
    center = (47.6553, -122.3035)
    users = []
    for i in range(1, drivers + 1):
        users.append(User(
            name=f"driver{i}",
            role=Role.DRIVER.value,
            latitude=center[0] + (random.random() - 0.5) * 0.05,
            longitude=center[1] + (random.random() - 0.5) * 0.05,
        ))
    for i in range(1, riders + 1):
        users.append(User(
            name=f"rider{i}",
            role=Role.RIDER.value,
            latitude=center[0] + (random.random() - 0.5) * 0.03,
            longitude=center[1] + (random.random() - 0.5) * 0.03,
        ))
    session.add_all(users)
    session.commit()
    ids = [u.id for u in users]
    session.close()
    print(f"Seeded {drivers} drivers and {riders} riders")
    return ids


if __name__ == "__main__":
    seed()
