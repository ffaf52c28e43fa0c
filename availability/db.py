from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session


def session(engine: Engine) -> Session:
    # Routes hand ORM rows back to the response models after the session
    # context has committed; keep attributes loaded so nothing is refreshed
    # against a closed connection.
    return Session(engine, expire_on_commit=False)
