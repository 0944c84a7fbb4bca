from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import Config

SQLALCHEMY_DATABASE_URL = Config.DATABASE_URL

connect_args = {}
if SQLALCHEMY_DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args=connect_args)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

# Dependency to get DB session in FastAPI routes
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def create_all_tables(bind=None):
    # Models must be imported so Base knows about them
    from credit_manager.access_control import models as access_models # noqa: F401
    from credit_manager.credit_applications import models as application_models # noqa: F401

    Base.metadata.create_all(bind=bind or engine)

if __name__ == "__main__":
    # python -m credit_manager.database
    create_all_tables()
