from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from dotenv import load_dotenv
import os

from .exceptions import AlreadyExists, RentalError, StoreFailure
from .logger import get_logger
from .models import Base

load_dotenv()

logger = get_logger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./rental.db")

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session, *, aggregate_id=None, conflict_message: str = ""):
    """Run a unit of work: commit on success, roll back everything on any failure.

    Domain errors are re-raised as they are. A uniqueness violation becomes
    AlreadyExists when `conflict_message` is given; every other store error
    becomes StoreFailure. Nothing is retried here.
    """
    try:
        yield db
        db.commit()
    except RentalError as e:
        db.rollback()
        logger.warning("Rolled back %s for %s: %s", e.kind, aggregate_id, e.message)
        raise
    except IntegrityError as e:
        db.rollback()
        if conflict_message:
            logger.warning("Uniqueness conflict for %s: %s", aggregate_id, e.orig)
            raise AlreadyExists(conflict_message, aggregate_id) from e
        logger.exception("Integrity error for %s", aggregate_id)
        raise StoreFailure("Store rejected the change", aggregate_id) from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.exception("Store failure for %s", aggregate_id)
        raise StoreFailure("Store failure, nothing was changed", aggregate_id) from e
    except Exception:
        db.rollback()
        raise
