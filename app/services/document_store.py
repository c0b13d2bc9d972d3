"""
Document Store Adapter

The authoritative database of submitted records. A DocumentStore is built
once at process start, opened in the application lifespan and handed to the
orchestrator; there is no module-level engine.

Any database failure surfaces as StoreUnavailable. Retry and fallback policy
belongs to the caller.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app import crud
from app.core.db import Base, make_engine
from app.core.errors import StoreUnavailable
from app.models.document_set import DocumentSet
from app.schemas.document import DocumentRecord, StoredRecord

logger = logging.getLogger(__name__)


def to_stored_record(db_obj: DocumentSet) -> StoredRecord:
    record = DocumentRecord.model_validate({
        "passport_front": db_obj.passport_front,
        "passport_back": db_obj.passport_back,
        "aadhar": db_obj.aadhar,
        "pan": db_obj.pan,
        "photo": db_obj.photo,
        "payment": db_obj.payment,
    })
    return StoredRecord(id=db_obj.id, record=record, created_at=db_obj.created_at)


class DocumentStore:
    """SQLAlchemy-backed record store with an explicit open/close lifecycle."""

    def __init__(self, database_url: str):
        self.database_url = database_url
        self._engine: Optional[Engine] = None
        self._sessionmaker: Optional[sessionmaker] = None

    @property
    def is_open(self) -> bool:
        return self._sessionmaker is not None

    def open(self) -> "DocumentStore":
        """Create the engine and tables. An unreachable database is logged, not raised."""
        if self.is_open:
            return self
        self._engine = make_engine(self.database_url)
        self._sessionmaker = sessionmaker(autocommit=False, autoflush=False, bind=self._engine)
        try:
            Base.metadata.create_all(bind=self._engine)
        except SQLAlchemyError as e:
            logger.warning("Database not reachable at startup, continuing without it: %s", e)
        return self

    def close(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._sessionmaker = None

    @contextmanager
    def session(self) -> Iterator[Session]:
        if self._sessionmaker is None:
            raise StoreUnavailable("Document store is not open")
        db = self._sessionmaker()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreUnavailable(f"Database error: {e.__class__.__name__}") from e
        finally:
            db.close()

    def create(self, record: DocumentRecord) -> StoredRecord:
        with self.session() as db:
            db_obj = crud.document.create(db, obj_in=record)
            return to_stored_record(db_obj)

    def find_by_unique_fields(
        self,
        passport_number: Optional[str] = None,
        aadhaar_number: Optional[str] = None,
        pan_number: Optional[str] = None,
    ) -> List[StoredRecord]:
        with self.session() as db:
            matches = crud.document.find_by_unique_fields(
                db,
                passport_number=passport_number,
                aadhaar_number=aadhaar_number,
                pan_number=pan_number,
            )
            return [to_stored_record(m) for m in matches]

    def list_all(self, ascending: bool = True) -> List[StoredRecord]:
        with self.session() as db:
            return [to_stored_record(m) for m in crud.document.get_all(db, ascending=ascending)]
