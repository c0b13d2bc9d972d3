from typing import List, Optional
from sqlalchemy import or_
from sqlalchemy.orm import Session
from app.models.document_set import DocumentSet
from app.schemas.document import DocumentRecord, DOCUMENT_SECTIONS

class CRUDDocument:
    def get(self, db: Session, id: int):
        return db.query(DocumentSet).filter(DocumentSet.id == id).first()

    def get_all(self, db: Session, *, ascending: bool = True) -> List[DocumentSet]:
        if ascending:
            order = (DocumentSet.created_at.asc(), DocumentSet.id.asc())
        else:
            order = (DocumentSet.created_at.desc(), DocumentSet.id.desc())
        return db.query(DocumentSet).order_by(*order).all()

    def find_by_unique_fields(
        self,
        db: Session,
        *,
        passport_number: Optional[str] = None,
        aadhaar_number: Optional[str] = None,
        pan_number: Optional[str] = None,
    ) -> List[DocumentSet]:
        """Records sharing any of the given (non-blank) document numbers."""
        conditions = []
        if passport_number:
            conditions.append(DocumentSet.passport_number == passport_number)
        if aadhaar_number:
            conditions.append(DocumentSet.aadhaar_number == aadhaar_number)
        if pan_number:
            conditions.append(DocumentSet.pan_number == pan_number)
        if not conditions:
            return []
        return db.query(DocumentSet).filter(or_(*conditions)).order_by(DocumentSet.id.asc()).all()

    def create(self, db: Session, *, obj_in: DocumentRecord) -> DocumentSet:
        data = obj_in.to_storage()
        db_obj = DocumentSet(
            **{name: data.get(name) for name in DOCUMENT_SECTIONS},
            payment=data.get("payment"),
            **obj_in.unique_numbers(),
        )
        db.add(db_obj)
        db.commit()
        db.refresh(db_obj)
        return db_obj

document = CRUDDocument()
