from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from app.core.db import Base

class DocumentSet(Base):
    __tablename__ = "document_sets"

    id = Column(Integer, primary_key=True, index=True)

    # One JSON document per section, stored in wire (camelCase) form
    passport_front = Column(JSON, nullable=True)
    passport_back = Column(JSON, nullable=True)
    aadhar = Column(JSON, nullable=True)
    pan = Column(JSON, nullable=True)
    photo = Column(JSON, nullable=True)
    payment = Column(JSON, nullable=True)

    # Denormalised lookup columns for duplicate detection (NULL when blank)
    passport_number = Column(String, index=True, nullable=True)
    aadhaar_number = Column(String, index=True, nullable=True)
    pan_number = Column(String, index=True, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<DocumentSet {self.id}: passport={self.passport_number} aadhaar={self.aadhaar_number} pan={self.pan_number}>"
