from .document_set import DocumentSet
