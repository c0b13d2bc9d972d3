from .crud_document import document
