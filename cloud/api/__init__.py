"""FastAPI document service used by ``HttpDocumentStore``."""
