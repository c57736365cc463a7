"""
Versioned Document Store

JSON documents (blueprint, initiatives, dashboard preferences) keyed by
(kind, document_key). Every write bumps the version; `replace` only succeeds
when the caller's expected version is still current.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from financials_models import FinancialDocument

logger = logging.getLogger(__name__)


class VersionConflictError(ValueError):
    """The stored document changed since the caller read it"""

    def __init__(self, kind: str, document_key: str, expected_version: int):
        self.kind = kind
        self.document_key = document_key
        self.expected_version = expected_version
        super().__init__(
            f"{kind} '{document_key}' is no longer at version {expected_version}"
        )


class DocumentNotFoundError(ValueError):
    """Requested document does not exist"""


class DocumentStore:
    """Thin repository over the financial_documents table"""

    def __init__(self, db: Session):
        self.db = db

    def _query(self, kind: str, document_key: str):
        return self.db.query(FinancialDocument).filter(
            FinancialDocument.kind == kind,
            FinancialDocument.document_key == document_key,
        )

    def read(self, kind: str, document_key: str) -> Optional[FinancialDocument]:
        return self._query(kind, document_key).first()

    def get(self, kind: str, document_key: str) -> FinancialDocument:
        document = self.read(kind, document_key)
        if document is None:
            raise DocumentNotFoundError(f"{kind} '{document_key}' not found")
        return document

    def list_documents(self, kind: str) -> List[FinancialDocument]:
        return self.db.query(FinancialDocument).filter(
            FinancialDocument.kind == kind
        ).order_by(FinancialDocument.document_key).all()

    def insert(self, kind: str, document_key: str, definition: Dict[str, Any]) -> FinancialDocument:
        """Upsert: a new document starts at version 1, an existing one is bumped"""
        document = self.read(kind, document_key)
        if document is None:
            document = FinancialDocument(
                kind=kind,
                document_key=document_key,
                definition=definition,
                version=1,
            )
            self.db.add(document)
        else:
            document.definition = definition
            document.version = document.version + 1
            document.updated_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(document)
        logger.info(f"Stored {kind} '{document_key}' at version {document.version}")
        return document

    def replace(self, kind: str, document_key: str, definition: Dict[str, Any],
                expected_version: int) -> FinancialDocument:
        """
        Atomic compare-and-set on version.

        The UPDATE only matches the row while it still carries
        `expected_version`; zero matched rows means another writer won.
        """
        updated = self._query(kind, document_key).filter(
            FinancialDocument.version == expected_version
        ).update(
            {
                FinancialDocument.definition: definition,
                FinancialDocument.version: FinancialDocument.version + 1,
                FinancialDocument.updated_at: datetime.utcnow(),
            },
            synchronize_session=False,
        )

        if updated == 0:
            self.db.rollback()
            logger.warning(f"Version conflict on {kind} '{document_key}' (expected {expected_version})")
            raise VersionConflictError(kind, document_key, expected_version)

        self.db.commit()
        document = self.get(kind, document_key)
        self.db.refresh(document)
        logger.info(f"Replaced {kind} '{document_key}', now version {document.version}")
        return document

