"""
Blueprint Service

Loads and saves the P&L blueprint through the versioned document store and
reads the initiative documents consumed by the aggregation engine.
"""

import logging
from typing import Any, List

from sqlalchemy.orm import Session

from blueprint_schema import (
    Blueprint, BlueprintRecord, InvalidBlueprintError, create_default_blueprint, sanitize_blueprint
)
from document_store import DocumentStore
from financials_config import BLUEPRINT_DOCUMENT_KEY
from financials_models import DocumentKind, FinancialDocument
from initiative_schema import Initiative

logger = logging.getLogger(__name__)


def _to_record(document: FinancialDocument) -> BlueprintRecord:
    return BlueprintRecord(
        id=document.document_key,
        version=document.version,
        blueprint=Blueprint.from_dict(document.definition or {}),
        created_at=document.created_at,
        updated_at=document.updated_at,
    )


class BlueprintService:
    def __init__(self, db: Session, document_key: str = BLUEPRINT_DOCUMENT_KEY):
        self.db = db
        self.store = DocumentStore(db)
        self.document_key = document_key

    def get_blueprint(self) -> BlueprintRecord:
        """Stored blueprint; the default skeleton is stored first when none exists"""
        document = self.store.read(DocumentKind.BLUEPRINT.value, self.document_key)
        if document is not None:
            record = _to_record(document)
            if record.blueprint.lines:
                return record
            logger.info(f"Blueprint '{self.document_key}' has no lines; restoring defaults")
        else:
            logger.info(f"No blueprint '{self.document_key}'; creating default")

        document = self.store.insert(
            DocumentKind.BLUEPRINT.value, self.document_key, create_default_blueprint().to_dict()
        )
        return _to_record(document)

    def save_blueprint(self, payload: Any, expected_version: Any) -> BlueprintRecord:
        """
        Sanitize and store a blueprint.

        Raises InvalidBlueprintError for a non-integer expected version or a
        non-mapping payload, VersionConflictError when the version is stale.
        """
        if isinstance(expected_version, bool) or not isinstance(expected_version, int):
            raise InvalidBlueprintError("expectedVersion must be an integer")
        blueprint = sanitize_blueprint(payload)
        if self.store.read(DocumentKind.BLUEPRINT.value, self.document_key) is None:
            self.get_blueprint()
        document = self.store.replace(
            DocumentKind.BLUEPRINT.value, self.document_key, blueprint.to_dict(), expected_version
        )
        logger.info(
            f"Saved blueprint '{self.document_key}' v{document.version} "
            f"({len(blueprint.lines)} lines, {len(blueprint.ratios)} ratios)"
        )
        return _to_record(document)

    def load_initiatives(self) -> List[Initiative]:
        """Every stored initiative; malformed documents are skipped"""
        initiatives = []
        for document in self.store.list_documents(DocumentKind.INITIATIVE.value):
            definition = document.definition
            if isinstance(definition, dict):
                definition = {"id": document.document_key, **definition}
            try:
                initiatives.append(Initiative.from_dict(definition))
            except ValueError as e:
                logger.warning(f"Skipping initiative document '{document.document_key}': {e}")
        return initiatives
