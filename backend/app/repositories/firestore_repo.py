"""
Firestore Repository

Read-only access to the legacy income collection that the migration job
backfills month partitions from.

Data Structure:
    acct_income/{doc_id}   - One transaction per document
                             (date, time, monthKey, inAmt, outAmt, record, ...)
"""

from typing import Any, Optional

import firebase_admin
from firebase_admin import firestore
from google.cloud.firestore_v1 import Client
from google.cloud.firestore_v1.field_path import FieldPath

from app.core.config import INCOME_COLLECTION


def get_firestore_client() -> Client:
    # Initialize Firebase Admin SDK with Application Default Credentials
    if not firebase_admin._apps:
        firebase_admin.initialize_app()
    return firestore.client()


class FirestoreIncomeSource:
    """Pages through the income collection in document-id order."""

    def __init__(
        self,
        db: Optional[Client] = None,
        collection: str = INCOME_COLLECTION,
    ) -> None:
        self.db = db or get_firestore_client()
        self.collection = collection

    def fetch_page(
        self,
        start_after: Optional[str],
        limit: int,
    ) -> list[tuple[str, dict[str, Any]]]:
        """
        Fetch one page of documents ordered by document id.

        Args:
            start_after: Document id to resume after (exclusive), or None
            limit: Maximum number of documents in the page

        Returns:
            List of (document id, document data) tuples; empty when exhausted
        """
        collection_ref = self.db.collection(self.collection)
        query = collection_ref.order_by(FieldPath.document_id())
        if start_after:
            # Cursor values for a document-id ordering are document references
            query = query.start_after(
                {FieldPath.document_id(): collection_ref.document(start_after)}
            )
        docs = query.limit(limit).get()
        return [(doc.id, doc.to_dict() or {}) for doc in docs]
