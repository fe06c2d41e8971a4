"""
Firestore document store for the raw CSV datasets.

One collection (``csv_data`` by default) holds two documents, ``threads`` and
``non-threads``, each with a ``content`` field containing the raw CSV text.
"""
import json
import logging
import os
from typing import Any, Dict, Optional

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as google_exceptions

from errors import NetworkError, SecurityRuleContext, StorePermissionError

logger = logging.getLogger(__name__)

DOCUMENT_IDS = ('threads', 'non-threads')


def _load_credentials_dict(firebase_config: str) -> Dict[str, Any]:
    """Parse FIREBASE_CONFIG given as a JSON string.

    Environment variables often carry the private key with literal newlines,
    which JSON does not allow inside strings.
    """
    try:
        return json.loads(firebase_config)
    except json.JSONDecodeError as initial_error:
        fixed_config = (
            firebase_config.replace('\r\n', '\\n')
            .replace('\r', '\\r')
            .replace('\n', '\\n')
            .replace('\t', '\\t')
        )
        try:
            cred_dict = json.loads(fixed_config)
            logger.info("Successfully parsed FIREBASE_CONFIG after escaping control characters")
            return cred_dict
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse FIREBASE_CONFIG as JSON. Initial error: {initial_error}")
            raise ValueError(f"Invalid FIREBASE_CONFIG JSON: {e}") from e


def init_firebase(firebase_config: Optional[str]) -> bool:
    """Initialize the Firebase Admin app once. Returns True when Firestore is usable."""
    if firebase_admin._apps:
        return True
    if not firebase_config:
        logger.info("Firebase not configured - document store disabled")
        return False

    if os.path.exists(firebase_config):
        cred = credentials.Certificate(firebase_config)
    else:
        cred = credentials.Certificate(_load_credentials_dict(firebase_config))
    firebase_admin.initialize_app(cred)
    logger.info("Firebase Admin initialized")
    return True


class CsvStore:
    """Reads and writes the raw CSV documents"""

    def __init__(self, client=None, collection: str = 'csv_data'):
        self._client = client
        self.collection = collection

    @property
    def is_configured(self) -> bool:
        return self._client is not None or bool(firebase_admin._apps)

    @property
    def client(self):
        if self._client is None:
            if not self.is_configured:
                raise NetworkError("The document store is not configured.")
            self._client = firestore.client()
            logger.info("Firestore client initialized")
        return self._client

    def _document(self, doc_id: str):
        if doc_id not in DOCUMENT_IDS:
            raise ValueError(f"Unknown CSV document: {doc_id}")
        return self.client.collection(self.collection).document(doc_id)

    def _path(self, doc_id: str) -> str:
        return f"{self.collection}/{doc_id}"

    def load(self, doc_id: str) -> Optional[str]:
        """Raw CSV text of one document, or None when it does not exist"""
        doc_ref = self._document(doc_id)
        try:
            snapshot = doc_ref.get()
        except google_exceptions.PermissionDenied as e:
            logger.error(f"Permission denied reading {self._path(doc_id)}: {e}")
            raise StorePermissionError(SecurityRuleContext(path=self._path(doc_id), operation='get')) from e
        except google_exceptions.GoogleAPIError as e:
            logger.error(f"Error reading {self._path(doc_id)}: {e}")
            raise NetworkError(f"Failed to fetch '{doc_id}' from the document store.") from e

        if not snapshot.exists:
            logger.warning(f"Document {self._path(doc_id)} not found")
            return None
        data = snapshot.to_dict() or {}
        content = data.get('content')
        if not content:
            logger.warning(f"Document {self._path(doc_id)} has no content")
            return None
        return content

    def load_all(self) -> Dict[str, str]:
        documents = {}
        for doc_id in DOCUMENT_IDS:
            content = self.load(doc_id)
            if content is not None:
                documents[doc_id] = content
        return documents

    def save(self, doc_id: str, content: str, filename: str = 'upload.csv') -> None:
        """Write one document; a denied write raises StorePermissionError"""
        if not content:
            raise ValueError("File content is empty.")
        doc_ref = self._document(doc_id)
        try:
            doc_ref.set({'content': content})
        except google_exceptions.PermissionDenied as e:
            logger.error(f"Permission denied writing {self._path(doc_id)}: {e}")
            raise StorePermissionError(SecurityRuleContext(
                path=self._path(doc_id),
                operation='create',
                request_resource_data={'content': f"[CSV content of {filename}]"},
            )) from e
        except google_exceptions.GoogleAPIError as e:
            logger.error(f"Error writing {self._path(doc_id)}: {e}")
            raise NetworkError(f"Failed to save '{doc_id}' to the document store.") from e
        logger.info(f"Saved {len(content)} bytes of {filename} to {self._path(doc_id)}")
