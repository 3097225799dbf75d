import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from readify.blob_store import BlobStore
from readify.database import DatabaseManager, to_dict
from readify.errors import AccessDenied, AuthError, NotFound, ValidationError
from readify.session import Session
from readify.timing import marks_from_dicts, marks_to_dicts

logger = logging.getLogger(__name__)

# Fields a client may set on save
UPDATABLE_FIELDS = ("fileName", "pdfUrl", "audioUrl", "speechMarks", "zoomLevel", "currentPage", "totalPages")


def doc_key(doc_id: str) -> str:
    return f"doc:{doc_id}"


def user_docs_key(user_id: str) -> str:
    return f"user:{user_id}:docs"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def require_session(session: Optional[Session]) -> Session:
    if session is None or not session.user_id:
        raise AuthError("Authentication required.")
    return session


def _clean_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    out = {k: data[k] for k in UPDATABLE_FIELDS if k in data}
    if "zoomLevel" in out and out["zoomLevel"] is not None:
        try:
            out["zoomLevel"] = float(out["zoomLevel"])
        except (TypeError, ValueError):
            raise ValidationError("zoomLevel must be a number.")
        if out["zoomLevel"] <= 0:
            raise ValidationError("zoomLevel must be positive.")
    for k in ("currentPage", "totalPages"):
        if k in out and out[k] is not None:
            try:
                out[k] = int(out[k])
            except (TypeError, ValueError):
                raise ValidationError(f"{k} must be an integer.")
    if "speechMarks" in out and out["speechMarks"] is not None:
        try:
            out["speechMarks"] = marks_to_dicts(marks_from_dicts(out["speechMarks"]))
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid speechMarks: {e}")
    return out


class DocumentStore:
    """
    Per-user document records in the key-value store.

    doc:<id>          -> document record
    user:<id>:docs    -> document ids, newest first
    """

    def __init__(self, db: DatabaseManager, blobs: BlobStore):
        self.db = db
        self.blobs = blobs

    def _load(self, doc_id: str) -> Optional[Dict[str, Any]]:
        return to_dict(self.db.get(doc_key(doc_id)))

    def _foreign_blob(self, owner_id: str, url: Optional[str]) -> bool:
        """True for a URL of this blob store outside the owner's `<userId>/` folder."""
        pathname = self.blobs.pathname_from_url(url or "")
        if pathname is None:
            return False
        parts = pathname.replace("\\", "/").split("/")
        return parts[0] != owner_id or ".." in parts

    def _check_blob_urls(self, owner_id: str, fields: Dict[str, Any]):
        for k in ("pdfUrl", "audioUrl"):
            if fields.get(k) and self._foreign_blob(owner_id, fields[k]):
                logger.warning(f"[DOCS] rejected {k} outside {owner_id}/: {fields[k]}")
                raise AccessDenied(f"{k} must point to a file you uploaded.")

    def _check_access(self, session: Session, doc: Dict[str, Any], action: str):
        if not session.is_admin and doc.get("userId") != session.user_id:
            logger.warning(f"[DOCS] {action} denied: user={session.user_id} doc={doc.get('id')}")
            raise AccessDenied(f"You do not have permission to {action} this document.")

    def save_document(self, session: Optional[Session], data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Creates a document when `id` is absent, otherwise merges the given
        fields into the stored record. Omitted fields keep their values.
        """
        session = require_session(session)
        fields = _clean_fields(data or {})
        doc_id = (data or {}).get("id")

        if doc_id:
            existing = self._load(doc_id)
            if existing is None:
                raise NotFound("Document not found.")
            self._check_access(session, existing, "modify")
            self._check_blob_urls(existing.get("userId"), fields)
            updated = {**existing, **fields, "id": doc_id}
            self.db.set(doc_key(doc_id), updated)
            logger.info(f"[DOCS] updated {doc_id} ({', '.join(sorted(fields)) or 'no fields'})")
            return updated

        if not fields.get("fileName") or not fields.get("pdfUrl"):
            raise ValidationError("fileName and pdfUrl are required.")
        self._check_blob_urls(session.user_id, fields)

        doc_id = str(uuid.uuid4())
        new_doc = {
            "id": doc_id,
            "userId": session.user_id,
            "fileName": fields["fileName"],
            "pdfUrl": fields["pdfUrl"],
            "audioUrl": fields.get("audioUrl") or None,
            "speechMarks": fields.get("speechMarks") or None,
            "zoomLevel": fields.get("zoomLevel") or 1.0,
            "currentPage": fields.get("currentPage") or 1,
            "totalPages": fields.get("totalPages"),
            "createdAt": utc_now_iso(),
        }
        with self.db.pipeline() as p:
            p.set(doc_key(doc_id), new_doc)
            p.lpush(user_docs_key(session.user_id), doc_id)
        logger.info(f"[DOCS] created {doc_id} for user={session.user_id}")
        return new_doc

    def get_document(self, session: Optional[Session], doc_id: str) -> Dict[str, Any]:
        session = require_session(session)
        doc = self._load(doc_id)
        if doc is None:
            raise NotFound("Document not found.")
        self._check_access(session, doc, "view")
        return doc

    def list_documents(self, session: Optional[Session]) -> List[Dict[str, Any]]:
        if session is None or not session.user_id:
            return []
        doc_ids = [d for d in self.db.lrange(user_docs_key(session.user_id), 0, -1) if d]
        if not doc_ids:
            return []
        docs = [to_dict(d) for d in self.db.mget(*[doc_key(i) for i in doc_ids])]
        docs = [d for d in docs if d is not None]
        return sorted(docs, key=lambda d: d.get("createdAt") or "", reverse=True)

    def delete_document(self, session: Optional[Session], doc_id: str) -> Dict[str, Any]:
        session = require_session(session)
        doc = self._load(doc_id)
        if doc is None:
            return {"success": True, "message": "Document already deleted."}
        self._check_access(session, doc, "delete")

        urls = [doc.get("pdfUrl")]
        if doc.get("audioUrl"):
            urls.append(doc["audioUrl"])
        self.blobs.delete([u for u in urls if u and not self._foreign_blob(doc["userId"], u)])

        with self.db.pipeline() as p:
            p.delete(doc_key(doc_id))
            p.lrem(user_docs_key(doc["userId"]), 1, doc_id)
        logger.info(f"[DOCS] deleted {doc_id}")
        return {"success": True}

    # --- Admin ---

    def list_all_documents(self, session: Optional[Session]) -> List[Dict[str, Any]]:
        session = require_session(session)
        if not session.is_admin:
            raise AccessDenied("Unauthorized: Admin access required.")
        keys = self.db.keys("doc:*")
        if not keys:
            return []
        docs = [d for d in (to_dict(r) for r in self.db.mget(*keys)) if d is not None]
        return sorted(docs, key=lambda d: d.get("createdAt") or "", reverse=True)

    def delete_user_documents(self, user_id: str, pipeline=None) -> List[str]:
        """
        Removes every document of a user, their blobs and the index.
        Returns the deleted ids. Writes go to `pipeline` when one is given.
        """
        doc_ids = [d for d in self.db.lrange(user_docs_key(user_id), 0, -1) if d]
        docs = [to_dict(r) for r in self.db.mget(*[doc_key(i) for i in doc_ids])] if doc_ids else []

        urls = []
        for d in docs:
            if d is None:
                continue
            urls.append(d.get("pdfUrl"))
            urls.append(d.get("audioUrl"))
        self.blobs.delete([u for u in urls if u and not self._foreign_blob(user_id, u)])

        keys = [doc_key(i) for i in doc_ids] + [user_docs_key(user_id)]
        if pipeline is not None:
            pipeline.delete(*keys)
        else:
            self.db.delete(*keys)
        return doc_ids
