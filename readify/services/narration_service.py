import logging
from typing import Any, Dict, Optional

from readify import pdf_processor
from readify.audio_assembly import WAV, merge_fragments
from readify.blob_store import BlobStore
from readify.errors import ProviderError, ReadifyError, ValidationError
from readify.services.document_store import DocumentStore
from readify.services.tts_service import TTSService
from readify.session import Session
from readify.timing import Highlight, find_highlight, marks_from_dicts, marks_to_dicts

logger = logging.getLogger(__name__)


class NarrationService:
    """
    Document narration: synthesize -> assemble -> upload -> persist.
    The document record is written last, so a failure in any earlier
    step leaves it as it was.
    """

    def __init__(self, tts: TTSService, documents: DocumentStore, blobs: BlobStore):
        self.tts = tts
        self.documents = documents
        self.blobs = blobs

    def document_text(self, session: Optional[Session], doc_id: str) -> Dict[str, Any]:
        doc = self.documents.get_document(session, doc_id)
        data = self.blobs.read(doc["pdfUrl"])
        return {"id": doc_id, **pdf_processor.extract_text(data)}

    def narrate_document(self, session: Optional[Session], doc_id: str, voice: str,
                         speaking_rate: Optional[float] = 1.0, text: Optional[str] = None) -> Dict[str, Any]:
        doc = self.documents.get_document(session, doc_id)
        if text is None:
            text = self.document_text(session, doc_id)["text"]
        if not (text or "").strip():
            raise ValidationError("Document has no readable text.")

        logger.info(f"[NARRATION] doc={doc_id} voice={voice} chars={len(text)}")
        merged = merge_fragments(self.tts.synthesize(text, voice, speaking_rate, with_timings=True))
        if not merged.audio:
            raise ProviderError("Provider returned empty audio.")

        ext = "wav" if merged.mime_type == WAV else "mp3"
        blob = self.blobs.put(
            f"{doc['userId']}/{doc_id}-narration.{ext}",
            merged.audio,
            content_type=merged.mime_type,
            add_random_suffix=True,
        )

        try:
            saved = self.documents.save_document(session, {
                "id": doc_id,
                "audioUrl": blob["url"],
                "speechMarks": marks_to_dicts(merged.marks),
            })
        except ReadifyError:
            self.blobs.delete([blob["url"]])
            raise

        old_audio = doc.get("audioUrl")
        if old_audio and old_audio != blob["url"]:
            self.blobs.delete([old_audio])

        return {
            "document": saved,
            "audioUrl": blob["url"],
            "mimeType": merged.mime_type,
            "durationMs": merged.duration_ms,
            "speechMarks": saved.get("speechMarks") or [],
        }

    def highlight_at(self, session: Optional[Session], doc_id: str, current_ms: float) -> Optional[Highlight]:
        doc = self.documents.get_document(session, doc_id)
        return find_highlight(current_ms, marks_from_dicts(doc.get("speechMarks")))
