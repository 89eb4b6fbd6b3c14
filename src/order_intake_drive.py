"""
Order Intake – Google Drive Attachment Store
============================================

Uploads order receipt images to Google Drive and returns a shareable link
that is written into the order row.

Guardrails:
- Uses the same Google credentials as the Sheets store.
- Uploads to DRIVE_FOLDER_ID when set, otherwise to the account's root.
- Failures raise AttachmentUploadFailure; the batch coordinator aborts the
  whole submission on the first one.
- Uploads run on worker threads; each thread builds its own Drive client
  (the httplib2 transport under a discovery client must not be shared).
"""
from __future__ import annotations

import io
import threading
from typing import Optional

from googleapiclient.discovery import build
from googleapiclient.http import MediaIoBaseUpload

from order_intake_contract import AttachmentRef, AttachmentUploadFailure
from utils.logger import get_logger


def _fallback_view_link(file_id: str) -> str:
    return f"https://drive.google.com/file/d/{file_id}/view?usp=sharing"


class DriveAttachmentStore:
    """Drive v3 uploads + public read permission."""

    def __init__(self, service=None, service_factory=None):
        if service is None and service_factory is None:
            raise ValueError("DriveAttachmentStore needs a service or a service_factory")
        self._shared_service = service
        self._service_factory = service_factory
        self._local = threading.local()

    @classmethod
    def from_credentials(cls, credentials) -> "DriveAttachmentStore":
        def _build_service():
            return build("drive", "v3", credentials=credentials, cache_discovery=False)

        return cls(service_factory=_build_service)

    @property
    def service(self):
        """Drive client for the calling thread; built on first use in that thread."""
        if self._service_factory is None:
            return self._shared_service
        service = getattr(self._local, "service", None)
        if service is None:
            service = self._service_factory()
            self._local.service = service
        return service

    def upload(
        self,
        file_bytes: bytes,
        mime_type: str,
        suggested_name: str,
        destination_folder: Optional[str] = None,
    ) -> AttachmentRef:
        """
        Upload bytes as a new Drive file and make it readable by anyone with the link.

        Returns:
            AttachmentRef with the Drive file id and its web view link.

        Raises:
            AttachmentUploadFailure: If the upload or the permission change fails.
        """
        file_metadata = {"name": suggested_name}
        if destination_folder:
            file_metadata["parents"] = [destination_folder]

        media = MediaIoBaseUpload(io.BytesIO(file_bytes), mimetype=mime_type, resumable=False)

        service = self.service
        try:
            uploaded = service.files().create(
                body=file_metadata,
                media_body=media,
                fields="id, webViewLink",
            ).execute()

            file_id = uploaded.get("id")
            if not file_id:
                raise ValueError("Drive did not return a file id")

            self._share(service, file_id)
        except AttachmentUploadFailure:
            raise
        except Exception as e:
            raise AttachmentUploadFailure(f"Upload of '{suggested_name}' failed: {e}") from e

        web_link = uploaded.get("webViewLink") or _fallback_view_link(file_id)
        get_logger().log_upload(suggested_name, len(file_bytes) // 1024, web_link)
        return AttachmentRef(file_id=file_id, public_url=web_link)

    def set_public_readable(self, file_id: str) -> None:
        """Make the file viewable by anyone with the link."""
        self._share(self.service, file_id)

    @staticmethod
    def _share(service, file_id: str) -> None:
        try:
            service.permissions().create(
                fileId=file_id,
                body={"type": "anyone", "role": "reader"},
            ).execute()
        except Exception as e:
            raise AttachmentUploadFailure(f"Could not share Drive file {file_id}: {e}") from e
