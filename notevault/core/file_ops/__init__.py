"""
File Operations Module
======================

Encrypted attachments and recipient-encrypted export archives.
"""

from notevault.core.file_ops.attachments import AttachmentManager
from notevault.core.file_ops.export import ExportManager, ExportTask
from notevault.core.file_ops.recipient import OpenedExport, open_export

__all__ = [
    "AttachmentManager",
    "ExportManager",
    "ExportTask",
    "OpenedExport",
    "open_export",
]
