"""Recorder package: session tracking, persistence and delivery."""

from .attribution import AttributionResolver, ExtendedAttributionSource, load_extension
from .config import RecorderSettings, load_settings
from .identity import generate_session_id, load_or_create_installation_id
from .store import FileRecordStore, InMemoryRecordStore, RecordStore, create_store
from .tracker import SessionTracker
from .uploader import CollectorClient, UploadPipeline

__all__ = [
    "AttributionResolver",
    "CollectorClient",
    "create_store",
    "ExtendedAttributionSource",
    "FileRecordStore",
    "generate_session_id",
    "InMemoryRecordStore",
    "load_extension",
    "load_or_create_installation_id",
    "load_settings",
    "RecordStore",
    "RecorderSettings",
    "SessionTracker",
    "UploadPipeline",
]
