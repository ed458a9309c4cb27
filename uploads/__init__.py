from .broker import ConfirmResult, UploadGrant, cleanup_expired_sessions, confirm, presign
from .limits import INTENDED_USES, UploadLimits, get_upload_limits, load_upload_limits
from .storage import ObjectStore, WriteGrant, get_object_store

__all__ = [
    "ConfirmResult",
    "UploadGrant",
    "cleanup_expired_sessions",
    "confirm",
    "presign",
    "INTENDED_USES",
    "UploadLimits",
    "get_upload_limits",
    "load_upload_limits",
    "ObjectStore",
    "WriteGrant",
    "get_object_store",
]
