from .schema import BlockKind, PAYLOAD_MODELS, validate_payload
from .store import add_block, list_blocks, remove_block, reorder_blocks, update_block

__all__ = [
    "BlockKind",
    "PAYLOAD_MODELS",
    "validate_payload",
    "add_block",
    "list_blocks",
    "remove_block",
    "reorder_blocks",
    "update_block",
]
