"""
Cross-domain bridge: payload codec, channel, reconciler and origin-side unwrapper.
"""

from .channel import BridgeCall, BridgeChannel, InMemoryBridgeChannel
from .messages import (
    BridgePayload,
    DeliveryStatus,
    compute_message_id,
    decode_unwrap_data,
    encode_unwrap_data,
)
from .reconciler import BridgeReconciler, ReconcileResult
from .unwrapper import CustodialCredit, FallbackCustodian, L1Unwrapper

__all__ = [
    "BridgeCall",
    "BridgeChannel",
    "BridgePayload",
    "BridgeReconciler",
    "CustodialCredit",
    "DeliveryStatus",
    "FallbackCustodian",
    "InMemoryBridgeChannel",
    "L1Unwrapper",
    "ReconcileResult",
    "compute_message_id",
    "decode_unwrap_data",
    "encode_unwrap_data",
]
