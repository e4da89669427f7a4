"""
Broadcast publishing core.

Keep this module lightweight: only the error primitives are exported at
package import time. Import everything else from its module directly
(e.g. `from broadcast.publish import run_publish`).
"""

from .errors import BroadcastError, ErrorCode, AdapterError, ReconnectRequired

__all__ = ["BroadcastError", "ErrorCode", "AdapterError", "ReconnectRequired"]
