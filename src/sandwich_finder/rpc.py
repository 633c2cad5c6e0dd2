"""
Minimal Solana JSON-RPC client.

Only the handful of methods the pipeline needs. No retries: the caller
decides whether a failure is fatal (paging, leader schedule) or isolated
(single transaction).
"""

from __future__ import annotations

import http.client
import itertools
import json
import logging
import threading
import urllib.error
import urllib.request
from typing import Any, Dict, List, Optional, Protocol

from .errors import RpcError

logger = logging.getLogger(__name__)

SIGNATURES_PAGE_LIMIT = 1000


class RpcClient(Protocol):
    def get_signatures_for_address(
        self, address: str, before: Optional[str] = ..., limit: int = ...
    ) -> List[Dict[str, Any]]: ...

    def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]: ...

    def get_leader_schedule(self, slot: int) -> Optional[Dict[str, List[int]]]: ...

    def get_epoch_schedule(self) -> Dict[str, Any]: ...


class SolanaRpc:
    def __init__(self, url: str, timeout: float = 30.0) -> None:
        self.url = url
        self.timeout = timeout
        self._ids = itertools.count(1)
        self._id_lock = threading.Lock()

    def _next_id(self) -> int:
        with self._id_lock:
            return next(self._ids)

    def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": self._next_id(),
            "method": method,
            "params": params or [],
        }
        headers = {"Content-Type": "application/json"}
        req = urllib.request.Request(
            self.url, data=json.dumps(payload).encode("utf-8"), headers=headers
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                data = json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            raise RpcError(method, f"HTTP {exc.code} {exc.reason}") from exc
        except urllib.error.URLError as exc:
            raise RpcError(method, f"transport error: {exc.reason}") from exc
        except OSError as exc:
            # read timeouts and resets surface as plain OSError
            raise RpcError(method, f"transport error: {exc}") from exc
        except http.client.HTTPException as exc:
            raise RpcError(method, f"transport error: {exc!r}") from exc
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise RpcError(method, f"invalid JSON response: {exc}") from exc

        if not isinstance(data, dict):
            raise RpcError(method, "unexpected response shape")
        err = data.get("error")
        if err:
            if isinstance(err, dict):
                raise RpcError(method, f"{err.get('code')} {err.get('message')}")
            raise RpcError(method, str(err))
        return data.get("result")

    def get_signatures_for_address(
        self,
        address: str,
        before: Optional[str] = None,
        limit: int = SIGNATURES_PAGE_LIMIT,
    ) -> List[Dict[str, Any]]:
        """One page of (signature, slot, err) entries, newest first."""
        opts: Dict[str, Any] = {"limit": limit}
        if before:
            opts["before"] = before
        result = self.call("getSignaturesForAddress", [address, opts])
        return result or []

    def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        return self.call(
            "getTransaction",
            [signature, {"encoding": "json", "maxSupportedTransactionVersion": 0}],
        )

    def get_leader_schedule(self, slot: int) -> Optional[Dict[str, List[int]]]:
        """Identity -> epoch-relative slot indexes for the epoch holding ``slot``."""
        return self.call("getLeaderSchedule", [slot])

    def get_epoch_schedule(self) -> Dict[str, Any]:
        return self.call("getEpochSchedule")
