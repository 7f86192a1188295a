"""Executor: sends one chunk to one worker and returns its mini-tree.

Each executor owns exactly one WorkerHandle for the duration of a run. It
performs a single ``POST /`` round trip with a bounded timeout and no
retries, and watches a shared cancellation event so a sibling's failure
aborts the in-flight request immediately.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Sequence

import httpx
from pydantic import ValidationError

from merkle_aggregation.exceptions import (
    MalformedResponseError,
    RunCancelledError,
    WorkerRejectedError,
    WorkerUnreachableError,
)
from merkle_aggregation.tree import tree_depth
from merkle_aggregation.wire import WireMiniTree, encode_entries

if TYPE_CHECKING:
    from merkle_aggregation.models import Entry, MiniTree, WorkerHandle

logger = logging.getLogger(__name__)

_BODY_PREVIEW_CHARS = 500


class Executor:
    """Pairs one worker handle with one chunk of entries.

    Usage::

        async with httpx.AsyncClient() as client:
            executor = Executor(handle, client, chunk_index=0, timeout=30.0)
            tree = await executor.run(entries, cancel_event)
    """

    def __init__(
        self,
        handle: WorkerHandle,
        client: httpx.AsyncClient,
        *,
        chunk_index: int = 0,
        timeout: float = 60.0,
    ) -> None:
        """Initialize the executor.

        Args:
            handle: Worker this executor talks to. Not shared with any
                other executor.
            client: Shared async HTTP client (connection pool only; the
                executor never mutates it).
            chunk_index: Position of this executor's chunk, used in errors.
            timeout: Request timeout in seconds.
        """
        self._handle = handle
        self._client = client
        self._chunk_index = chunk_index
        self._timeout = timeout

    @property
    def handle(self) -> WorkerHandle:
        return self._handle

    @property
    def chunk_index(self) -> int:
        return self._chunk_index

    async def run(self, chunk: Sequence[Entry], cancel: asyncio.Event) -> MiniTree:
        """Send the chunk to the worker and return the parsed mini-tree.

        Args:
            chunk: Entries of this executor's chunk, in order.
            cancel: Shared cancellation signal. Once set, the in-flight
                request is aborted without waiting for a response.

        Returns:
            MiniTree carrying the worker's result and the chunk entries.

        Raises:
            RunCancelledError: If ``cancel`` fired first.
            WorkerUnreachableError: On connection failure or timeout.
            WorkerRejectedError: On a non-2xx response.
            MalformedResponseError: On a 2xx response with an invalid body.
        """
        if cancel.is_set():
            raise self._cancelled("cancelled before the request was sent")

        request = asyncio.ensure_future(self._request(chunk))
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {request, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            request.cancel()
            waiter.cancel()
            raise

        if request in done:
            waiter.cancel()
            return request.result()

        request.cancel()
        try:
            await request
        except asyncio.CancelledError:
            pass
        except Exception:
            # The request finished with its own error while being cancelled;
            # cancellation takes precedence.
            logger.debug("Chunk %d: error during abort", self._chunk_index, exc_info=True)
        raise self._cancelled("in-flight request aborted")

    async def _request(self, chunk: Sequence[Entry]) -> MiniTree:
        """Execute the single round trip (no retry)."""
        address = self._handle.address
        logger.debug(
            "Chunk %d: sending %d entries to %s", self._chunk_index, len(chunk), address
        )
        try:
            # httpx applies the timeout per phase; wait_for bounds the whole
            # round trip, including a response body that trickles in.
            response = await asyncio.wait_for(
                self._client.post(
                    address.rstrip("/") + "/",
                    json=encode_entries(chunk),
                    timeout=self._timeout,
                ),
                self._timeout,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            raise WorkerUnreachableError(
                f"request timed out after {self._timeout}s",
                chunk_index=self._chunk_index,
                address=address,
            ) from exc
        except httpx.TransportError as exc:
            raise WorkerUnreachableError(
                f"{type(exc).__name__}: {exc}",
                chunk_index=self._chunk_index,
                address=address,
            ) from exc

        if not response.is_success:
            raise WorkerRejectedError(
                f"worker returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=response.text[:_BODY_PREVIEW_CHARS],
                chunk_index=self._chunk_index,
                address=address,
            )

        try:
            wire_tree = WireMiniTree.model_validate_json(response.content)
        except ValidationError as exc:
            raise MalformedResponseError(
                f"unexpected response format: {exc.error_count()} validation error(s)",
                body=response.text[:_BODY_PREVIEW_CHARS],
                chunk_index=self._chunk_index,
                address=address,
            ) from exc

        tree = wire_tree.to_mini_tree(chunk)
        problem = _inconsistency(tree, chunk)
        if problem is not None:
            raise MalformedResponseError(
                f"inconsistent mini-tree: {problem}",
                body=response.text[:_BODY_PREVIEW_CHARS],
                chunk_index=self._chunk_index,
                address=address,
            )
        logger.debug(
            "Chunk %d: received depth-%d tree from %s",
            self._chunk_index,
            tree.depth,
            address,
        )
        return tree

    def _cancelled(self, reason: str) -> RunCancelledError:
        return RunCancelledError(
            reason, chunk_index=self._chunk_index, address=self._handle.address
        )


def _inconsistency(tree: MiniTree, chunk: Sequence[Entry]) -> str | None:
    """Describe how ``tree`` fails to be the sum tree of ``chunk``, or None."""
    width = len(chunk[0].balances) if chunk else 0
    if not tree.nodes or not tree.nodes[0]:
        return "no levels"
    if len(tree.nodes[0]) != len(chunk):
        return f"{len(tree.nodes[0])} leaves for {len(chunk)} entries"
    if len(tree.nodes[-1]) != 1 or tree.nodes[-1][0] != tree.root:
        return "root is not the single node of the top level"
    for level in tree.nodes:
        for node in level:
            if len(node.balances) != width:
                return (
                    f"node has {len(node.balances)} balance columns, "
                    f"expected {width}"
                )
    expected_depth = tree_depth(len(chunk))
    if tree.depth != expected_depth:
        return f"depth {tree.depth}, expected {expected_depth}"
    totals = tuple(sum(column) for column in zip(*(e.balances for e in chunk)))
    if tree.root.balances != totals:
        return f"root balances {tree.root.balances} differ from entry totals {totals}"
    return None
