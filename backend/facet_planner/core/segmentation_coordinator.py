"""
Facet Segmentation Coordinator.

Handles:
- Building the masked raster for a polygon
- Dispatching it to an isolated segmentation process over a pipe
- Timeout enforcement (the process is terminated) and error propagation
- Handing the response to the facet reconciler
"""
import asyncio
import multiprocessing
import time
from typing import Callable, Dict, List, Optional, Sequence

import logging

from ..config import SegmentationConfig
from ..models.diagnostics import Diagnostic
from ..models.terrain import ElevationTile, FacetResult, SegmentationResponse, StitchedRaster
from .dem_stitcher import DEMStitcher
from .errors import SegmentationFailureError, SegmentationTimeoutError
from .facet_reconciler import FacetReconciler
from .polygon_ops import validate_ring
from .segmentation_engine import LambdaSpec, run_segmentation_worker

logger = logging.getLogger(__name__)

# Extra seconds the pipe reader may outlive the timeout before giving up on its own
READER_GRACE_S = 5.0


class SegmentationCoordinator:
    """Run one planar segmentation per call in its own process."""

    def __init__(
        self,
        timeout_s: Optional[float] = None,
        worker_target: Callable = run_segmentation_worker,
        start_method: str = "spawn"
    ):
        """
        Initialize coordinator.

        Args:
            timeout_s: Seconds to wait for the segmentation process
                (defaults to SegmentationConfig.TIMEOUT_S)
            worker_target: Process entry point taking the child pipe end;
                must be importable by name for the spawn start method
            start_method: multiprocessing start method
        """
        self.timeout_s = SegmentationConfig.TIMEOUT_S if timeout_s is None else timeout_s
        self.worker_target = worker_target
        self.context = multiprocessing.get_context(start_method)

    async def segment(
        self,
        polygon: Sequence[Sequence[float]],
        tiles: Sequence[ElevationTile],
        lam: LambdaSpec = 'auto',
        warnings: Optional[List[Diagnostic]] = None
    ) -> List[FacetResult]:
        """
        Segment the terrain inside a polygon into clipped planar facets.

        Args:
            polygon: Ring of (lng, lat)
            tiles: Same-zoom elevation tiles covering the polygon
            lam: Lambda control: a number, a list of numbers or 'auto'
            warnings: Optional list that receives per-facet diagnostics

        Returns:
            List of FacetResult (possibly empty)

        Raises:
            DegenerateGeometryError: Polygon has fewer than 3 distinct vertices
            InvalidTileSetError: No tiles or mixed zoom/size
            SegmentationTimeoutError: No response within the timeout
            SegmentationFailureError: The segmentation process reported an error
        """
        ring = validate_ring(polygon)
        raster = DEMStitcher.stitch(ring, tiles)

        response = await self.dispatch(raster, lam)

        return FacetReconciler.reconcile(response, raster, ring, warnings)

    async def dispatch(self, raster: StitchedRaster, lam: LambdaSpec = 'auto') -> SegmentationResponse:
        """
        Send a raster to a fresh segmentation process and await its single reply.

        The parent's raster is made read-only at handoff; the process owns
        the only writable copy.

        Args:
            raster: Masked elevation raster
            lam: Lambda control

        Returns:
            SegmentationResponse from the process
        """
        request = {
            'width': raster.width,
            'height': raster.height,
            'meta': raster.meta(),
            'lam': lam if isinstance(lam, (str, int, float)) else list(lam),
            'return_labels': True,
        }
        payload = raster.elevations.astype('float32', copy=False).tobytes()
        raster.elevations.setflags(write=False)

        parent_conn, child_conn = self.context.Pipe()
        process = self.context.Process(
            target=self.worker_target,
            args=(child_conn,),
            daemon=True
        )

        start = time.monotonic()
        process.start()
        child_conn.close()
        logger.info(f"Segmentation process {process.pid} started (timeout {self.timeout_s:.1f}s)")

        loop = asyncio.get_running_loop()
        try:
            message = await asyncio.wait_for(
                loop.run_in_executor(None, self._exchange, parent_conn, request, payload,
                                     self.timeout_s + READER_GRACE_S),
                timeout=self.timeout_s
            )
        except asyncio.TimeoutError:
            elapsed = time.monotonic() - start
            logger.warning(f"Segmentation process {process.pid} timed out after {elapsed:.1f}s")
            self._stop(process, graceful=False)
            parent_conn.close()
            raise SegmentationTimeoutError(
                f"Segmentation did not respond within {self.timeout_s:g} s"
            )
        except (EOFError, OSError) as e:
            self._stop(process, graceful=False)
            parent_conn.close()
            raise SegmentationFailureError(
                f"Segmentation process exited without a response "
                f"(exit code {process.exitcode}): {type(e).__name__}"
            )

        self._stop(process, graceful=True)
        parent_conn.close()

        if message is None:
            raise SegmentationTimeoutError(
                f"Segmentation did not respond within {self.timeout_s:g} s"
            )
        if 'error' in message:
            logger.warning(f"Segmentation process reported an error: {message['error']}")
            raise SegmentationFailureError(message['error'])

        response = message['result']
        logger.info(
            f"Segmentation finished in {time.monotonic() - start:.1f}s: "
            f"{len(response.planes)} planes, {len(response.seams)} seams"
        )
        return response

    @staticmethod
    def _exchange(conn, request: Dict, payload: bytes, poll_s: float) -> Optional[Dict]:
        """Blocking request/response round trip, run off the event loop."""
        conn.send(request)
        conn.send_bytes(payload)
        if not conn.poll(poll_s):
            return None
        return conn.recv()

    @staticmethod
    def _stop(process, graceful: bool) -> None:
        """Join a finished process or terminate a running one."""
        if graceful:
            process.join(timeout=2.0)
        if process.is_alive():
            logger.debug(f"Terminating segmentation process {process.pid}")
            process.terminate()
            process.join(timeout=2.0)
            if process.is_alive():
                process.kill()
                process.join()
