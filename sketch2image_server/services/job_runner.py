"""Single-slot runner for sketch-to-image inference jobs."""

import logging
import threading
import traceback
import uuid
from concurrent.futures import ThreadPoolExecutor
from contextlib import nullcontext
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

import numpy as np
from PIL import Image

from ..exceptions import Busy, ModelFailure, ShapeMismatch
from ..utils import tensor_codec
from .model_backend import ModelResource, TensorFn

logger = logging.getLogger(__name__)

ModelCall = Union[TensorFn, ModelResource]
Dispatch = Callable[..., Any]


class RunnerState(Enum):
    """Job slot state."""
    IDLE = "idle"
    RUNNING = "running"


class JobStatus(Enum):
    """Inference job status."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def _direct(fn, *args):
    fn(*args)


@dataclass
class InferenceJob:
    """One input image bound to its pending result."""
    job_id: str
    image: Any
    status: JobStatus = JobStatus.PENDING
    output: Optional[Image.Image] = None
    error: Optional[BaseException] = None
    done: threading.Event = field(default_factory=threading.Event)

    def get_status(self) -> Dict[str, Any]:
        """Get job status as dictionary."""
        result = {"job_id": self.job_id, "status": self.status.value}
        if self.status == JobStatus.FAILED:
            result["error"] = str(self.error)
        return result


class InferenceJobRunner:
    """Runs at most one inference job at a time on a background thread.

    ``submit`` never blocks: it either hands the job to the worker and
    returns, or raises :class:`Busy` if a job is already running. The worker
    resizes, encodes, calls the model, decodes and then reports through the
    job's callbacks. Callbacks are passed to ``dispatch`` so they can be
    hopped back onto another context (e.g. ``loop.call_soon_threadsafe``);
    by default they run on the worker thread.

    There is no cancellation and no timeout: a model call that hangs keeps
    the slot occupied.
    """

    def __init__(
        self,
        width: int = tensor_codec.MODEL_INPUT_WIDTH,
        height: int = tensor_codec.MODEL_INPUT_HEIGHT,
        resize_input: bool = True,
        dispatch: Optional[Dispatch] = None
    ):
        self.width = width
        self.height = height
        self.resize_input = resize_input
        self._dispatch = dispatch or _direct
        self._lock = threading.Lock()
        self._current_job: Optional[InferenceJob] = None
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="sketch2image-worker")
        logger.info("InferenceJobRunner initialized for %dx%d input", width, height)

    @property
    def state(self) -> RunnerState:
        with self._lock:
            return RunnerState.RUNNING if self._current_job else RunnerState.IDLE

    @property
    def current_job(self) -> Optional[InferenceJob]:
        return self._current_job

    def is_busy(self) -> bool:
        return self.state == RunnerState.RUNNING

    def submit(
        self,
        image: Any,
        model_call: ModelCall,
        on_complete: Callable[[Image.Image], None],
        on_error: Callable[[BaseException], None],
        dispatch: Optional[Dispatch] = None
    ) -> InferenceJob:
        """Start an inference job in the background slot.

        Args:
            image: Input PIL image or (H, W, C) uint8 array
            model_call: Tensor -> Tensor callable, or a ModelResource that is
                acquired for the duration of the job
            on_complete: Called with the decoded output image
            on_error: Called with the error if any step fails
            dispatch: Overrides the runner's callback dispatcher for this job

        Returns:
            The accepted job

        Raises:
            Busy: If another job is still running
        """
        with self._lock:
            if self._current_job is not None:
                logger.warning("Rejecting submit: job %s is still running",
                               self._current_job.job_id)
                raise Busy(self._current_job.job_id)
            job = InferenceJob(job_id=str(uuid.uuid4())[:8], image=image)
            self._current_job = job

        try:
            self._executor.submit(self._run, job, model_call, on_complete,
                                  on_error, dispatch or self._dispatch)
        except RuntimeError:
            with self._lock:
                self._current_job = None
            raise

        logger.info("Submitted inference job %s", job.job_id)
        return job

    def _run(self, job, model_call, on_complete, on_error, dispatch) -> None:
        job.status = JobStatus.RUNNING
        logger.info("Running inference job %s", job.job_id)
        try:
            job.output = self._process(job, model_call)
            job.status = JobStatus.COMPLETED
            logger.info("Inference job %s completed", job.job_id)
        except Exception as e:
            job.error = e
            job.status = JobStatus.FAILED
            logger.error("Inference job %s failed: %s", job.job_id, e)

        # The slot is free before the result is delivered
        with self._lock:
            self._current_job = None
        job.image = None

        if job.status == JobStatus.COMPLETED:
            self._deliver(dispatch, on_complete, job.output, job.job_id)
        else:
            self._deliver(dispatch, on_error, job.error, job.job_id)
        job.done.set()

    def _process(self, job: InferenceJob, model_call: ModelCall) -> Image.Image:
        if isinstance(model_call, ModelResource):
            width, height = model_call.input_size
        else:
            width, height = self.width, self.height

        image = job.image
        if self.resize_input and tensor_codec.image_size(image) != (width, height):
            image = tensor_codec.resize_image(image, width, height)

        tensor = tensor_codec.encode(image, width, height)
        logger.debug("Job %s input tensor: %s", job.job_id,
                     tensor_codec.tensor_summary(tensor))

        if isinstance(model_call, ModelResource):
            scope = model_call.acquire()
        else:
            scope = nullcontext(model_call)

        with scope as call:
            try:
                output = call(tensor)
                if output is None:
                    raise ValueError("model returned no output")
                output = np.asarray(output, dtype=np.float32)
            except Exception as e:
                # Finished frames of the failed call still hold the model
                traceback.clear_frames(e.__traceback__)
                raise ModelFailure("Model call failed: %s" % e) from e
        del call

        logger.debug("Job %s output tensor: %s", job.job_id,
                     tensor_codec.tensor_summary(output))

        try:
            return tensor_codec.decode(output, width, height)
        except ShapeMismatch as e:
            raise ShapeMismatch("Model output: %s" % e,
                                expected=e.expected, actual=e.actual) from e

    def _deliver(self, dispatch, callback, value, job_id: str) -> None:
        def invoke():
            try:
                callback(value)
            except Exception as e:
                logger.exception("Callback for job %s raised: %s", job_id, e)

        try:
            dispatch(invoke)
        except Exception as e:
            logger.exception("Could not deliver result of job %s: %s", job_id, e)

    def get_status(self) -> Dict[str, Any]:
        """Runner status as dictionary."""
        job = self._current_job
        return {
            "state": self.state.value,
            "job_id": job.job_id if job else None,
        }

    def shutdown(self, wait: bool = False):
        """Shutdown the worker thread."""
        logger.info("Shutting down InferenceJobRunner")
        self._executor.shutdown(wait=wait)
