from concurrent.futures import Future
from typing import Any, Callable, Optional, Set

from PyQt6.QtCore import QObject, QRunnable, QThreadPool, pyqtSignal

from stack_app.engine import pipeline


class JobSignals(QObject):
    message = pyqtSignal(str)
    finished = pyqtSignal(object, object)  # job, result or Exception


class RasterJob(QRunnable):
    """One decode-then-transform call run on the thread pool.

    The outcome is delivered once, both through ``signals.finished`` and
    through ``future``. A job cannot be cancelled once decoding started.
    """

    def __init__(self, fn: Callable[..., Any], *args, description: str = "raster job", **kwargs):
        super().__init__()
        self.fn, self.args, self.kwargs = fn, args, kwargs
        self.description = description
        self.signals = JobSignals()
        self.future: Future = Future()
        self.setAutoDelete(False)

    def run(self):
        if not self.future.set_running_or_notify_cancel():
            return
        try:
            self.signals.message.emit(f"Running {self.description}...")
            result = self.fn(*self.args, **self.kwargs)
        except Exception as e:
            self.future.set_exception(e)
            self.signals.finished.emit(self, e)
            return
        self.future.set_result(result)
        self.signals.finished.emit(self, result)


class RasterJobController(QObject):
    job_started = pyqtSignal()
    job_finished = pyqtSignal(object)
    job_message = pyqtSignal(str)

    def __init__(self, parent=None, pool: Optional[QThreadPool] = None):
        super().__init__(parent)
        self.pool = pool or QThreadPool.globalInstance()
        self._jobs: Set[RasterJob] = set()

    def submit(self, fn: Callable[..., Any], *args, description: str = "raster job", **kwargs) -> RasterJob:
        job = RasterJob(fn, *args, description=description, **kwargs)
        job.signals.finished.connect(self._on_finished)
        job.signals.message.connect(self.job_message)
        self._jobs.add(job)
        self.job_started.emit()
        self.pool.start(job)
        return job

    def resample_image(self, source, calibration, recipe=None) -> RasterJob:
        return self.submit(pipeline.build_image_layer, source, calibration, recipe, description="resample")

    def crop_image(self, source, x, y, width, height) -> RasterJob:
        return self.submit(pipeline.crop_image, source, x, y, width, height, description="crop")

    def scale_image(self, source, ref_distance, user_distance, scale_y=1.0, scale_x=1.0) -> RasterJob:
        return self.submit(
            pipeline.scale_image_to_match_distance,
            source,
            ref_distance,
            user_distance,
            scale_y,
            scale_x,
            description="distance rescale",
        )

    def wait(self, msecs: int = -1) -> bool:
        return self.pool.waitForDone(msecs)

    def pending(self) -> int:
        return sum(1 for job in self._jobs if not job.future.done())

    def _on_finished(self, job: RasterJob, result):
        self._jobs.discard(job)
        self.job_finished.emit(result)
