
from concurrent.futures import Executor, Future, ThreadPoolExecutor
import enum
import queue
import typing as t

from loguru import logger

from game_source.core.asset_system import BaseFetcher, PayloadKind
from game_source.core.errors import FetchError, LoadError

if t.TYPE_CHECKING:
	from pyglet.clock import Clock


T = t.TypeVar("T")

Preprocessor = t.Callable[[t.Any], t.Any]
SuccessContinuation = t.Callable[[t.Any], t.Any]
FailureContinuation = t.Callable[[LoadError], t.Optional[bool]]
WarningContinuation = t.Callable[[LoadError], None]


class InlineExecutor(Executor):
	"""
	Executor running every submitted function immediately in the
	calling thread. Continuations are still only run once the
	``LoadingProcedure`` is ticked, so this keeps the load's semantics
	while making completion order deterministic.
	"""

	def __init__(self) -> None:
		self._shutdown = False

	def submit(self, fn, /, *args, **kwargs) -> Future:
		if self._shutdown:
			raise RuntimeError("cannot schedule new futures after shutdown")

		f = Future()
		f.set_running_or_notify_cancel()
		try:
			f.set_result(fn(*args, **kwargs))
		except BaseException as e:
			f.set_exception(e)
		return f

	def shutdown(self, wait: bool = True, *, cancel_futures: bool = False) -> None:
		self._shutdown = True


class _Event(enum.IntEnum):
	FETCHED = 0
	DEPENDENCY_DONE = 1
	FOLLOWED_DONE = 2


class _Task:
	__slots__ = ("url", "depends_on", "started", "future", "may_fail", "on_failure", "on_warning")

	def __init__(
		self,
		url: str,
		depends_on: t.Sequence[Future],
		may_fail: bool,
		on_failure: t.Optional[FailureContinuation],
		on_warning: t.Optional[WarningContinuation],
	) -> None:
		self.url = url
		self.depends_on = tuple(depends_on)
		self.started = False
		self.may_fail = may_fail
		self.on_failure = on_failure
		self.on_warning = on_warning

		self.future: Future = Future()
		"""
		Resolved with the return value of the task's continuation, or
		the exception that made it fail.
		"""


class FetchRequest(_Task):
	"""
	A pending fetch: what to fetch, in which form, and what to do with
	it once it arrives.
	"""

	__slots__ = ("kind", "preprocessor", "on_success", "force_reload", "job")

	def __init__(
		self,
		url: str,
		kind: PayloadKind,
		on_success: SuccessContinuation,
		preprocessor: t.Optional[Preprocessor] = None,
		on_failure: t.Optional[FailureContinuation] = None,
		on_warning: t.Optional[WarningContinuation] = None,
		force_reload: bool = False,
		may_fail: bool = False,
		depends_on: t.Sequence[Future] = (),
	) -> None:
		super().__init__(url, depends_on, may_fail, on_failure, on_warning)
		self.kind = kind
		self.preprocessor = preprocessor
		self.on_success = on_success
		self.force_reload = force_reload
		self.job: t.Optional[Future] = None

	def __repr__(self) -> str:
		return f"<{self.__class__.__name__} {self.kind.value}:{self.url}>"


class _DeferredTask(_Task):
	__slots__ = ("continuation",)

	def __init__(
		self,
		url: str,
		depends_on: t.Sequence[Future],
		continuation: t.Callable[..., t.Any],
		may_fail: bool,
	) -> None:
		super().__init__(url, depends_on, may_fail, None, None)
		self.continuation = continuation


class LoadingProcedureProgress:
	def __init__(self, req: int, lod: int, f: bool, llod: str) -> None:
		self.requested = req
		"""
		The amount of requests registered so far. Might be zero if the
		procedure has just started, don't blindly divide by it.
		"""

		self.loaded = lod
		"""
		The amount of requests that have completed or failed tolerably.
		"""

		self.requested_final = f
		"""
		Whether registration has been finalized. Even then, requests
		still running may register more.
		"""

		self.last_loaded = llod
		"""
		The url most recently loaded.
		"""


class LoadingProcedure:
	"""
	Runs a dynamic set of fetches and signals completion once all of
	them - including the ones registered by continuations of other
	fetches while running - are done.

	Fetches and their preprocessors run on the executor. Every
	continuation is relayed back and run in the thread calling
	``tick`` or ``wait``, one at a time, so nothing they touch needs
	locking.
	"""

	def __init__(
		self,
		fetcher: BaseFetcher,
		executor: t.Optional[Executor] = None,
		on_complete: t.Optional[t.Callable[[], None]] = None,
		on_error: t.Optional[t.Callable[[LoadError], None]] = None,
		on_warning: t.Optional[t.Callable[[str, t.Optional[str]], None]] = None,
		thread_count: int = 4,
	) -> None:
		self._fetcher = fetcher
		self._executor = (
			ThreadPoolExecutor(thread_count, "AssetLoader") if executor is None else executor
		)
		self._on_complete = on_complete
		self._on_error = on_error
		self._on_warning = on_warning

		self._relay: "queue.Queue[t.Tuple[_Event, _Task, t.Optional[Future]]]" = queue.Queue()
		"""
		Completions waiting to be handled on the loop thread. This is
		the only thing loader threads touch.
		"""

		self._waiting: t.List[_Task] = []
		"""
		Tasks registered whose predecessors are not all done yet.
		"""

		self._in_flight: t.Set[FetchRequest] = set()

		self._pending = 0
		"""
		Amount of registered tasks whose continuation has not yet
		completed. Incremented on registration, so a task registered
		by a running continuation is always counted before that
		continuation's own task is.
		"""

		self._requested = 0
		self._loaded = 0
		self._last_loaded = ""

		self._finalized = False
		self._completed = False
		self._cancelled = False
		self._error: t.Optional[LoadError] = None
		self._clock: t.Optional["Clock"] = None

	@property
	def error(self) -> t.Optional[LoadError]:
		return self._error

	@property
	def pending(self) -> int:
		return self._pending

	def schedule(
		self,
		url: str,
		kind: PayloadKind,
		on_success: SuccessContinuation,
		preprocessor: t.Optional[Preprocessor] = None,
		on_failure: t.Optional[FailureContinuation] = None,
		on_warning: t.Optional[WarningContinuation] = None,
		force_reload: bool = False,
		may_fail: bool = False,
		depends_on: t.Sequence[Future] = (),
	) -> Future:
		"""
		Registers a fetch of ``url`` and returns immediately.

		Args:
			url: What to fetch.
			kind: The form the fetcher should deliver the payload in.
			on_success: Run on the loop thread with the (preprocessed)
				payload. Its return value resolves the returned future.
				If it returns a future itself, the request stays pending
				until that one is done and then takes on its outcome.
			preprocessor: Run on the loader thread right after the
				fetch, transforming the payload before ``on_success``
				sees it.
			on_failure: Called with the error if the fetch fails. If it
				returns ``True``, the failure is tolerated. Without it,
				any failure not covered by ``may_fail`` aborts the load.
			on_warning: Called with the error when a failure is
				tolerated.
			force_reload: Passed on to the fetcher, bypassing any cache
				it may keep.
			may_fail: Marks a failure as tolerable upfront.
			depends_on: Futures that must all be resolved before the
				fetch is even started. If any of them fails, so does
				this request.
		"""
		request = FetchRequest(
			url, kind, on_success, preprocessor, on_failure, on_warning, force_reload,
			may_fail, depends_on,
		)
		self._register(request)
		return request.future

	def defer(
		self,
		depends_on: t.Sequence[Future],
		continuation: t.Callable[..., t.Any],
		url: str = "",
		may_fail: bool = False,
	) -> Future:
		"""
		Registers a continuation that is run with the results of all
		given futures once they are resolved. Counts as pending until
		then, so the load can't complete while it's waiting.
		"""
		task = _DeferredTask(url, depends_on, continuation, may_fail)
		self._register(task)
		return task.future

	def _register(self, task: _Task) -> None:
		if self._cancelled or self._error is not None:
			task.future.cancel()
			return

		if self._completed:
			raise RuntimeError(f"Loading procedure already completed, can't register {task.url}")

		self._pending += 1
		self._requested += 1

		if not task.depends_on:
			self._start(task)
			return

		self._waiting.append(task)
		for dep in task.depends_on:
			dep.add_done_callback(
				lambda _, task=task: self._relay.put((_Event.DEPENDENCY_DONE, task, None))
			)

	def _start(self, task: _Task) -> None:
		task.started = True
		if task in self._waiting:
			self._waiting.remove(task)

		for dep in task.depends_on:
			if dep.cancelled() or dep.exception() is not None:
				cause = None if dep.cancelled() else dep.exception()
				self._task_failed(
					task, LoadError(f"A document {task.url} depends on failed to load", task.url),
					cause,
				)
				return

		if isinstance(task, _DeferredTask):
			# Run on the next tick, never from inside the registering call
			job = Future()
			job.set_running_or_notify_cancel()
			job.set_result(None)
			self._relay.put((_Event.FETCHED, task, job))
			return

		assert isinstance(task, FetchRequest)
		try:
			job = self._executor.submit(self._run_fetch, task)
		except RuntimeError as e:
			self._task_failed(task, FetchError(f"Could not start fetch: {e}", task.url, e), e)
			return

		task.job = job
		self._in_flight.add(task)
		job.add_done_callback(
			lambda job, task=task: self._relay.put((_Event.FETCHED, task, job))
		)

	def _run_fetch(self, request: FetchRequest) -> t.Any:
		payload = self._fetcher.fetch(request.url, request.kind, request.force_reload)
		if request.preprocessor is not None:
			payload = request.preprocessor(payload)
		return payload

	def tick(self, dt: t.Optional[float] = None) -> None:
		"""
		Handles all completions that arrived since the last call,
		without blocking. Has the signature of a pyglet clock callback.
		"""
		while True:
			try:
				event = self._relay.get_nowait()
			except queue.Empty:
				break
			self._dispatch(*event)

	def wait(self) -> None:
		"""
		Blocks, handling completions as they arrive, until the load has
		completed, failed or was cancelled.
		Raises the load's error if it failed.
		"""
		if not self._finalized:
			raise RuntimeError("Call finalize() before waiting on a loading procedure")

		while not self.is_done():
			self._dispatch(*self._relay.get())

		if self._error is not None:
			raise self._error

	def attach_to_clock(self, clock: "Clock") -> None:
		"""
		Makes the given pyglet clock tick this procedure every frame
		until it's done.
		"""
		self._clock = clock
		clock.schedule(self._clock_tick)

	def _clock_tick(self, dt: float) -> None:
		self.tick(dt)
		if self.is_done() and self._clock is not None:
			self._clock.unschedule(self._clock_tick)
			self._clock = None

	def _dispatch(self, event: _Event, task: _Task, job: t.Optional[Future]) -> None:
		if self._cancelled or self._error is not None:
			return

		if event is _Event.DEPENDENCY_DONE:
			if not task.started and all(dep.done() for dep in task.depends_on):
				self._start(task)
			return

		assert job is not None
		if event is _Event.FOLLOWED_DONE:
			if job.cancelled():
				self._task_failed(task, LoadError("Followed load was cancelled", task.url), None)
			elif (exc := job.exception()) is not None:
				err = exc if isinstance(exc, LoadError) else LoadError(
					f"{exc.__class__.__name__}: {exc}", task.url
				)
				self._task_failed(task, err, exc)
			else:
				self._resolve(task, job.result())
			return

		if isinstance(task, FetchRequest):
			self._in_flight.discard(task)

		if job.cancelled():
			return

		if (exc := job.exception()) is not None:
			if isinstance(exc, LoadError):
				err = exc
			else:
				err = FetchError(f"{exc.__class__.__name__}: {exc}", task.url, exc)
			self._task_failed(task, err, exc)
			return

		try:
			if isinstance(task, FetchRequest):
				result = task.on_success(job.result())
			else:
				assert isinstance(task, _DeferredTask)
				result = task.continuation(*(dep.result() for dep in task.depends_on))
		except LoadError as e:
			if e.url is None:
				e.url = task.url
			task.future.set_exception(e)
			self._fail(e)
			return
		except Exception as e:
			err = LoadError(f"{e.__class__.__name__}: {e}", task.url)
			err.__cause__ = e
			task.future.set_exception(err)
			self._fail(err)
			return

		self._resolve(task, result)

	def _resolve(self, task: _Task, result: t.Any) -> None:
		if isinstance(result, Future):
			# The continuation handed over to another load; the task stays
			# pending and takes on that one's outcome.
			result.add_done_callback(
				lambda f, task=task: self._relay.put((_Event.FOLLOWED_DONE, task, f))
			)
			return

		task.future.set_result(result)
		self._task_completed(task)

	def _task_failed(self, task: _Task, err: LoadError, cause: t.Optional[BaseException]) -> None:
		if cause is not None and err.__cause__ is None and err is not cause:
			err.__cause__ = cause

		tolerated = task.may_fail
		if task.on_failure is not None:
			try:
				tolerated = bool(task.on_failure(err)) or tolerated
			except LoadError as e:
				err = e
				tolerated = False

		task.future.set_exception(err)
		if not tolerated:
			self._fail(err)
			return

		logger.debug(f"Tolerated failure: {err}")
		if task.on_warning is not None:
			task.on_warning(err)
		self._task_completed(task)

	def _task_completed(self, task: _Task) -> None:
		self._pending -= 1
		self._loaded += 1
		if task.url:
			self._last_loaded = task.url
		self._check_drained()

	def _check_drained(self) -> None:
		if (
			self._completed or not self._finalized or self._pending != 0 or
			self._cancelled or self._error is not None
		):
			return

		self._completed = True
		self._executor.shutdown(wait=False)
		logger.info(f"Loading procedure completed after {self._loaded} requests.")
		if self._on_complete is not None:
			try:
				self._on_complete()
			except LoadError as e:
				self._completed = False
				self._fail(e)
			except Exception as e:
				err = LoadError(f"{e.__class__.__name__}: {e}")
				err.__cause__ = e
				self._completed = False
				self._fail(err)

	def _fail(self, err: LoadError) -> None:
		if self._error is not None or self._cancelled:
			return

		self._error = err
		logger.error(f"Load failed: {err}")
		self._abort_in_flight()
		if self._on_error is not None:
			self._on_error(err)

	def _abort_in_flight(self) -> None:
		for request in self._in_flight:
			if request.job is not None:
				request.job.cancel()
		self._in_flight.clear()
		for task in self._waiting:
			task.future.cancel()
		self._waiting.clear()
		self._executor.shutdown(wait=False)

	def warn(self, message: str, url: t.Optional[str] = None) -> None:
		"""
		Surfaces a non-fatal problem to the diagnostic channel.
		"""
		logger.warning(message if url is None else f"{url}: {message}")
		if self._on_warning is not None:
			self._on_warning(message, url)

	def finalize(self) -> None:
		"""
		Marks registration by the procedure's owner as complete. The
		completion callback can't fire before this was called.
		"""
		self._finalized = True
		self._check_drained()

	def cancel(self) -> None:
		"""
		Cancels this procedure. Fetches not yet started are dropped,
		running ones are left to finish but nothing is done with their
		results anymore.
		"""
		if self._cancelled or self._completed:
			return

		self._cancelled = True
		self._abort_in_flight()

	def is_done(self) -> bool:
		return self._completed or self._cancelled or self._error is not None

	def is_successful(self) -> bool:
		return self._completed and self._error is None

	def get_progress(self) -> LoadingProcedureProgress:
		return LoadingProcedureProgress(
			self._requested, self._loaded, self._finalized, self._last_loaded
		)
