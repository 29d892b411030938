
from concurrent.futures import Future, ThreadPoolExecutor
import threading

import pytest

from game_source.core.asset_system import MemoryFetcher, PayloadKind
from game_source.core.errors import FetchError, LoadError
from game_source.core.loading_procedure import InlineExecutor, LoadingProcedure


class Recorder:
	def __init__(self) -> None:
		self.completed = 0
		self.errors = []
		self.warnings = []

	def procedure(self, fetcher, executor=None) -> LoadingProcedure:
		return LoadingProcedure(
			fetcher,
			InlineExecutor() if executor is None else executor,
			on_complete = self._complete,
			on_error = self.errors.append,
			on_warning = lambda message, url: self.warnings.append((message, url)),
		)

	def _complete(self) -> None:
		self.completed += 1


def test_completes_after_nested_registrations():
	fetcher = MemoryFetcher(
		{"a": "a", "b": "b", "c": "c", "d": "d"},
		delays = {"a": 0.05, "b": 0.01, "c": 0.03},
	)
	rec = Recorder()
	proc = rec.procedure(fetcher, ThreadPoolExecutor(4))
	loaded = []
	main_thread = threading.get_ident()

	def on_loaded(text):
		assert threading.get_ident() == main_thread
		loaded.append(text)
		if text == "a":
			proc.schedule("c", PayloadKind.TEXT, on_loaded)
		elif text == "c":
			proc.schedule("d", PayloadKind.TEXT, on_loaded)

	proc.schedule("a", PayloadKind.TEXT, on_loaded)
	proc.schedule("b", PayloadKind.TEXT, on_loaded)
	proc.finalize()
	proc.wait()

	assert sorted(loaded) == ["a", "b", "c", "d"]
	assert loaded.index("a") < loaded.index("c") < loaded.index("d")
	assert rec.completed == 1
	assert proc.is_successful()
	assert proc.pending == 0
	progress = proc.get_progress()
	assert (progress.requested, progress.loaded, progress.requested_final) == (4, 4, True)


def test_does_not_complete_before_finalize():
	rec = Recorder()
	proc = rec.procedure(MemoryFetcher({"a": "a"}))
	proc.schedule("a", PayloadKind.TEXT, lambda _: None)
	proc.tick()
	assert rec.completed == 0
	assert not proc.is_done()

	proc.finalize()
	assert rec.completed == 1
	assert proc.is_done()


def test_wait_requires_finalize():
	proc = Recorder().procedure(MemoryFetcher())
	with pytest.raises(RuntimeError):
		proc.wait()


def test_empty_procedure_completes_on_finalize():
	rec = Recorder()
	proc = rec.procedure(MemoryFetcher())
	proc.finalize()
	assert rec.completed == 1


def test_preprocessor_and_result_future():
	proc = Recorder().procedure(MemoryFetcher({"n": "20"}))
	future = proc.schedule("n", PayloadKind.TEXT, lambda n: n + 1, preprocessor=int)
	proc.finalize()
	proc.wait()
	assert future.result() == 21


def test_defer_receives_results_in_order():
	fetcher = MemoryFetcher({"a": "1", "b": "2"}, delays={"a": 0.02})
	proc = Recorder().procedure(fetcher, ThreadPoolExecutor(2))
	fa = proc.schedule("a", PayloadKind.JSON, lambda v: v)
	fb = proc.schedule("b", PayloadKind.JSON, lambda v: v)
	summed = proc.defer([fa, fb], lambda a, b: (a, b))
	proc.finalize()
	proc.wait()
	assert summed.result() == (1, 2)


def test_depends_on_delays_the_fetch():
	fetcher = MemoryFetcher({"a": "a", "b": "b"}, delays={"a": 0.02})
	proc = Recorder().procedure(fetcher, ThreadPoolExecutor(2))
	fa = proc.schedule("a", PayloadKind.TEXT, lambda v: v)
	proc.schedule("b", PayloadKind.TEXT, lambda v: v, depends_on=(fa,))
	proc.finalize()
	proc.wait()
	assert fetcher.requested == ["a", "b"]


def test_returned_future_is_followed():
	rec = Recorder()
	proc = rec.procedure(MemoryFetcher({"outer": "outer", "inner": "inner"}))

	def on_outer(_):
		return proc.schedule("inner", PayloadKind.TEXT, lambda v: v.upper())

	outer = proc.schedule("outer", PayloadKind.TEXT, on_outer)
	after = proc.defer([outer], lambda v: v + "!")
	proc.finalize()
	proc.wait()

	assert outer.result() == "INNER"
	assert after.result() == "INNER!"
	assert rec.completed == 1


def test_failure_aborts_the_load():
	rec = Recorder()
	proc = rec.procedure(MemoryFetcher({"b": "b"}))
	failed = proc.schedule("a", PayloadKind.TEXT, lambda v: v)
	dependent = proc.defer([failed], lambda v: v)
	proc.finalize()
	with pytest.raises(FetchError) as exc_info:
		proc.wait()

	assert exc_info.value.url == "a"
	assert rec.errors == [exc_info.value]
	assert rec.completed == 0
	assert proc.is_done() and not proc.is_successful()
	assert dependent.cancelled()


def test_continuation_errors_abort_the_load():
	rec = Recorder()
	proc = rec.procedure(MemoryFetcher({"a": "a"}))

	def explode(_):
		raise KeyError("missing")

	proc.schedule("a", PayloadKind.TEXT, explode)
	proc.finalize()
	with pytest.raises(LoadError, match="KeyError") as exc_info:
		proc.wait()
	assert exc_info.value.url == "a"
	assert isinstance(exc_info.value.__cause__, KeyError)


def test_tolerated_failures():
	rec = Recorder()
	proc = rec.procedure(MemoryFetcher({"b": "b"}))
	tolerated = []
	f1 = proc.schedule("a", PayloadKind.TEXT, lambda v: v, may_fail=True, on_warning=tolerated.append)
	f2 = proc.schedule("c", PayloadKind.TEXT, lambda v: v, on_failure=lambda e: True)
	proc.finalize()
	proc.wait()

	assert rec.completed == 1
	assert isinstance(f1.exception(), FetchError)
	assert isinstance(f2.exception(), FetchError)
	assert [e.url for e in tolerated] == ["a"]


def test_dependency_failure_fails_dependents():
	proc = Recorder().procedure(MemoryFetcher())
	bad = Future()
	bad.set_exception(ValueError("nope"))
	proc.defer([bad], lambda v: v, "x")
	proc.finalize()
	with pytest.raises(LoadError, match="depends on failed"):
		proc.wait()


def test_cancel():
	rec = Recorder()
	proc = rec.procedure(MemoryFetcher({"a": "a"}))
	future = proc.schedule("a", PayloadKind.TEXT, lambda v: v)
	proc.cancel()
	proc.finalize()
	proc.tick()

	assert proc.is_done()
	assert not proc.is_successful()
	assert rec.completed == 0
	assert not future.done() or future.cancelled()
	assert proc.schedule("b", PayloadKind.TEXT, lambda v: v).cancelled()


def test_warn_reaches_the_callback():
	rec = Recorder()
	proc = rec.procedure(MemoryFetcher())
	proc.warn("careful", "x.json")
	assert rec.warnings == [("careful", "x.json")]


def test_fetch_on_shut_down_executor_fails_the_load():
	executor = InlineExecutor()
	executor.shutdown()
	rec = Recorder()
	proc = rec.procedure(MemoryFetcher({"a": "a"}), executor)
	future = proc.schedule("a", PayloadKind.TEXT, lambda v: v)
	proc.finalize()

	with pytest.raises(FetchError, match="Could not start fetch"):
		proc.wait()
	assert isinstance(future.exception(), FetchError)
	assert rec.errors == [proc.error]
	assert rec.completed == 0


def test_completion_callback_errors_become_load_errors():
	errors = []

	def complete():
		raise ValueError("bad credits")

	proc = LoadingProcedure(
		MemoryFetcher({"a": "a"}), InlineExecutor(), on_complete=complete, on_error=errors.append,
	)
	proc.schedule("a", PayloadKind.TEXT, lambda v: v)
	proc.finalize()

	with pytest.raises(LoadError, match="ValueError: bad credits"):
		proc.wait()
	assert isinstance(proc.error.__cause__, ValueError)
	assert errors == [proc.error]
	assert not proc.is_successful()
