from __future__ import annotations

import os
import signal
import time

import pytest

from forkpool.errors import InvalidStateError
from forkpool.supervisor import Supervisor, Worker, shutdown


def _count_launches(finish_at: int):
    def task(worker: Worker) -> None:
        data = worker.get_saved_result() or {"count": 0}
        data["count"] += 1
        worker.save_result(data)
        if data["count"] >= finish_at:
            worker.mark_finished()
    return task


def test_run_without_task_is_refused() -> None:
    with pytest.raises(InvalidStateError, match="without a task"):
        Supervisor(2).run()


def test_builder_configuration() -> None:
    supervisor = (
        Supervisor()
        .set_worker_count(4)
        .set_poll_interval(75)
        .set_grace_period(2)
        .set_time_limit(0)
    )

    assert supervisor.get_worker_count() == 4
    assert supervisor.get_poll_interval() == 75
    assert supervisor._time_limit is None
    assert supervisor.is_launched() is False
    assert supervisor.get_workers() == {}


@pytest.mark.parametrize("worker_count", [1, 3])
def test_every_slot_reports_a_result(make_supervisor, worker_count: int) -> None:
    def task(worker: Worker) -> None:
        worker.save_result({"slot": worker.get_thread_number()})
        worker.mark_finished()

    results = make_supervisor(worker_count).set_task(task).run()

    assert list(results) == list(range(worker_count))
    assert results == {slot: {"slot": slot} for slot in range(worker_count)}


def test_unfinished_workers_are_respawned_until_done(make_supervisor) -> None:
    launches = {}

    def on_tick(supervisor: Supervisor) -> None:
        for slot, worker in supervisor.get_workers().items():
            launches[slot] = worker.get_launch_count()

    supervisor = make_supervisor(2).set_task(_count_launches(3)).set_tick_handler(on_tick)

    results = supervisor.run()

    assert results == {0: {"count": 3}, 1: {"count": 3}}
    assert launches == {0: 3, 1: 3}
    assert supervisor.get_workers() == {}
    assert supervisor.is_launched() is False


def test_payload_reaches_every_launch(make_supervisor) -> None:
    def task(worker: Worker) -> None:
        seen = worker.get_saved_result() or []
        seen.append(worker.get_payload())
        worker.save_result(seen)
        if len(seen) == 2:
            worker.mark_finished()

    results = make_supervisor(1).set_task(task).run({"url": "http://example.com"})

    assert results == {0: [{"url": "http://example.com"}] * 2}


def test_task_exception_triggers_respawn(make_supervisor) -> None:
    def task(worker: Worker) -> None:
        data = worker.get_saved_result() or {"count": 0}
        data["count"] += 1
        worker.save_result(data)
        if data["count"] == 1:
            raise RuntimeError("first launch fails")
        worker.mark_finished()

    assert make_supervisor(1).set_task(task).run() == {0: {"count": 2}}


def test_supervisor_is_reusable_but_not_reentrant(make_supervisor) -> None:
    errors = []

    def on_tick(supervisor: Supervisor) -> None:
        try:
            supervisor.run()
        except InvalidStateError as e:
            errors.append(str(e))

    supervisor = make_supervisor(1).set_task(_count_launches(2)).set_tick_handler(on_tick)

    assert supervisor.run() == {0: {"count": 2}}
    assert errors and all("launched twice" in e for e in errors)

    supervisor.set_tick_handler(lambda s: None)
    assert supervisor.run() == {0: {"count": 2}}


def test_runaway_worker_is_stopped_and_respawned(make_supervisor) -> None:
    def task(worker: Worker) -> None:
        data = worker.get_saved_result() or {"count": 0}
        data["count"] += 1
        worker.save_result(data)
        if data["count"] >= 2:
            worker.mark_finished()
            return
        time.sleep(30)

    supervisor = make_supervisor(1).set_task(task).set_time_limit(1).set_grace_period(1)

    started = time.monotonic()
    results = supervisor.run()

    assert results == {0: {"count": 2}}
    assert time.monotonic() - started < 10


def test_runaway_worker_ignoring_the_graceful_signal_is_killed(make_supervisor, monkeypatch) -> None:
    kills = []
    original_kill_worker = shutdown.kill_worker

    def recording_kill_worker(worker, reap_timeout=5):
        sent = original_kill_worker(worker, reap_timeout)
        kills.append((sent, worker.is_alive()))
        return sent

    monkeypatch.setattr(shutdown, "kill_worker", recording_kill_worker)

    def task(worker: Worker) -> None:
        data = worker.get_saved_result() or {"count": 0}
        data["count"] += 1
        worker.save_result(data)
        if data["count"] >= 2:
            worker.mark_finished()
            return
        signal.signal(signal.SIGUSR1, signal.SIG_IGN)
        time.sleep(30)

    supervisor = make_supervisor(1).set_task(task).set_time_limit(1).set_grace_period(1)

    assert supervisor.run() == {0: {"count": 2}}
    assert kills == [(True, False)]


def test_interrupted_handler_runs_before_respawn(make_supervisor) -> None:
    def task(worker: Worker) -> None:
        if worker.get_saved_result():
            worker.mark_finished()
            return
        time.sleep(30)

    def on_interrupted(worker: Worker, signum: int) -> None:
        worker.save_result({"interrupted_by": signum})

    supervisor = (
        make_supervisor(1)
        .set_task(task)
        .set_interrupted_handler(on_interrupted)
        .set_time_limit(1)
    )

    assert supervisor.run() == {0: {"interrupted_by": int(signal.SIGUSR1)}}


def test_force_stop_is_idempotent(make_supervisor, monkeypatch) -> None:
    interrupts = []
    original_interrupt_worker = shutdown.interrupt_worker

    def recording_interrupt_worker(worker):
        interrupts.append(worker.get_thread_number())
        return original_interrupt_worker(worker)

    monkeypatch.setattr(shutdown, "interrupt_worker", recording_interrupt_worker)
    stop_results = []

    def on_tick(supervisor: Supervisor) -> None:
        # Let the children install their signal handlers first.
        time.sleep(0.5)
        stop_results.append(supervisor.force_stop())
        stop_results.append(supervisor.force_stop())

    supervisor = make_supervisor(2).set_task(lambda w: time.sleep(30)).set_tick_handler(on_tick)

    results = supervisor.run()

    assert results == {0: None, 1: None}
    assert stop_results == [True, False]
    assert sorted(interrupts) == [0, 1]
    assert supervisor.is_stopping() is False


def test_force_stop_outside_run_does_nothing() -> None:
    supervisor = Supervisor(1).set_task(lambda w: None)

    assert supervisor.force_stop() is False
    assert supervisor.is_stopping() is False


def test_termination_signal_stops_pool_and_exits(make_supervisor) -> None:
    sent = []
    previous_handler = signal.getsignal(signal.SIGTERM)

    def on_tick(supervisor: Supervisor) -> None:
        if not sent:
            sent.append(True)
            os.kill(os.getpid(), signal.SIGTERM)

    supervisor = make_supervisor(2).set_task(lambda w: time.sleep(30)).set_tick_handler(on_tick)

    with pytest.raises(SystemExit) as exc_info:
        supervisor.run()

    assert exc_info.value.code == 128 + signal.SIGTERM
    assert supervisor.is_launched() is False
    assert supervisor.get_workers() == {}
    assert signal.getsignal(signal.SIGTERM) == previous_handler


def test_termination_signal_during_the_final_sweep_still_exits(make_supervisor, monkeypatch) -> None:
    sent = []
    original_is_task_finished = Worker.is_task_finished

    def is_task_finished_then_signal(worker: Worker) -> bool:
        finished = original_is_task_finished(worker)
        if finished and not sent:
            sent.append(True)
            os.kill(os.getpid(), signal.SIGTERM)
        return finished

    monkeypatch.setattr(Worker, "is_task_finished", is_task_finished_then_signal)

    supervisor = make_supervisor(1).set_task(lambda w: w.mark_finished())

    with pytest.raises(SystemExit) as exc_info:
        supervisor.run()

    assert sent == [True]
    assert exc_info.value.code == 128 + signal.SIGTERM
    assert supervisor.is_launched() is False


def test_termination_signal_pending_when_tick_stops_the_pool(make_supervisor) -> None:
    def on_tick(supervisor: Supervisor) -> None:
        os.kill(os.getpid(), signal.SIGTERM)
        supervisor.force_stop()

    supervisor = make_supervisor(1).set_task(lambda w: time.sleep(30)).set_tick_handler(on_tick)

    with pytest.raises(SystemExit) as exc_info:
        supervisor.run()

    assert exc_info.value.code == 128 + signal.SIGTERM
    assert supervisor.get_workers() == {}
