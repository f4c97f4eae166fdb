import threading

import pytest

from skybridge.runloop import RunLoop


def test_tasks_run_in_order_with_args():
    results = []
    loop = RunLoop()
    loop.start()
    for i in range(5):
        loop.run(results.append, i)
    loop.stop()
    assert results == [0, 1, 2, 3, 4]


def test_tasks_queued_before_start_run_after():
    results = []
    loop = RunLoop()
    loop.run(results.append, "a")
    assert results == []
    loop.start()
    loop.stop()
    assert results == ["a"]


def test_failing_task_does_not_stop_loop():
    results = []

    def boom():
        raise RuntimeError("fail")

    with RunLoop() as loop:
        loop.run(boom)
        loop.run(results.append, "after")
    assert results == ["after"]


def test_tasks_run_on_worker_thread():
    seen = []
    done = threading.Event()

    def record():
        seen.append(threading.current_thread().name)
        done.set()

    loop = RunLoop()
    loop.start()
    assert loop.running
    loop.run(record)
    assert done.wait(5)
    loop.stop()
    assert not loop.running
    assert seen == ["runloop"]


def test_stop_and_restart():
    results = []
    loop = RunLoop()
    loop.start()
    assert loop.running
    loop.stop()
    assert not loop.running
    loop.start()
    loop.run(results.append, 1)
    loop.stop()
    assert results == [1]


def test_run_rejects_non_callable():
    loop = RunLoop()
    with pytest.raises(TypeError):
        loop.run(42)


def test_multiple_args_passed():
    results = []
    with RunLoop() as loop:
        loop.run(lambda a, b: results.append(a + b), 2, 3)
    assert results == [5]