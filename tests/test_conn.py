import threading

from chaosagent.conn import ClientHandler, Conn, ConnectionStartError


class Counting(ClientHandler):
    def __init__(self):
        self.started = 0

    def start(self):
        self.started += 1


class Failing(ClientHandler):
    def start(self):
        raise RuntimeError("no server")


def test_start_with_no_handlers_starts_nothing():
    assert Conn(on_failure=lambda e: None).start() == []


def test_all_registered_handlers_start():
    conn = Conn(on_failure=lambda e: None)
    first, second = Counting(), Counting()
    conn.register("a", first)
    conn.register("b", second)
    threads = conn.start()
    for thread in threads:
        thread.join(2)
    assert len(threads) == 2
    assert (first.started, second.started) == (1, 1)


def test_register_replaces_same_name():
    conn = Conn(on_failure=lambda e: None)
    old, new = Counting(), Counting()
    conn.register("a", old)
    conn.register("a", new)
    for thread in conn.start():
        thread.join(2)
    assert old.started == 0
    assert new.started == 1


def test_failure_is_reported():
    failures = []
    done = threading.Event()

    def on_failure(error):
        failures.append(error)
        done.set()

    conn = Conn(on_failure=on_failure)
    conn.register("registry", Failing())
    threads = conn.start()
    assert len(threads) == 1
    assert done.wait(2)
    assert len(failures) == 1
    assert isinstance(failures[0], ConnectionStartError)
    assert failures[0].name == "registry"
    assert isinstance(failures[0].__cause__, RuntimeError)