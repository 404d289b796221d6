"""
Tests for PortAllocator.

Covers: lowest-free allocation, exhaustion, release/reuse, double release,
concurrent acquisition.
"""

import threading

import pytest

from recorder.errors import PortExhaustedError, PortNotLeasedError
from recorder.ports import PortAllocator


class TestPortAllocation:

    def test_acquire_returns_lowest_free_port(self):
        allocator = PortAllocator(20000, 20004)
        assert [allocator.acquire() for _ in range(3)] == [20000, 20001, 20002]
        assert allocator.leased_count == 3
        assert allocator.free_count == 2

    def test_leased_port_not_returned_until_released(self):
        allocator = PortAllocator(20000, 20002)
        first = allocator.acquire()
        second = allocator.acquire()
        third = allocator.acquire()
        assert len({first, second, third}) == 3

        with pytest.raises(PortExhaustedError):
            allocator.acquire()

        allocator.release(second)
        assert not allocator.is_leased(second)
        assert allocator.acquire() == second

    def test_release_makes_lower_port_available_first(self):
        allocator = PortAllocator(20000, 20009)
        ports = [allocator.acquire() for _ in range(5)]
        allocator.release(ports[3])
        allocator.release(ports[1])
        assert allocator.acquire() == ports[1]
        assert allocator.acquire() == ports[3]
        assert allocator.acquire() == 20005

    def test_single_port_range(self):
        allocator = PortAllocator(30000, 30000)
        assert allocator.capacity == 1
        assert allocator.acquire() == 30000
        with pytest.raises(PortExhaustedError):
            allocator.acquire()


class TestPortRelease:

    def test_release_unleased_port_raises(self):
        allocator = PortAllocator(20000, 20009)
        with pytest.raises(PortNotLeasedError):
            allocator.release(20000)

    def test_double_release_raises(self):
        allocator = PortAllocator(20000, 20009)
        port = allocator.acquire()
        allocator.release(port)
        with pytest.raises(PortNotLeasedError):
            allocator.release(port)
        assert allocator.leased_count == 0


class TestPortRange:

    @pytest.mark.parametrize("min_port,max_port", [(0, 100), (100, 70000), (2000, 1000)])
    def test_invalid_range_rejected(self, min_port, max_port):
        with pytest.raises(ValueError):
            PortAllocator(min_port, max_port)


class TestPortConcurrency:

    @pytest.mark.timeout(5)
    def test_concurrent_acquire_never_duplicates(self):
        allocator = PortAllocator(20000, 20399)
        results = []
        results_lock = threading.Lock()

        def worker():
            leased = [allocator.acquire() for _ in range(50)]
            with results_lock:
                results.extend(leased)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 400
        assert len(set(results)) == 400
        assert allocator.free_count == 0
