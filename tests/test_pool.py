"""
Worker Pool Tests

Starts real spawned worker processes running the stub DriftEngine:
- Result ordering and worker identities
- Session state kept across rounds
- Error propagation from workers
- Idempotent shutdown

Run with: pytest tests/test_pool.py -v
"""

import numpy as np
import pytest

from chainrun.error_handling import ModelConstructionError, WorkerError
from chainrun.mcmc.inits import InitSource
from chainrun.mcmc.pool import WorkerPool, worker_pool
from chainrun.mcmc.session import ExtensionTask, InitialTask
from chainrun.test_models import DriftEngine, FailOnExtendEngine


def _initial_tasks(mus, engine=DriftEngine, data=None):
    data = data if data is not None else {'noise': 0.01}
    return [
        InitialTask(
            engine=engine, data=data, model=None,
            init_source=InitSource(values={'mu': mu}), params=('mu',),
            n_adapt=0, n_burn=5, n_draw=40, n_thin=1, seed=i,
        )
        for i, mu in enumerate(mus)
    ]


EXTENSION = ExtensionTask(params=('mu',), n_rburn=0, n_draw=40, n_thin=2)


class TestWorkerPool:
    """Test dispatch against live worker processes."""

    def test_results_in_worker_order(self):
        mus = [-3.0, 7.0, 1.0]
        with worker_pool(3) as pool:
            chains = pool.dispatch(_initial_tasks(mus))
        means = [float(np.mean(c.samples)) for c in chains]
        np.testing.assert_allclose(means, mus, atol=0.05)

    def test_identities_are_distinct_pids(self):
        with worker_pool(2) as pool:
            identities = pool.identities
        assert len(set(identities)) == 2
        assert all(isinstance(pid, int) for pid in identities)

    def test_sessions_persist_across_rounds(self):
        # shrink=0 moves every chain's centre to 0 after the first sample()
        with worker_pool(2) as pool:
            first = pool.dispatch(_initial_tasks([5.0, -5.0], data={'noise': 0.01, 'shrink': 0.0}))
            second = pool.dispatch([EXTENSION, EXTENSION])
        assert abs(float(np.mean(first[0].samples)) - 5.0) < 0.05
        assert abs(float(np.mean(second[0].samples))) < 0.05
        assert second[0].samples.shape == (20, 1)

    def test_task_count_mismatch(self):
        with worker_pool(2) as pool:
            with pytest.raises(ValueError, match="Expected 2 tasks"):
                pool.dispatch(_initial_tasks([0.0]))

    def test_model_construction_error_propagates(self):
        tasks = _initial_tasks([0.0, 0.0])
        bad = InitialTask(
            engine=DriftEngine, data={}, model=None,
            init_source=InitSource(values={'sigma': 1.0}), params=('mu',),
            n_adapt=0, n_burn=5, n_draw=10, n_thin=1,
        )
        with worker_pool(2) as pool:
            with pytest.raises(ModelConstructionError, match="Chain 1"):
                pool.dispatch([tasks[0], bad])

    def test_worker_failure_propagates(self):
        with worker_pool(2) as pool:
            pool.dispatch(_initial_tasks([0.0, 1.0], engine=FailOnExtendEngine))
            with pytest.raises(WorkerError, match="RuntimeError"):
                pool.dispatch([EXTENSION, EXTENSION])

    def test_extension_before_initial(self):
        with worker_pool(2) as pool:
            with pytest.raises(WorkerError, match="no session"):
                pool.dispatch([EXTENSION, EXTENSION])

    def test_close_idempotent(self):
        pool = WorkerPool(2).start()
        processes = list(pool._processes)
        pool.close()
        pool.close()
        assert all(not p.is_alive() for p in processes)
        with pytest.raises(WorkerError, match="closed"):
            pool.dispatch([EXTENSION, EXTENSION])

    def test_closed_on_error(self):
        with pytest.raises(RuntimeError):
            with worker_pool(2) as pool:
                processes = list(pool._processes)
                raise RuntimeError("controller failed")
        assert all(not p.is_alive() for p in processes)

    @pytest.mark.parametrize('use_context_manager', [True, False])
    def test_failed_start_stops_spawned_workers(self, monkeypatch, use_context_manager):
        """Workers already spawned are stopped when a later one never reports ready."""
        spawned = []
        original = WorkerPool._receive

        def fail_second(self, i):
            spawned[:] = self._processes
            if i == 1:
                raise WorkerError("Worker 1 exited unexpectedly (exitcode=1)")
            return original(self, i)

        monkeypatch.setattr(WorkerPool, '_receive', fail_second)

        with pytest.raises(WorkerError, match="Worker 1"):
            if use_context_manager:
                with WorkerPool(2):
                    pass
            else:
                with worker_pool(2):
                    pass
        assert len(spawned) == 2
        assert all(not p.is_alive() for p in spawned)

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            WorkerPool(0)
