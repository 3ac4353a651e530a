"""Tests for msir_metapop.replicates — independent replicate farm.

Verifies that:
  1. Replicate k is the same trajectory however many workers run it
  2. Results come back in replicate order
  3. Invalid inputs fail before any replicate starts
"""

import numpy as np
import pytest

from msir_metapop.config import EpidemiologySection, LeapSection, with_parameters
from msir_metapop.errors import ConfigurationError
from msir_metapop.model import MetapopModel
from msir_metapop.replicates import ReplicateTask, run_replicate, run_replicates, run_tasks
from msir_metapop.rng import spawn_seeds
from msir_metapop.topology import build_topology


# ─── Helpers ──────────────────────────────────────────────────────────

def _small_model():
    params = with_parameters(EpidemiologySection(), carrying_capacity=[60.0, 40.0],
                             migration_rate=0.5)
    return MetapopModel(build_topology('circle', 2), params)


def _x0(model):
    return model.index.pack(S=[55, 40], I=[3, 0])


# ─── Generic task farm ────────────────────────────────────────────────

class TestRunTasks:
    def test_serial(self):
        assert run_tasks(abs, [-3, 1, -2]) == [3, 1, 2]

    def test_pool_keeps_task_order(self):
        tasks = list(range(-20, 0))
        assert run_tasks(abs, tasks, workers=3) == [abs(t) for t in tasks]

    def test_progress(self):
        calls = []
        run_tasks(abs, [1, 2, 3, 4], progress_callback=lambda d, t: calls.append((d, t)))
        assert calls == [(1, 4), (2, 4), (3, 4), (4, 4)]

    def test_progress_with_pool(self):
        calls = []
        run_tasks(abs, [1, 2, 3, 4], workers=2,
                  progress_callback=lambda d, t: calls.append((d, t)))
        assert calls == [(1, 4), (2, 4), (3, 4), (4, 4)]

    def test_empty(self):
        assert run_tasks(abs, [], workers=4) == []


# ─── Stochastic replicates ────────────────────────────────────────────

class TestRunReplicates:
    def test_count_and_order(self):
        model = _small_model()
        x0 = _x0(model)
        trajs = run_replicates(model, x0, 1.0, 4, seed=9)
        assert len(trajs) == 4
        for k, ss in enumerate(spawn_seeds(9, 4)):
            expected = model.simulate(x0, 1.0, rng=ss)
            np.testing.assert_array_equal(trajs[k].times, expected.times)
            np.testing.assert_array_equal(trajs[k].states, expected.states)

    def test_parallel_identical_to_serial(self):
        model = _small_model()
        x0 = _x0(model)
        serial = run_replicates(model, x0, 2.0, 6, seed=3, thin=0.1, workers=1)
        parallel = run_replicates(model, x0, 2.0, 6, seed=3, thin=0.1, workers=3)
        for a, b in zip(serial, parallel):
            np.testing.assert_array_equal(a.states, b.states)

    def test_replicates_differ(self):
        model = _small_model()
        trajs = run_replicates(model, _x0(model), 1.0, 3, seed=1)
        assert not all(np.array_equal(trajs[0].states, t.states) for t in trajs[1:])

    def test_prefix_stable(self):
        """Asking for more replicates leaves the first ones unchanged."""
        model = _small_model()
        few = run_replicates(model, _x0(model), 1.0, 2, seed=5, thin=0.1)
        many = run_replicates(model, _x0(model), 1.0, 5, seed=5, thin=0.1)
        for a, b in zip(few, many):
            np.testing.assert_array_equal(a.states, b.states)

    def test_thin_and_leap_forwarded(self):
        model = _small_model()
        trajs = run_replicates(model, _x0(model), 1.0, 2, seed=2, thin=0.25,
                               leap=LeapSection(epsilon=0.01))
        for tr in trajs:
            np.testing.assert_allclose(tr.times, [0, 0.25, 0.5, 0.75, 1.0])

    def test_progress_callback(self):
        model = _small_model()
        calls = []
        run_replicates(model, _x0(model), 0.5, 3, progress_callback=lambda d, t: calls.append(d))
        assert calls == [1, 2, 3]

    @pytest.mark.parametrize('kwargs, match', [
        ({'n_replicates': 0}, 'n_replicates'),
        ({'t_end': 0.0}, 't_end'),
        ({'thin': -1.0}, 'thin'),
        ({'leap': LeapSection(epsilon=2.0)}, 'epsilon'),
    ])
    def test_invalid_inputs(self, kwargs, match):
        model = _small_model()
        args = {'t_end': 1.0, 'n_replicates': 2}
        args.update(kwargs)
        with pytest.raises(ConfigurationError, match=match):
            run_replicates(model, _x0(model), **args)

    def test_invalid_state(self):
        model = _small_model()
        with pytest.raises(ConfigurationError):
            run_replicates(model, [1, 2, 3], 1.0, 2)


class TestRunReplicate:
    def test_single_task(self):
        model = _small_model()
        x0 = _x0(model)
        ss = spawn_seeds(4, 1)[0]
        task = ReplicateTask(model=model, x0=x0, t_end=0.5, seed=ss, thin=0.1)
        traj = run_replicate(task)
        assert len(traj) == 6
        np.testing.assert_array_equal(traj.states[0], x0)
