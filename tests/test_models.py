#!/usr/bin/env python
"""Tests for the fitter registry, group-level model and model store"""
import json
import os
import sys
import tempfile
import pytest
from pathlib import Path

import numpy as np
import pandas as pd

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))


def _group_frame(rng, n_per_group=40, effect=1.0, sd_a=0.5, sd_b=1.5):
    groups = np.repeat(['A', 'B'], n_per_group)
    is_b = groups == 'B'
    noise = rng.normal(size=len(groups)) * np.where(is_b, sd_b, sd_a)
    return pd.DataFrame({
        'intensity': 2.0 + effect * is_b + noise,
        'group': groups
    })


def _table_for(columns, value=0.5):
    return pd.DataFrame(
        [[value, 0.1, value - 0.2, value + 0.2] for _ in columns],
        index=pd.Index(list(columns), name='term'),
        columns=['estimate', 'std_error', 'lower', 'upper']
    )


class RecordingFitter:
    """Builds a regression fitter that records its inputs"""

    @staticmethod
    def create(fail=False):
        from ppa.exceptions import ConvergenceError
        from ppa.models.base import FitResult
        from ppa.models.registry import RegressionFitter

        class _Fitter(RegressionFitter):
            calls = []

            @property
            def name(self):
                return "recording"

            def fit(self, y, X, Z, confidence_level=0.95, max_iter=100, tol=1e-8):
                self.calls.append({'y': y, 'X': X, 'Z': Z, 'confidence_level': confidence_level})
                if fail:
                    raise ConvergenceError("stub did not converge")
                table = pd.concat([_table_for(X.columns), _table_for([f"sigma:{c}" for c in Z.columns])])
                return FitResult(coefficients=table, log_likelihood=-1.0, converged=True, n_obs=len(y))

        return _Fitter()


class TestRegistry:
    """Test fitter registry lookup"""

    def test_aliases(self):
        from ppa.models.registry import LocationScaleFitter, PoissonGLMFitter, get_fitter

        assert isinstance(get_fitter('ls'), LocationScaleFitter)
        assert isinstance(get_fitter(' Location_Scale '), LocationScaleFitter)
        assert isinstance(get_fitter('glm'), PoissonGLMFitter)

    def test_unknown_fitter(self):
        from ppa.models.registry import get_fitter

        with pytest.raises(ValueError) as excinfo:
            get_fitter('bayes')
        assert 'location_scale' in str(excinfo.value)

    def test_list_available_fitters(self):
        from ppa.models.registry import list_available_fitters

        assert list_available_fitters() == ['location_scale', 'ols', 'poisson_glm']


class TestDesign:
    """Test design matrix construction"""

    def test_treatment_coding(self):
        from ppa.models.design import build_design

        frame = pd.DataFrame({'dpi': ['0', '7', '21', '7'], 'age': [1.0, 2.0, 3.0, 4.0]})
        design = build_design(frame, ['dpi', 'age'])
        assert list(design.columns) == ['Intercept', 'dpi[T.21]', 'dpi[T.7]', 'age']
        assert design['dpi[T.7]'].tolist() == [0.0, 1.0, 0.0, 1.0]

    def test_declared_categories_order(self):
        from ppa.models.design import build_design

        frame = pd.DataFrame({'dpi': pd.Categorical(['7', '0'], categories=['0', '7', '21'])})
        design = build_design(frame, ['dpi'])
        # '21' has no observations and is dropped
        assert list(design.columns) == ['Intercept', 'dpi[T.7]']

    def test_intercept_only(self):
        from ppa.models.design import build_design

        design = build_design(pd.DataFrame({'y': [1.0, 2.0]}), [])
        assert list(design.columns) == ['Intercept']


class TestGroupModel:
    """Test the group-level location-scale model"""

    def test_interval_coverage(self):
        from ppa.models.group import fit_group_model

        rng = np.random.default_rng(11)
        covered_mean = 0
        covered_scale = 0
        for _ in range(20):
            frame = _group_frame(rng)
            model = fit_group_model(frame, 'intensity', ['group'], variance_covariates=['group'])
            lower, upper = model.interval('group[T.B]')
            covered_mean += lower <= 1.0 <= upper
            lower, upper = model.interval('sigma:group[T.B]')
            covered_scale += lower <= np.log(3.0) <= upper
        assert covered_mean >= 16
        assert covered_scale >= 16

    def test_group_difference_interval(self):
        from ppa.models.group import fit_group_model

        rng = np.random.default_rng(20)
        frame = pd.DataFrame({
            'intensity': np.concatenate([rng.normal(5, 1, 50), rng.normal(10, 1, 50)]),
            'dpi': ['0'] * 50 + ['7'] * 50
        })
        model = fit_group_model(frame, 'intensity', ['dpi'])
        lower, upper = model.interval('dpi[T.7]')
        assert lower <= 5.0 <= upper

    def test_model_record(self):
        from ppa.models.group import fit_group_model

        frame = _group_frame(np.random.default_rng(12))
        model = fit_group_model(frame, 'intensity', ['group'], variance_covariates=['group'])
        assert model.kind == 'group'
        assert model.fitter == 'location_scale'
        assert model.converged
        assert model.n_obs == 80
        assert model.terms == ['Intercept', 'group[T.B]', 'sigma:Intercept', 'sigma:group[T.B]']
        assert model.estimate('sigma:Intercept') == pytest.approx(np.log(0.5), abs=0.3)
        assert model.model_id == 'group__intensity__group__sigma_group'
        assert len(model.data_fingerprint) == 16

    def test_homoscedastic_matches_ols(self):
        from ppa.models.group import fit_group_model

        frame = _group_frame(np.random.default_rng(13), sd_b=0.5)
        ls_model = fit_group_model(frame, 'intensity', ['group'])
        ols_model = fit_group_model(frame, 'intensity', ['group'], fitter='ols')
        assert ls_model.estimate('group[T.B]') == pytest.approx(ols_model.estimate('group[T.B]'), rel=1e-4)
        assert 'sigma:Intercept' in ols_model.terms

    def test_from_collection(self):
        from ppa.analysis.summaries import add_intensity_column
        from ppa.data.patterns import Window
        from ppa.data.simulate import simulate_collection
        from ppa.models.group import fit_group_model

        collection = simulate_collection(
            {'control': 0.002, 'treated': 0.006},
            samples_per_group=6,
            window=Window(0, 200, 0, 200),
            seed=5
        )
        column = add_intensity_column(collection, 'microglia')
        model = fit_group_model(collection, column, ['group'], fitter='ols')
        assert model.n_obs == 12
        assert model.estimate('group[T.treated]') > 0

    def test_one_observation_three_levels(self):
        from ppa.exceptions import InsufficientDataError
        from ppa.models.group import fit_group_model

        frame = pd.DataFrame({
            'intensity': [1.0],
            'dpi': pd.Categorical(['0'], categories=['0', '7', '21'])
        })
        with pytest.raises(InsufficientDataError) as excinfo:
            fit_group_model(frame, 'intensity', ['dpi'])
        assert excinfo.value.n_obs == 1

    def test_exactly_determined_table_rejected(self):
        from ppa.exceptions import InsufficientDataError
        from ppa.models.group import fit_group_model

        # One mean and one log-sd parameter cannot be estimated from two rows
        frame = pd.DataFrame({'intensity': [1.0, 2.0]})
        with pytest.raises(InsufficientDataError) as excinfo:
            fit_group_model(frame, 'intensity', [])
        assert excinfo.value.n_obs == 2
        assert excinfo.value.n_params == 2

    def test_missing_values(self):
        from ppa.config import AnalysisConfig
        from ppa.exceptions import MissingDataError
        from ppa.models.group import fit_group_model

        frame = _group_frame(np.random.default_rng(14))
        frame.loc[3, 'group'] = None
        with pytest.raises(MissingDataError):
            fit_group_model(frame, 'intensity', ['group'])

        fitter = RecordingFitter.create()
        model = fit_group_model(frame, 'intensity', ['group'], config=AnalysisConfig(missing='drop'), fitter=fitter)
        assert model.n_obs == 79

    def test_unknown_or_non_numeric_columns(self):
        from ppa.exceptions import ColumnError
        from ppa.models.group import fit_group_model

        frame = _group_frame(np.random.default_rng(15))
        with pytest.raises(ColumnError):
            fit_group_model(frame, 'intensity', ['dpi'])
        with pytest.raises(ColumnError):
            fit_group_model(frame, 'group', [])

    def test_fitter_receives_designs(self):
        from ppa.models.group import fit_group_model

        fitter = RecordingFitter.create()
        frame = _group_frame(np.random.default_rng(16))
        fit_group_model(frame, 'intensity', ['group'], fitter=fitter)
        call = fitter.calls[-1]
        assert list(call['X'].columns) == ['Intercept', 'group[T.B]']
        assert list(call['Z'].columns) == ['Intercept']
        assert call['confidence_level'] == 0.95

    def test_wrong_fitter_type(self):
        from ppa.models.group import fit_group_model

        frame = _group_frame(np.random.default_rng(17))
        with pytest.raises(TypeError):
            fit_group_model(frame, 'intensity', ['group'], fitter='poisson_glm')

    def test_convergence_error_carries_model_id(self):
        from ppa.exceptions import ConvergenceError
        from ppa.models.group import fit_group_model

        frame = _group_frame(np.random.default_rng(18))
        with pytest.raises(ConvergenceError) as excinfo:
            fit_group_model(frame, 'intensity', ['group'], fitter=RecordingFitter.create(fail=True), model_id='m1')
        assert excinfo.value.model_id == 'm1'


class TestModelStore:
    """Test model persistence and refit policies"""

    def _model(self, model_id='m1'):
        from ppa.models.base import FitResult, make_fitted_model

        result = FitResult(
            coefficients=_table_for(['Intercept', 'group[T.B]']),
            log_likelihood=-10.0,
            converged=True,
            n_obs=20,
            details={'iterations': 4}
        )
        return make_fitted_model(
            result, model_id, 'group', 'recording', 0.95, 'intensity', ['group'], 'abc'
        )

    def test_save_and_load(self):
        from ppa.models.store import ModelStore

        with tempfile.TemporaryDirectory() as tmpdir:
            store = ModelStore(tmpdir)
            model = self._model()
            path = store.save(model)
            assert path.exists()
            loaded = store.load('m1')

        pd.testing.assert_frame_equal(loaded.summary_frame(), model.summary_frame())
        assert loaded.details == {'iterations': 4}
        assert loaded.covariates == ['group']

    def test_never_refit_reuses_model(self):
        from ppa.models.store import NEVER_REFIT, ModelStore

        calls = []

        def fit_fn():
            calls.append(1)
            return self._model()

        with tempfile.TemporaryDirectory() as tmpdir:
            store = ModelStore(tmpdir)
            first = store.fit_or_load('m1', fit_fn, NEVER_REFIT)
            second = store.fit_or_load('m1', fit_fn, NEVER_REFIT)

        assert len(calls) == 1
        assert second.created_at == first.created_at

    def test_always_refit(self):
        from ppa.models.store import ALWAYS_REFIT, ModelStore

        calls = []

        def fit_fn():
            calls.append(1)
            return self._model()

        with tempfile.TemporaryDirectory() as tmpdir:
            store = ModelStore(tmpdir)
            store.fit_or_load('m1', fit_fn, ALWAYS_REFIT)
            store.fit_or_load('m1', fit_fn, ALWAYS_REFIT)

        assert len(calls) == 2

    def test_corrupt_file_is_refit(self):
        from ppa.models.store import NEVER_REFIT, ModelStore

        with tempfile.TemporaryDirectory() as tmpdir:
            store = ModelStore(tmpdir)
            store.path_for('m1').write_text('not json')
            model = store.fit_or_load('m1', self._model, NEVER_REFIT)
            assert model.model_id == 'm1'
            with open(store.path_for('m1')) as f:
                assert json.load(f)['model_id'] == 'm1'

    def test_load_errors(self):
        from ppa.models.store import ModelStore

        with tempfile.TemporaryDirectory() as tmpdir:
            store = ModelStore(tmpdir)
            with pytest.raises(FileNotFoundError):
                store.load('absent')
            store.save(self._model('m2'))
            os.rename(store.path_for('m2'), store.path_for('m3'))
            with pytest.raises(ValueError):
                store.load('m3')

    def test_unknown_policy(self):
        from ppa.models.store import ModelStore

        with tempfile.TemporaryDirectory() as tmpdir:
            with pytest.raises(ValueError):
                ModelStore(tmpdir).fit_or_load('m1', self._model, 'sometimes')

    def test_group_model_uses_cache_dir(self):
        from ppa.config import AnalysisConfig
        from ppa.models.group import fit_group_model

        frame = _group_frame(np.random.default_rng(19))
        fitter = RecordingFitter.create()
        with tempfile.TemporaryDirectory() as tmpdir:
            config = AnalysisConfig(cache_dir=tmpdir, model_cache_policy='never_refit')
            fit_group_model(frame, 'intensity', ['group'], config=config, fitter=fitter)
            fit_group_model(frame, 'intensity', ['group'], config=config, fitter=fitter)
            assert len(os.listdir(tmpdir)) == 1
        assert len(fitter.calls) == 1
