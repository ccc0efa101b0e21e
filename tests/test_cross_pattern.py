#!/usr/bin/env python
"""Tests for the cross-pattern point process regression"""
import sys
import pytest
from pathlib import Path

import numpy as np
import pandas as pd

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))


def _simulated(seed, response_effect=0.0, samples_per_group=2, size=300.0, resolution=32, bandwidth=30.0):
    from ppa.analysis.summaries import add_density_column
    from ppa.config import AnalysisConfig
    from ppa.data.patterns import Window
    from ppa.data.simulate import simulate_collection

    collection = simulate_collection(
        {'control': 0.002, 'treated': 0.003},
        samples_per_group=samples_per_group,
        window=Window(0.0, size, 0.0, size),
        covariate_intensity=0.002,
        response_effect=response_effect,
        bandwidth=bandwidth,
        seed=seed
    )
    config = AnalysisConfig(resolution=resolution, bandwidth=bandwidth)
    add_density_column(collection, 'neuron', config=config)
    return collection, config


class RecordingPointProcessFitter:
    """Builds a point process fitter that records its inputs"""

    @staticmethod
    def create(fail=False):
        from ppa.exceptions import ConvergenceError
        from ppa.models.base import FitResult
        from ppa.models.registry import PointProcessFitter

        class _Fitter(PointProcessFitter):
            calls = []

            @property
            def name(self):
                return "recording"

            def fit(self, counts, X, offset, confidence_level=0.95, max_iter=100, tol=1e-8):
                self.calls.append({'counts': counts, 'X': X, 'offset': offset, 'max_iter': max_iter, 'tol': tol})
                if fail:
                    raise ConvergenceError("stub did not converge")
                table = pd.DataFrame(
                    [[0.1, 0.01, 0.08, 0.12] for _ in X.columns],
                    index=pd.Index(list(X.columns), name='term'),
                    columns=['estimate', 'std_error', 'lower', 'upper']
                )
                return FitResult(coefficients=table, log_likelihood=-5.0, converged=True, n_obs=len(counts))

        return _Fitter()


class TestQuadrature:
    """Test pooling of counts and covariate values"""

    def test_rows_and_counts(self):
        from ppa.models.cross_pattern import build_quadrature

        collection, _ = _simulated(seed=1, resolution=16)
        quadrature = build_quadrature(collection, 'microglia', 'density_neuron', ['group'])
        assert len(quadrature) == len(collection) * 16 * 16
        total = sum(p.n_points for p in collection.column('microglia'))
        assert quadrature['count'].sum() == total
        assert quadrature['area'].iloc[0] == pytest.approx((300.0 / 16) ** 2)
        assert isinstance(quadrature['group'].dtype, pd.CategoricalDtype)

    def test_field_must_cover_window(self):
        from ppa.analysis.summaries import compute_density_field
        from ppa.data.collection import ColumnKind
        from ppa.data.patterns import PointPattern, Window
        from ppa.exceptions import WindowError
        from ppa.models.cross_pattern import build_quadrature

        collection, _ = _simulated(seed=2, resolution=8)
        small = Window(0.0, 100.0, 0.0, 100.0)
        fields = {
            sid: compute_density_field(PointPattern(np.empty((0, 2)), small), 10.0, resolution=8)
            for sid in collection.sample_ids
        }
        collection.add_column('density_small', ColumnKind.FIELD, fields)
        with pytest.raises(WindowError):
            build_quadrature(collection, 'microglia', 'density_small')

    def test_larger_field_is_clipped_to_window(self):
        from ppa.analysis.summaries import compute_density_field
        from ppa.data.collection import ColumnKind, SampleCollection
        from ppa.data.patterns import PointPattern, Window
        from ppa.models.cross_pattern import build_quadrature

        small = Window(0.0, 15.0, 0.0, 10.0)
        large = Window(0.0, 100.0, 0.0, 100.0)
        # (15, 10) sits on a grid edge and on the window corner
        response = PointPattern([[1.0, 1.0], [14.0, 9.0], [15.0, 10.0]], small, 'microglia')
        covariate = PointPattern([[50.0, 50.0]], large, 'neuron')
        field = compute_density_field(covariate, bandwidth=10.0, resolution=20)

        collection = SampleCollection(['s1'])
        collection.add_column('microglia', ColumnKind.PATTERN, [response])
        collection.add_column('density_neuron', ColumnKind.FIELD, [field])
        quadrature = build_quadrature(collection, 'microglia', 'density_neuron')

        # 5 x 5 cells: columns at x 0-5, 5-10, 10-15; rows at y 0-5, 5-10
        assert len(quadrature) == 3 * 2
        assert quadrature['area'].sum() == pytest.approx(small.area)
        assert quadrature['count'].sum() == 3

    def test_partial_cells_use_clipped_area(self):
        from ppa.analysis.summaries import compute_density_field
        from ppa.data.collection import ColumnKind, SampleCollection
        from ppa.data.patterns import PointPattern, Window
        from ppa.models.cross_pattern import build_quadrature

        small = Window(0.0, 12.0, 0.0, 7.0)
        field = compute_density_field(
            PointPattern(np.empty((0, 2)), Window(0.0, 100.0, 0.0, 100.0)), 10.0, resolution=20
        )
        collection = SampleCollection(['s1'])
        collection.add_column('microglia', ColumnKind.PATTERN, [PointPattern([[11.5, 6.5]], small)])
        collection.add_column('density_neuron', ColumnKind.FIELD, [field])
        quadrature = build_quadrature(collection, 'microglia', 'density_neuron')

        assert len(quadrature) == 3 * 2
        assert quadrature['area'].sum() == pytest.approx(12.0 * 7.0)
        assert quadrature['area'].min() == pytest.approx(2.0 * 2.0)
        assert quadrature.loc[quadrature['count'] == 1, 'area'].item() == pytest.approx(2.0 * 2.0)

    def test_column_kinds_checked(self):
        from ppa.exceptions import ColumnError
        from ppa.models.cross_pattern import build_quadrature

        collection, _ = _simulated(seed=3, resolution=8)
        with pytest.raises(ColumnError):
            build_quadrature(collection, 'density_neuron', 'density_neuron')
        with pytest.raises(ColumnError):
            build_quadrature(collection, 'microglia', 'neuron')


class TestCrossPatternModel:
    """Test the pooled log-linear intensity model"""

    def test_zero_effect_coverage(self):
        from ppa.models.cross_pattern import fit_cross_pattern_model

        covered = 0
        for seed in range(10):
            collection, config = _simulated(seed=100 + seed)
            model = fit_cross_pattern_model(collection, 'microglia', 'density_neuron', config=config)
            lower, upper = model.interval('density_neuron')
            covered += lower <= 0.0 <= upper
        assert covered >= 7

    def test_positive_effect_detected(self):
        from ppa.models.cross_pattern import fit_cross_pattern_model

        collection, config = _simulated(seed=21, response_effect=0.6, samples_per_group=3, size=500.0, bandwidth=50.0)
        model = fit_cross_pattern_model(
            collection, 'microglia', 'density_neuron', config=config, standardize=True
        )
        lower, _ = model.interval('density_neuron')
        assert lower > 0
        ratios = model.rate_ratios()
        assert ratios.loc['density_neuron', 'estimate'] > 1
        assert model.details['standardized']
        assert model.details['covariate_sd'] > 0

    def test_model_record(self):
        from ppa.models.cross_pattern import fit_cross_pattern_model

        collection, config = _simulated(seed=4)
        model = fit_cross_pattern_model(
            collection, 'microglia', 'density_neuron', sample_covariates=['group'], config=config
        )
        assert model.kind == 'cross_pattern'
        assert model.fitter == 'poisson_glm'
        assert model.terms == ['Intercept', 'density_neuron', 'group[T.treated]']
        assert model.model_id == 'cross__microglia__density_neuron__group'
        assert model.n_obs == len(collection) * 32 * 32
        assert model.details['n_samples'] == len(collection)
        # Intercept is the log baseline intensity of the control group
        assert np.exp(model.estimate('Intercept')) == pytest.approx(0.002, rel=0.5)

    def test_fitter_receives_log_area_offset(self):
        from ppa.models.cross_pattern import fit_cross_pattern_model

        collection, config = _simulated(seed=5, resolution=8)
        fitter = RecordingPointProcessFitter.create()
        fit_cross_pattern_model(collection, 'microglia', 'density_neuron', config=config, fitter=fitter)
        call = fitter.calls[-1]
        assert list(call['X'].columns) == ['Intercept', 'density_neuron']
        np.testing.assert_allclose(call['offset'], np.log((300.0 / 8) ** 2))
        assert call['max_iter'] == config.max_iter
        assert call['tol'] == config.tol

    def test_convergence_error_surfaces(self):
        from ppa.exceptions import ConvergenceError
        from ppa.models.cross_pattern import fit_cross_pattern_model

        collection, config = _simulated(seed=6, resolution=8)
        with pytest.raises(ConvergenceError) as excinfo:
            fit_cross_pattern_model(
                collection, 'microglia', 'density_neuron',
                config=config, fitter=RecordingPointProcessFitter.create(fail=True)
            )
        assert excinfo.value.model_id == 'cross__microglia__density_neuron__1'

    def test_no_response_points(self):
        from ppa.data.collection import ColumnKind
        from ppa.data.patterns import PointPattern
        from ppa.exceptions import InsufficientDataError
        from ppa.models.cross_pattern import fit_cross_pattern_model

        collection, config = _simulated(seed=7, resolution=8)
        empty = {
            sid: PointPattern(np.empty((0, 2)), collection.cell(sid, 'neuron').window, 'astrocyte')
            for sid in collection.sample_ids
        }
        collection.add_column('astrocyte', ColumnKind.PATTERN, empty)
        with pytest.raises(InsufficientDataError):
            fit_cross_pattern_model(collection, 'astrocyte', 'density_neuron', config=config)

    def test_missing_sample_covariate(self):
        from ppa.config import AnalysisConfig
        from ppa.data.collection import ColumnKind
        from ppa.exceptions import MissingDataError
        from ppa.models.cross_pattern import fit_cross_pattern_model

        collection, config = _simulated(seed=8, resolution=8)
        batches = ['b1', None, 'b2', 'b1']
        collection.add_column('batch', ColumnKind.CATEGORY, batches)
        with pytest.raises(MissingDataError):
            fit_cross_pattern_model(
                collection, 'microglia', 'density_neuron', sample_covariates=['batch'], config=config
            )

        fitter = RecordingPointProcessFitter.create()
        drop_config = AnalysisConfig(resolution=8, bandwidth=30.0, missing='drop')
        model = fit_cross_pattern_model(
            collection, 'microglia', 'density_neuron', sample_covariates=['batch'],
            config=drop_config, fitter=fitter
        )
        assert model.details['n_samples'] == 3
        assert list(fitter.calls[-1]['X'].columns) == ['Intercept', 'density_neuron', 'batch[T.b2]']

    def test_wrong_fitter_type(self):
        from ppa.models.cross_pattern import fit_cross_pattern_model

        collection, config = _simulated(seed=9, resolution=8)
        with pytest.raises(TypeError):
            fit_cross_pattern_model(collection, 'microglia', 'density_neuron', config=config, fitter='ols')
