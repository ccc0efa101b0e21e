#!/usr/bin/env python
"""Tests for the Point Pattern Analysis CLI and pipeline"""
import os
import sys
import tempfile
import pytest
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))


class TestConfig:
    """Test configuration loading and validation"""

    def test_get_default_config(self):
        """Test generating default configuration"""
        from cli.config import get_default_config

        config = get_default_config("test_dataset")
        assert config['dataset_name'] == "test_dataset"
        assert 'summaries' in config
        assert 'group_model' in config
        assert 'cross_pattern_model' in config
        assert 'analysis' in config

    def test_save_and_load_config(self):
        """Test saving configuration to file and reading it back"""
        from cli.config import build_analysis_config, get_default_config, load_config, save_config

        with tempfile.TemporaryDirectory() as tmpdir:
            config = get_default_config("test")
            output_path = os.path.join(tmpdir, "test_config.yaml")
            save_config(config, output_path)
            assert os.path.exists(output_path)

            loaded = load_config(output_path)
            assert loaded['dataset_name'] == 'test'
            analysis_config = build_analysis_config(loaded)
            assert analysis_config.bandwidth == 'scott'
            assert analysis_config.tol == pytest.approx(1e-8)

    def test_missing_required_field(self):
        """Test that configs without required fields are rejected"""
        import yaml
        from cli.config import load_config

        with tempfile.TemporaryDirectory() as tmpdir:
            config_path = os.path.join(tmpdir, "bad.yaml")
            with open(config_path, 'w') as f:
                yaml.dump({'dataset_name': 'x'}, f)
            with pytest.raises(ValueError):
                load_config(config_path)

        with pytest.raises(FileNotFoundError):
            load_config("/nonexistent/config.yaml")

    def test_invalid_bandwidth_in_config(self):
        """Test that a non-positive bandwidth fails when the config is loaded"""
        from cli.config import get_default_config, load_config, save_config
        from ppa.exceptions import InvalidBandwidthError

        with tempfile.TemporaryDirectory() as tmpdir:
            config = get_default_config("test")
            config['summaries']['bandwidth'] = -5
            config_path = os.path.join(tmpdir, "config.yaml")
            save_config(config, config_path)
            with pytest.raises(InvalidBandwidthError):
                load_config(config_path)


class TestAnalysisConfig:
    """Test the library-level analysis configuration"""

    def test_defaults(self):
        from ppa.config import AnalysisConfig

        config = AnalysisConfig()
        assert config.resolution == 128
        assert config.edge_correction
        assert config.model_cache_policy == 'always_refit'

    def test_from_dict_casts_strings(self):
        from ppa.config import AnalysisConfig

        config = AnalysisConfig.from_dict({'bandwidth': '25', 'tol': '1e-6', 'unknown': 1, 'cache_dir': None})
        assert config.bandwidth == 25.0
        assert config.tol == pytest.approx(1e-6)
        assert config.cache_dir is None

    def test_invalid_values(self):
        from ppa.config import AnalysisConfig
        from ppa.exceptions import InvalidBandwidthError

        with pytest.raises(InvalidBandwidthError):
            AnalysisConfig(bandwidth=0.0)
        with pytest.raises(ValueError):
            AnalysisConfig(model_cache_policy='sometimes')
        with pytest.raises(ValueError):
            AnalysisConfig(confidence_level=1.5)
        with pytest.raises(ValueError):
            AnalysisConfig(missing='impute')


class TestPipelineState:
    """Test pipeline state tracking"""

    def test_step_lifecycle(self):
        from cli.state import get_state

        with tempfile.TemporaryDirectory() as tmpdir:
            state = get_state(tmpdir)
            state.start_step('summarize')
            state.complete_step('summarize', ['a.csv'])
            state.start_step('group_model')
            state.fail_step('group_model', 'did not converge')

            reloaded = get_state(tmpdir)
            assert reloaded.is_step_completed('summarize')
            assert reloaded.get_resume_steps(['summarize', 'group_model', 'cross_model']) == [
                'group_model', 'cross_model'
            ]
            summary = reloaded.get_progress_summary()
            assert 'summarize: COMPLETED (1 outputs)' in summary
            assert 'FAILED - did not converge' in summary

            reloaded.reset()
            assert not get_state(tmpdir).is_step_completed('summarize')


class TestCLI:
    """Test CLI functionality"""

    def test_create_parser(self):
        """Test argument parser creation"""
        from cli.main import create_parser

        parser = create_parser()
        args = parser.parse_args(['fit-group', '-i', 'data', '-o', 'out', '-r', 'microglia', '--covariates', 'dpi'])
        assert args.command == 'fit-group'
        assert args.covariates == ['dpi']
        assert args.fitter == 'location_scale'
        assert args.cache_policy == 'always_refit'

        with pytest.raises(SystemExit):
            parser.parse_args(['pipeline', '--config', 'c.yaml', '--steps', 'segment'])

    def test_parse_groups(self):
        """Test group intensity parsing from command line arguments"""
        from cli.main import parse_groups

        groups = parse_groups(['dpi0:0.001', 'dpi7:0.002'])
        assert groups == {'dpi0': 0.001, 'dpi7': 0.002}

        with pytest.raises(ValueError):
            parse_groups(['invalid_format'])

    def test_build_cli_config(self):
        """Test analysis configuration from subcommand options"""
        from cli.main import build_cli_config, create_parser

        parser = create_parser()
        args = parser.parse_args([
            'fit-cross', '-i', 'data', '-o', 'out', '-r', 'microglia', '--covariate', 'neuron',
            '--bandwidth', '40', '--resolution', '64', '--no-edge-correction', '--cache-policy', 'never_refit'
        ])
        config = build_cli_config(args)
        assert config.bandwidth == 40.0
        assert config.resolution == 64
        assert not config.edge_correction
        assert config.model_cache_policy == 'never_refit'

    def test_init_command(self):
        """Test init command generates config"""
        from cli.config import get_default_config, save_config

        with tempfile.TemporaryDirectory() as tmpdir:
            output_path = os.path.join(tmpdir, "configs", "config.yaml")
            save_config(get_default_config("my_dataset"), output_path)
            assert os.path.exists(output_path)

    def test_error_exit(self, monkeypatch, capsys, tmp_path):
        """Test that a failing command exits with status 1"""
        from cli.main import main

        monkeypatch.setattr(sys, 'argv', ['ppa', 'summarize', '-i', '/nonexistent/data', '-o', str(tmp_path)])
        with pytest.raises(SystemExit) as excinfo:
            main()
        assert excinfo.value.code == 1
        assert '[ERROR] summarize' in capsys.readouterr().err


class TestPipeline:
    """Test the end-to-end pipeline on a simulated dataset"""

    def test_full_pipeline(self):
        from cli.commands.pipeline import run_full_pipeline
        from cli.commands.simulate import simulate_dataset
        from cli.config import get_default_config
        from cli.state import get_state

        with tempfile.TemporaryDirectory() as tmpdir:
            dataset_dir = os.path.join(tmpdir, 'data')
            simulate_dataset(
                dataset_dir,
                {'control': 0.002, 'treated': 0.004},
                samples_per_group=4,
                window_size=200.0,
                seed=3
            )

            config = get_default_config('sim')
            config['input_dir'] = dataset_dir
            config['output_dir'] = os.path.join(tmpdir, 'results')
            config['summaries'].update({'resolution': 16, 'bandwidth': 20.0, 'generate_plots': False})
            config['group_model']['fitter'] = 'ols'
            config['group_model']['variance_covariates'] = []
            config['analysis']['cache_dir'] = os.path.join(tmpdir, 'cache')

            state = get_state(config['output_dir'])
            run_full_pipeline(config, state=state)

            assert os.path.exists(os.path.join(config['output_dir'], 'summaries', 'pattern_summary.csv'))
            assert os.path.exists(os.path.join(config['output_dir'], 'summaries', 'group_summary.csv'))
            model_files = os.listdir(os.path.join(config['output_dir'], 'models'))
            assert any(name.startswith('group__') and name.endswith('_coefficients.csv') for name in model_files)
            assert any(name.startswith('cross__') and name.endswith('_coefficients.csv') for name in model_files)
            assert len(os.listdir(config['analysis']['cache_dir'])) == 2
            assert get_state(config['output_dir']).get_resume_steps(list(state.STEPS)) == []

    def test_failed_step_recorded(self):
        from cli.commands.pipeline import run_full_pipeline
        from cli.commands.simulate import simulate_dataset
        from cli.config import get_default_config
        from cli.state import get_state
        from ppa.exceptions import ColumnError

        with tempfile.TemporaryDirectory() as tmpdir:
            dataset_dir = os.path.join(tmpdir, 'data')
            simulate_dataset(dataset_dir, {'control': 0.002}, samples_per_group=3, window_size=100.0)

            config = get_default_config('sim')
            config['input_dir'] = dataset_dir
            config['output_dir'] = os.path.join(tmpdir, 'results')
            config['summaries'].update({'resolution': 8, 'generate_plots': False})
            config['group_model']['covariates'] = ['dpi']
            config['analysis']['cache_dir'] = None

            with pytest.raises(ColumnError):
                run_full_pipeline(config, steps=['summarize', 'group_model'])

            state = get_state(config['output_dir'])
            assert state.is_step_completed('summarize')
            assert state.state['steps']['group_model']['status'] == 'failed'


def test_imports():
    """Test that all modules can be imported"""
    from cli import main
    from cli import config
    from cli import state
    from cli.commands import simulate, summarize, models, pipeline
    import ppa
    from ppa.analysis import visualization

    assert ppa.__version__ == "0.1.0"
