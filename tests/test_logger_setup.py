"""
Tests for logging setup: config isolation, per-run log files and pruning
"""

import glob
import logging
import os

import pytest

from disfit import logger_setup
from disfit.logger_setup import DEFAULT_LOGGING_CONFIG, ColoredFormatter, _cleanup_old_logs, setup_logging


@pytest.fixture
def restore_root_handlers():
    root = logging.getLogger()
    saved = list(root.handlers)
    yield
    for handler in list(root.handlers):
        if handler not in saved:
            root.removeHandler(handler)
            handler.close()


def test_builtin_defaults_are_not_modified(tmp_path, monkeypatch, restore_root_handlers):
    monkeypatch.setattr(logger_setup, 'PACKAGED_LOGGING_CONFIG', str(tmp_path / 'missing.yaml'))
    logs_dir = tmp_path / 'logs'

    setup_logging(None, log_level='error', logs_dir=str(logs_dir))

    assert DEFAULT_LOGGING_CONFIG['handlers']['console']['level'] == 'INFO'
    assert DEFAULT_LOGGING_CONFIG['handlers']['file']['filename'] == 'logs/disfit.log'
    console = [h for h in logging.getLogger().handlers if isinstance(h, logging.StreamHandler)
               and not isinstance(h, logging.FileHandler)]
    assert console[0].level == logging.ERROR
    assert isinstance(console[0].formatter, ColoredFormatter)


def test_each_run_gets_its_own_log_file(tmp_path, restore_root_handlers):
    logs_dir = tmp_path / 'logs'
    setup_logging(str(tmp_path / 'absent.yaml'), logs_dir=str(logs_dir))

    run_logs = glob.glob(os.path.join(logs_dir, 'disfit_*.log'))
    assert len(run_logs) == 1
    assert (logs_dir / 'errors.log').exists()
    assert not (logs_dir / 'disfit.log').exists()


def test_cleanup_keeps_most_recent_run_logs(tmp_path):
    for index in range(7):
        path = tmp_path / f'disfit_2024010{index}_000000.log'
        path.write_text('run')
        os.utime(path, (1_700_000_000 + index, 1_700_000_000 + index))
    (tmp_path / 'errors.log').write_text('kept')

    _cleanup_old_logs(str(tmp_path), keep_count=5)

    remaining = sorted(os.path.basename(p) for p in glob.glob(os.path.join(tmp_path, 'disfit_*.log')))
    assert remaining == [f'disfit_2024010{index}_000000.log' for index in range(2, 7)]
    assert (tmp_path / 'errors.log').exists()


def test_colored_formatter_leaves_record_plain():
    record = logging.makeLogRecord({'levelname': 'WARNING', 'msg': 'over budget'})
    formatted = ColoredFormatter('%(levelname)s %(message)s').format(record)
    assert 'over budget' in formatted
    assert record.levelname == 'WARNING'
