import logging

from disfit.progress_reporter import ProgressReporter, format_timestamp


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_reports_every_hundred_frames():
    clock = FakeClock()
    reporter = ProgressReporter("video", clock=clock)
    emitted = [reporter.frame(i / 25) for i in range(250)]
    assert emitted.count(True) == 2
    assert emitted[99] and emitted[199]


def test_reports_once_per_second():
    clock = FakeClock()
    reporter = ProgressReporter("audio", clock=clock)
    assert reporter.frame(0.0) is False
    clock.now = 1.5
    assert reporter.frame(0.1) is True
    assert reporter.frame(0.2) is False
    assert reporter.reports == 1


def test_status_line_format(caplog):
    clock = FakeClock()
    reporter = ProgressReporter("video", clock=clock)
    clock.now = 2.0
    with caplog.at_level(logging.INFO, logger="disfit.progress"):
        reporter.frame(3725.0)
    assert "VIDEO ELAPSED:" in caplog.text
    assert "FRAMES:" in caplog.text
    assert "TIMESTAMP: 01:02:05" in caplog.text


def test_format_timestamp():
    assert format_timestamp(0) == "00:00:00"
    assert format_timestamp(59.9) == "00:00:59"
    assert format_timestamp(None) == "--:--:--"
    assert format_timestamp(-1) == "--:--:--"


def test_bar_only_with_known_duration():
    assert ProgressReporter("video", None, show_bar=True)._bar is None
    reporter = ProgressReporter("video", 10.0, show_bar=True)
    assert reporter._bar is not None
    reporter.close()
    assert reporter._bar is None
