from analysis_poller.connection import ConnectionStatus, classify_connection


def _classify(elapsed, succeeded=False, failures=0, fatal=False):
    return classify_connection(
        elapsed,
        succeeded,
        failures,
        fatal,
        cold_start_threshold_seconds=3.0,
        max_consecutive_failures=3,
    )


def test_connecting_before_cold_start_threshold():
    assert _classify(0.0) is ConnectionStatus.CONNECTING
    assert _classify(3.0) is ConnectionStatus.CONNECTING


def test_waking_after_cold_start_threshold_without_success():
    assert _classify(3.5) is ConnectionStatus.WAKING
    assert _classify(45.0, failures=2) is ConnectionStatus.WAKING


def test_first_success_means_connected_regardless_of_elapsed():
    assert _classify(0.1, succeeded=True) is ConnectionStatus.CONNECTED
    assert _classify(120.0, succeeded=True) is ConnectionStatus.CONNECTED


def test_error_after_consecutive_failures_even_when_connected():
    assert _classify(5.0, succeeded=True, failures=2) is ConnectionStatus.CONNECTED
    assert _classify(5.0, succeeded=True, failures=3) is ConnectionStatus.ERROR
    assert _classify(0.5, failures=3) is ConnectionStatus.ERROR


def test_fatal_flag_wins():
    assert _classify(0.0, succeeded=True, fatal=True) is ConnectionStatus.ERROR
