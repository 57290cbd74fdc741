from __future__ import annotations

from types import SimpleNamespace

import pytest
import requests

from keryx.utils.semver import SemVer
from keryx.utils.update_check import UpdateChecker, fetch_latest_version


def _finished(checker: UpdateChecker) -> UpdateChecker:
    checker.start()
    checker._thread.join(timeout=5)
    return checker


def test_notice_for_newer_release() -> None:
    checker = _finished(UpdateChecker("0.1.0", fetch=lambda: SemVer(0, 2, 0)))
    assert checker.notice() == (
        "A new version of keryx is available: 0.1.0 -> 0.2.0\n"
        "Update with: pip install --upgrade keryx"
    )


def test_no_notice_when_current_or_unknown() -> None:
    assert _finished(UpdateChecker("0.2.0", fetch=lambda: SemVer(0, 2, 0))).notice() is None
    assert _finished(UpdateChecker("0.2.0", fetch=lambda: None)).notice() is None


def test_poll_does_not_wait_for_a_slow_lookup() -> None:
    checker = UpdateChecker("0.1.0", fetch=lambda: SemVer(9, 9, 9))
    # never started, so nothing has arrived yet
    assert checker.poll() is None


class _Session:
    def __init__(self, response=None, error=None) -> None:
        self.response = response
        self.error = error

    def get(self, url, timeout=None):
        if self.error is not None:
            raise self.error
        return self.response


def test_fetch_latest_version_reads_pypi_json() -> None:
    response = SimpleNamespace(raise_for_status=lambda: None, json=lambda: {"info": {"version": "1.4.0"}})
    assert fetch_latest_version(_Session(response), url="https://pypi.example/keryx/json", timeout_s=1) == SemVer(1, 4, 0)


def test_fetch_latest_version_swallows_network_errors() -> None:
    assert fetch_latest_version(_Session(error=requests.ConnectionError("offline")), timeout_s=1) is None

    def bad_json():
        raise ValueError("not json")

    response = SimpleNamespace(raise_for_status=lambda: None, json=bad_json)
    assert fetch_latest_version(_Session(response), timeout_s=1) is None


@pytest.mark.parametrize("body", [["1.4.0"], "1.4.0", {"info": None}, {"info": ["1.4.0"]}, {}])
def test_fetch_latest_version_ignores_unexpected_json(body) -> None:
    response = SimpleNamespace(raise_for_status=lambda: None, json=lambda: body)
    assert fetch_latest_version(_Session(response), timeout_s=1) is None
