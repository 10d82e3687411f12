"""User-agent classification tests."""

import pytest

from shortener.clicks import DeviceInfo, classify_user_agent

CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)
EDGE_WINDOWS = CHROME_WINDOWS + " Edg/124.0.2478.51"
SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1"
)
SAFARI_IPAD = (
    "Mozilla/5.0 (iPad; CPU OS 17_4 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Safari/604.1"
)
CHROME_ANDROID = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Mobile Safari/537.36"
)
FIREFOX_LINUX = "Mozilla/5.0 (X11; Ubuntu; Linux x86_64; rv:125.0) Gecko/20100101 Firefox/125.0"
SAFARI_MAC = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Safari/605.1.15"
)


@pytest.mark.parametrize(
    "user_agent, expected",
    [
        (CHROME_WINDOWS, DeviceInfo("Desktop", "Chrome", "Windows")),
        (EDGE_WINDOWS, DeviceInfo("Desktop", "Edge", "Windows")),
        (SAFARI_IPHONE, DeviceInfo("Mobile", "Safari", "iOS")),
        (SAFARI_IPAD, DeviceInfo("Tablet", "Safari", "iOS")),
        (CHROME_ANDROID, DeviceInfo("Mobile", "Chrome", "Android")),
        (FIREFOX_LINUX, DeviceInfo("Desktop", "Firefox", "Linux")),
        (SAFARI_MAC, DeviceInfo("Desktop", "Safari", "macOS")),
        ("curl/8.5.0", DeviceInfo("Desktop", "Other", "Other")),
        ("", DeviceInfo("Desktop", "Other", "Other")),
        (None, DeviceInfo("Desktop", "Other", "Other")),
    ],
)
def test_classify_user_agent(user_agent, expected):
    assert classify_user_agent(user_agent) == expected
