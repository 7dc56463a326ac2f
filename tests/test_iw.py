from wlan_pilot.errors import CommandSpawnError
from wlan_pilot.execution import CommandResult
from wlan_pilot.iw import IwTool


IW_DEV = """phy#0
\tInterface wlan0
\t\tifindex 3
\t\ttype managed
\tInterface ap0
\t\tifindex 4
\t\ttype AP
"""

IW_INFO = """Interface wlan0
\tifindex 3
\twiphy 0
\ttype managed
"""

PHY_INFO = """Wiphy phy0
\tBand 1:
\t\tFrequencies:
\t\t\t* 2412 MHz [1] (20.0 dBm)
\tBand 2:
\t\tFrequencies:
\t\t\t* 5180 MHz [36] (20.0 dBm)
\tSupported interface modes:
\t\t * IBSS
\t\t * managed
\t\t * AP
\t\t * monitor
\tBand 4:
"""

LINK = """Connected to AA:BB:CC:DD:EE:FF (on wlan0)
\tSSID: Cafe Corner
\tfreq: 2437
\tsignal: -52 dBm
\trx bitrate: 72.2 MBit/s
\ttx bitrate: 65.0 MBit/s
"""

STATIONS = """Station 11:22:33:44:55:66 (on wlan0)
\tinactive time:\t100 ms
Station 66:55:44:33:22:11 (on wlan0)
\tinactive time:\t50 ms
"""


def test_list_interfaces(fake_runner) -> None:
    fake_runner.responses[("iw", "dev")] = IW_DEV
    assert IwTool(fake_runner).list_interfaces() == ["wlan0", "ap0"]


def test_capabilities_come_from_the_wiphy(fake_runner) -> None:
    fake_runner.responses[("iw", "dev", "wlan0", "info")] = IW_INFO
    fake_runner.responses[("iw", "phy", "phy0", "info")] = PHY_INFO
    tool = IwTool(fake_runner)
    assert tool.wiphy_index("wlan0") == 0
    assert tool.supports_ap_mode("wlan0")
    assert tool.supports_5ghz("wlan0")


def test_station_only_radio(fake_runner) -> None:
    fake_runner.responses[("iw", "dev", "wlan0", "info")] = IW_INFO
    fake_runner.responses[("iw", "phy", "phy0", "info")] = (
        "Wiphy phy0\n\tBand 1:\n\tSupported interface modes:\n\t\t * managed\n"
    )
    tool = IwTool(fake_runner)
    assert not tool.supports_ap_mode("wlan0")
    assert not tool.supports_5ghz("wlan0")


def test_link_info_parses_association(fake_runner) -> None:
    fake_runner.responses[("iw", "dev", "wlan0", "link")] = LINK
    info = IwTool(fake_runner).link_info("wlan0")
    assert info["connected"] is True
    assert info["bssid"] == "aa:bb:cc:dd:ee:ff"
    assert info["ssid"] == "Cafe Corner"
    assert info["frequency"] == 2437.0
    assert info["signal_dbm"] == -52
    assert info["tx_bitrate"] == "65.0 MBit/s"


def test_not_connected_and_failures_are_negative(fake_runner) -> None:
    fake_runner.responses[("iw", "dev", "wlan0", "link")] = "Not connected.\n"
    fake_runner.responses[("iw", "dev", "wlan1", "link")] = CommandResult(237, "command failed")
    tool = IwTool(fake_runner)
    assert not tool.is_associated("wlan0")
    assert not tool.is_associated("wlan1")
    assert tool.link_info("bad;name") == {"connected": False}
    assert ["iw", "dev", "bad;name", "link"] not in fake_runner.calls


def test_missing_binary_is_tolerated(fake_runner) -> None:
    fake_runner.responses[("iw", "dev")] = CommandSpawnError("iw command unavailable")
    assert IwTool(fake_runner).list_interfaces() == []


def test_station_macs(fake_runner) -> None:
    fake_runner.responses[("iw", "dev", "wlan0", "station", "dump")] = STATIONS
    assert IwTool(fake_runner).station_macs("wlan0") == ["11:22:33:44:55:66", "66:55:44:33:22:11"]


def test_interface_info_summary(fake_runner) -> None:
    fake_runner.responses[("iw", "dev", "wlan0", "info")] = IW_INFO
    fake_runner.responses[("iw", "phy", "phy0", "info")] = PHY_INFO
    fake_runner.responses[("iw", "dev", "wlan0", "link")] = LINK
    info = IwTool(fake_runner).interface_info("wlan0").to_dict()
    assert info["supports_ap"] is True
    assert info["supports_5ghz"] is True
    assert info["connected"] is True
    assert info["ssid"] == "Cafe Corner"
