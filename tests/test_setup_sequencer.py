import pytest

from alienbridge.config_loader import ReaderConfig
from alienbridge.control_channel import ConnectionState, ControlChannel
from alienbridge.errors import MalformedResponseError, ReaderConnectionError, SetupAbortedError
from alienbridge.setup_sequencer import SetupSequencer, build_setup_commands

EXPECTED = [
    "ReaderName=Dock",
    "AntennaSequence=0 1",
    "NotifyAddress=10.0.0.5:20001",
    "AcquireMode=Inventory",
    "TagListAntennaCombine=off",
    "NotifyMode=on",
    "NotifyTrigger=TrueFalse",
    "TagListCustomFormat=${TIME2},%N,%A,%k,%m",
    "NotifyFormat=Custom",
    "AutoModeReset",
    "AutoStopTimer=500",
    "AutoAction=Acquire",
    "AutoStartTrigger=0 0",
    "AutoStartPause=0",
    "AutoMode=on",
]


def test_build_setup_commands_exact_order():
    cfg = ReaderConfig(name="Dock", antennas=("0", "1"))
    assert build_setup_commands(cfg, "10.0.0.5") == EXPECTED


def test_build_setup_commands_variants():
    cfg = ReaderConfig(
        name="Gate",
        antennas=("2",),
        notify_host="bridge.local",
        notify_port=21000,
        auto_stop_timer_ms=250,
        timestamp_format=False,
    )
    commands = build_setup_commands(cfg, "10.0.0.5")
    assert commands[:3] == ["ReaderName=Gate", "AntennaSequence=2", "NotifyAddress=bridge.local:21000"]
    assert "TagListCustomFormat=%N,%A,%k,%m" in commands
    assert "AutoStopTimer=250" in commands
    assert commands[-1] == "AutoMode=on"


def test_build_setup_commands_needs_a_notify_host():
    with pytest.raises(ValueError):
        build_setup_commands(ReaderConfig(), None)


@pytest.mark.asyncio
async def test_setup_runs_in_order_against_sim(sim, sim_cfg):
    channel = ControlChannel(sim_cfg)
    await channel.connect()
    try:
        sent = await SetupSequencer(channel, sim_cfg).run()
    finally:
        channel.disconnect()

    expected = [c.replace("10.0.0.5", "127.0.0.1") for c in EXPECTED]
    assert sent == expected
    assert sim.commands == expected
    assert sim.settings["NotifyAddress"] == "127.0.0.1:20001"


@pytest.mark.asyncio
async def test_setup_stops_at_first_failure(sim, sim_cfg):
    channel = ControlChannel(sim_cfg)
    await channel.connect()
    expected = build_setup_commands(sim_cfg, channel.local_address)
    fifth = expected[4]
    sim.malformed.add(fifth)

    try:
        with pytest.raises(SetupAbortedError) as ei:
            await SetupSequencer(channel, sim_cfg).run()
    finally:
        state = channel.state
        channel.disconnect()

    assert ei.value.command == fifth
    assert ei.value.index == 4
    assert isinstance(ei.value.__cause__, MalformedResponseError)
    assert sim.commands == expected[:5]
    assert state is ConnectionState.READY


@pytest.mark.asyncio
async def test_setup_aborts_when_reader_hangs_up(sim, sim_cfg):
    sim.hangup.add("NotifyMode=on")
    channel = ControlChannel(sim_cfg)
    await channel.connect()

    with pytest.raises(SetupAbortedError) as ei:
        await SetupSequencer(channel, sim_cfg).run()

    assert ei.value.command == "NotifyMode=on"
    assert isinstance(ei.value.__cause__, ReaderConnectionError)
    assert sim.commands[-1] == "NotifyMode=on"
    assert channel.state is ConnectionState.DISCONNECTED
