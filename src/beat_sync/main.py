#!/usr/bin/env python3
"""
beat-sync: Acoustic Clock Alignment

Command-line entry point. Runs one sync session on this machine's speaker and
microphone, or a whole multi-device session inside a simulated room.

Usage:
    # This machine is the coordinator
    beat-sync --coordinator --config sync.toml

    # This machine is participant 2
    beat-sync --participant 2 --config sync.toml

    # Coordinator + all participants in one process, no hardware
    beat-sync --simulate --json

Every device must use the same role table and tempo; start them within a
beat or two of each other (e.g. a countdown) and the coordinator reports how
far each participant is off.
"""

import argparse
import dataclasses
import logging
import signal
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import toml

# Set up logging before imports that use it
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger('beat-sync')

from .config import config_section, config_value
from .errors import AudioDeviceError, ConfigurationError
from .interfaces.sync_result import SessionState, SyncReport
from .sync.roles import RoleTable
from .sync.sync_coordinator import SessionSettings, SyncCoordinator
from .sync.offset_tracker import OffsetTracker
from .sync.sync_constants import (
    DEFAULT_SAMPLE_RATE,
    DEFAULT_FFT_SIZE,
    DEFAULT_TOLERANCE_BINS,
    DEFAULT_FLOOR_DB,
    DEFAULT_NOISE_FLOOR_DB,
    DEFAULT_PARTICIPANT_DELAYS_MS,
    COORDINATOR_FREQUENCY_HZ,
    PARTICIPANT_FREQUENCIES_HZ,
)
from .audio.simulated_room import AcousticRoom


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a TOML file.

    Raises:
        ConfigurationError: If the file exists but cannot be parsed
    """
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
        try:
            with open(path, 'r') as f:
                return toml.load(f)
        except toml.TomlDecodeError as e:
            raise ConfigurationError(f"Cannot parse {config_path}: {e}") from e

    # Default configuration
    roles = [{'role': 'coordinator', 'frequency_hz': COORDINATOR_FREQUENCY_HZ}]
    for index, frequency in sorted(PARTICIPANT_FREQUENCIES_HZ.items()):
        roles.append({'role': 'participant', 'index': index, 'frequency_hz': frequency})

    return {
        'session': {
            'bpm': 240.0,
            'beat_budget': 12,
            'poll_interval_ms': 10.0,
            'beep_duration_s': 0.1,
            'detection_threshold_db': -50.0,
            'listen_tail_ms': 0.0,
        },
        'analyzer': {
            'sample_rate': DEFAULT_SAMPLE_RATE,
            'fft_size': DEFAULT_FFT_SIZE,
            'tolerance_bins': DEFAULT_TOLERANCE_BINS,
            'floor_db': DEFAULT_FLOOR_DB,
        },
        'roles': roles,
        'simulation': {
            'participant_delays_ms': list(DEFAULT_PARTICIPANT_DELAYS_MS),
            'noise_floor_db': DEFAULT_NOISE_FLOOR_DB,
        },
    }


def build_device_coordinator(
    config: Dict[str, Any],
    role_table: RoleTable,
    settings: SessionSettings
) -> SyncCoordinator:
    """SyncCoordinator on this machine's sound card."""
    from .audio.sounddevice_io import DeviceToneEmitter, DeviceSpectralAnalyzer

    analyzer_config = config_section(config, 'analyzer')
    sample_rate = config_value(analyzer_config, 'sample_rate', DEFAULT_SAMPLE_RATE, int, 'analyzer')
    devices = config_section(config, 'devices')

    emitter = DeviceToneEmitter(device=devices.get('output'), sample_rate=sample_rate)
    analyzer = DeviceSpectralAnalyzer(
        device=devices.get('input'),
        sample_rate=sample_rate,
        fft_size=config_value(analyzer_config, 'fft_size', DEFAULT_FFT_SIZE, int, 'analyzer'),
        floor_db=config_value(analyzer_config, 'floor_db', DEFAULT_FLOOR_DB, float, 'analyzer'),
    )
    return SyncCoordinator(role_table, emitter, analyzer, settings)


def run_device_session(coordinator: SyncCoordinator, participant: Optional[int]) -> SyncReport:
    """
    Run one session on real hardware until it completes or is interrupted.

    Raises:
        AudioDeviceError: If the speaker or microphone fails
    """
    def handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, stopping sync...")
        coordinator.stop()

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    if participant is None:
        coordinator.start_as_coordinator()
    else:
        coordinator.start_as_participant(participant)

    while coordinator.state == SessionState.ACTIVE:
        time.sleep(0.1)
    return coordinator.join()


def simulation_settings(config: Dict[str, Any], settings: SessionSettings) -> SessionSettings:
    """
    Session settings for a simulated run.

    The last participant beeps on the final slot, so the coordinator keeps
    listening after it: [simulation] listen_tail_ms if set, else the
    session's own tail, else one beat interval.
    """
    sim_config = config_section(config, 'simulation')
    tail_ms = config_value(sim_config, 'listen_tail_ms', None, float, 'simulation')
    if tail_ms is None:
        tail_ms = settings.listen_tail_ms or settings.beat_interval_ms
    tuned = dataclasses.replace(settings, listen_tail_ms=tail_ms)
    tuned.validate()
    return tuned


def run_simulation(
    config: Dict[str, Any],
    role_table: RoleTable,
    settings: SessionSettings
) -> Tuple[SyncReport, OffsetTracker]:
    """
    Run the coordinator and every participant in one AcousticRoom.

    Participant i starts `participant_delays_ms[i-1]` after the coordinator
    (negative = before), which is the offset the coordinator should measure.

    Returns:
        (coordinator's SyncReport, OffsetTracker fed with its reports)
    """
    sim_config = config_section(config, 'simulation')
    analyzer_config = config_section(config, 'analyzer')
    settings = simulation_settings(config, settings)

    delays: List[float] = config_value(
        sim_config, 'participant_delays_ms', DEFAULT_PARTICIPANT_DELAYS_MS,
        lambda values: [float(d) for d in values], 'simulation'
    )
    participants = role_table.participants
    delays = (delays + [0.0] * len(participants))[:len(participants)]

    room = AcousticRoom(
        sample_rate=config_value(analyzer_config, 'sample_rate', DEFAULT_SAMPLE_RATE, int, 'analyzer'),
        noise_floor_db=config_value(sim_config, 'noise_floor_db', DEFAULT_NOISE_FLOOR_DB, float, 'simulation'),
        seed=config_value(sim_config, 'seed', None, int, 'simulation'),
    )
    fft_size = config_value(analyzer_config, 'fft_size', DEFAULT_FFT_SIZE, int, 'analyzer')
    floor_db = config_value(analyzer_config, 'floor_db', DEFAULT_FLOOR_DB, float, 'analyzer')

    def make_device(name: str) -> SyncCoordinator:
        room.add_device(name)
        return SyncCoordinator(
            role_table,
            room.emitter_for(name),
            room.analyzer_for(name, fft_size=fft_size, floor_db=floor_db),
            settings,
            clock=room.device_clock(name),
        )

    coordinator = make_device('COORDINATOR')
    tracker = OffsetTracker()
    coordinator.on_offset_report(tracker)

    # (start offset ms, device, participant index or None for the coordinator)
    schedule: List[Tuple[float, SyncCoordinator, Optional[int]]] = [(0.0, coordinator, None)]
    for role, delay in zip(participants, delays):
        schedule.append((delay, make_device(role.name), role.index))
    lead_ms = -min(0.0, min(d for d, _, _ in schedule))
    schedule.sort(key=lambda item: item[0])

    logger.info("=" * 60)
    logger.info("SIMULATION")
    for role, delay in zip(participants, delays):
        logger.info(f"  {role}: starts {delay:+.1f} ms relative to coordinator")
    logger.info("=" * 60)

    t0 = time.monotonic()
    for delay, device, index in schedule:
        wait_s = t0 + (lead_ms + delay) / 1000.0 - time.monotonic()
        if wait_s > 0:
            time.sleep(wait_s)
        if index is None:
            device.start_as_coordinator()
        else:
            device.start_as_participant(index)

    report = coordinator.join()
    for _, device, index in schedule:
        if index is not None:
            device.join()

    return report, tracker


def log_summary(report: SyncReport, tracker: OffsetTracker, role_table: RoleTable) -> None:
    summaries = tracker.summaries()
    logger.info("=" * 60)
    logger.info(f"Sync complete: {len(report.reports)} offset reports "
                f"({report.stop_reason.value if report.stop_reason else 'running'})")
    for role in role_table.participants:
        summary = summaries.get(role)
        if summary is None:
            logger.info(f"  {role}: not heard")
            continue
        logger.info(
            f"  {role}: median {summary.median_ms:+.1f} ms, mean {summary.mean_ms:+.1f} ms, "
            f"σ {summary.std_ms:.1f} ms over {summary.count} beeps "
            f"→ adjust {summary.adjustment_ms:+.1f} ms"
        )
    logger.info("=" * 60)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='beat-sync: Acoustic clock alignment across devices',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Coordinator on this machine
    beat-sync --coordinator

    # Participant 1 with a custom role table
    beat-sync --participant 1 --config /etc/beat-sync/sync.toml

    # Full session in a simulated room
    beat-sync --simulate --json
        """
    )

    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument(
        '--coordinator',
        action='store_true',
        help='Run as the coordinator (measures offsets)'
    )
    mode.add_argument(
        '--participant', '-p',
        type=int,
        metavar='N',
        help='Run as participant N (beeps on its slots)'
    )
    mode.add_argument(
        '--simulate',
        action='store_true',
        help='Run coordinator and all participants in a simulated room'
    )
    parser.add_argument(
        '--config', '-c',
        help='Path to TOML configuration file'
    )
    parser.add_argument(
        '--json',
        action='store_true',
        help='Print the session report as JSON'
    )
    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    args = parser.parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = load_config(args.config)
        role_table = RoleTable.from_config(config)
        settings = SessionSettings.from_config(config)

        if args.simulate:
            report, tracker = run_simulation(config, role_table, settings)
        else:
            coordinator = build_device_coordinator(config, role_table, settings)
            tracker = OffsetTracker()
            coordinator.on_offset_report(tracker)
            report = run_device_session(coordinator, args.participant)

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2
    except AudioDeviceError as e:
        logger.error(f"Audio device error: {e}")
        return 1

    if report.local_role is not None and report.local_role.is_coordinator:
        log_summary(report, tracker, role_table)

    if args.json:
        print(report.to_json())

    return 0


if __name__ == '__main__':
    sys.exit(main())
