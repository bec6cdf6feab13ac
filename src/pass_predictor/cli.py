"""
Command-line interface for the pass predictor.

This module provides a CLI for predicting passes, estimating brightness
and finding eclipse transitions from the command line.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional
import json
import logging

import click

from .brightness import BrightnessEstimator
from .config import PredictionConfig, load_config
from .eclipse import EclipseTransitionFinder
from .geometry import GroundStation
from .orbit import SatelliteOrbit
from .parallel import ParallelPassCalculator
from .passes import Pass, PassFinder, PassMode
from .utils import (
    setup_logging, parse_datetime, download_tle_file,
    get_common_tle_sources, get_current_utc, format_duration
)

logger = logging.getLogger(__name__)

_USER_ERRORS = (ValueError, FileNotFoundError, OSError)


def _station(lat: float, lon: float, height: float, name: str) -> GroundStation:
    return GroundStation(latitude=lat, longitude=lon, height=height, name=name)


def _print_pass_table(passes: List[Pass]) -> None:
    for index, p in enumerate(passes, 1):
        if p.mode == PassMode.ELEVATION:
            detail = (
                f"max {p.max_elevation:5.1f}°  "
                f"az {p.azimuth_start:5.1f}° → {p.azimuth_apex:5.1f}° → {p.azimuth_end:5.1f}°"
            )
        else:
            detail = f"min dist {p.min_distance:7.1f} km"
        flags = []
        if p.ground_station_dark_at_start or p.ground_station_dark_at_end:
            flags.append("dark sky")
        if p.satellite_eclipsed_at_start and p.satellite_eclipsed_at_end and not p.eclipse_transitions:
            flags.append("eclipsed")
        elif p.eclipse_transitions:
            flags.append(f"{len(p.eclipse_transitions)} shadow transition(s)")
        click.echo(
            f"{index:3d}. {p.start.strftime('%Y-%m-%d %H:%M:%S')} - {p.end.strftime('%H:%M:%S')} UTC "
            f"({format_duration(p.duration_seconds)})  {detail}"
            + (f"  [{', '.join(flags)}]" if flags else "")
        )


@click.group()
@click.option('--log-level', default='WARNING',
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']),
              help='Set logging level')
@click.option('--log-file', type=click.Path(), help='Log file path')
@click.option('--config', 'config_path', type=click.Path(exists=True),
              help='YAML prediction settings')
@click.pass_context
def main(ctx: click.Context, log_level: str, log_file: Optional[str], config_path: Optional[str]) -> None:
    """Satellite Pass Predictor - predict passes, eclipses and brightness."""
    setup_logging(log_level, log_file)
    ctx.ensure_object(dict)
    try:
        ctx.obj['config'] = load_config(config_path)
    except _USER_ERRORS as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)


def _config(ctx: click.Context) -> PredictionConfig:
    return (ctx.obj or {}).get('config') or PredictionConfig()


def _common_options(func: Any) -> Any:
    options = [
        click.option('--tle', required=True, type=click.Path(exists=True),
                     help='Path to TLE file'),
        click.option('--satellite', required=True,
                     help='Satellite name or NORAD id in the TLE file'),
        click.option('--lat', required=True, type=float, help='Ground station latitude (deg)'),
        click.option('--lon', required=True, type=float, help='Ground station longitude (deg)'),
        click.option('--height', default=0.0, type=float, help='Ground station height (m)'),
        click.option('--station-name', default='Ground Station', help='Ground station name'),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@main.command()
@_common_options
@click.option('--start-time', type=str,
              help='Start time (YYYY-MM-DD HH:MM:SS UTC, default: now)')
@click.option('--days', type=float, help='Search window in days (default: 7)')
@click.option('--min-elevation', type=float, help='Minimum elevation in degrees (default: 5)')
@click.option('--max-passes', type=int, help='Maximum number of passes (default: 50)')
@click.option('--swath-km', type=float, help='Swath width in km (switches to swath mode)')
@click.option('--parallel/--no-parallel', default=False, help='Compute on the worker pool')
@click.option('--format', 'output_format', default='table',
              type=click.Choice(['table', 'json']), help='Output format')
@click.pass_context
def passes(
    ctx: click.Context,
    tle: str,
    satellite: str,
    lat: float,
    lon: float,
    height: float,
    station_name: str,
    start_time: Optional[str],
    days: Optional[float],
    min_elevation: Optional[float],
    max_passes: Optional[int],
    swath_km: Optional[float],
    parallel: bool,
    output_format: str,
) -> None:
    """Predict passes of a satellite over a ground station.

    Example:
    passes --tle stations.tle --satellite "ISS (ZARYA)" --lat 48.1 --lon 11.6
    """
    config = _config(ctx)
    try:
        sat = SatelliteOrbit.from_tle_file(tle, satellite)
        station = _station(lat, lon, height, station_name)
        start = parse_datetime(start_time) if start_time else get_current_utc()
        end = start + timedelta(days=days if days is not None else config.search_days)

        staleness = sat.check_staleness(
            aging_days=config.aging_epoch_days, stale_days=config.stale_epoch_days
        )

        if parallel:
            with ParallelPassCalculator(config) as calculator:
                if swath_km:
                    result = calculator.compute_passes_swath(sat, station, swath_km, start, end, max_passes)
                else:
                    result = calculator.compute_passes_elevation(sat, station, start, end, min_elevation, max_passes)
        else:
            finder = PassFinder(sat, config)
            if swath_km:
                result = finder.compute_passes_swath(station, swath_km, start, end, max_passes)
            else:
                result = finder.compute_passes_elevation(station, start, end, min_elevation, max_passes)
    except _USER_ERRORS as e:
        logger.error(f"Pass prediction failed: {e}")
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    if output_format == 'json':
        output: Dict[str, Any] = {
            "satellite": sat.satellite_name,
            "groundStation": station.to_dict(),
            "staleness": staleness.to_dict(),
            "passes": [p.to_dict() for p in result],
        }
        click.echo(json.dumps(output, indent=2))
        return

    if staleness.status.value != "fresh":
        click.echo(f"Note: {staleness.reason}", err=True)
    if not result:
        click.echo(f"No passes found for {sat.satellite_name} over {station}")
        return
    click.echo(f"Passes of {sat.satellite_name} over {station}:")
    _print_pass_table(result)


@main.command()
@_common_options
@click.option('--time', 'at_time', type=str,
              help='Instant (YYYY-MM-DD HH:MM:SS UTC); default: peak of the next pass')
@click.option('--std-mag', type=float, help='Override the standard magnitude')
@click.pass_context
def brightness(
    ctx: click.Context,
    tle: str,
    satellite: str,
    lat: float,
    lon: float,
    height: float,
    station_name: str,
    at_time: Optional[str],
    std_mag: Optional[float],
) -> None:
    """Estimate the visual magnitude of a satellite."""
    config = _config(ctx)
    try:
        sat = SatelliteOrbit.from_tle_file(tle, satellite)
        station = _station(lat, lon, height, station_name)
        estimator = BrightnessEstimator(sat, standard_magnitude=std_mag)

        if at_time:
            record = estimator.estimate_visual_magnitude(parse_datetime(at_time), station)
            if not record.ok:
                click.echo(f"No position for {sat.satellite_name}: {record.message}", err=True)
                raise SystemExit(1)
            peak = record.unwrap()
        else:
            start = get_current_utc()
            upcoming = PassFinder(sat, config).compute_passes_elevation(
                station, start, start + timedelta(days=config.search_days), max_passes=1
            )
            if not upcoming:
                click.echo(f"No upcoming passes for {sat.satellite_name}")
                return
            next_pass = upcoming[0]
            click.echo(f"Next pass: {next_pass}")
            peak = estimator.estimate_peak_brightness(
                next_pass.start, next_pass.end, station, config.brightness_samples
            )
            if peak is None:
                click.echo("Satellite is not visible during this pass (eclipsed)")
                return
    except _USER_ERRORS as e:
        logger.error(f"Brightness estimate failed: {e}")
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    if peak.is_visible:
        click.echo(f"Magnitude {peak.magnitude:.1f} at {peak.time.strftime('%Y-%m-%d %H:%M:%S')} UTC")
    else:
        click.echo(f"Not visible at {peak.time.strftime('%Y-%m-%d %H:%M:%S')} UTC")
    click.echo(f"Range:       {peak.range_km:.0f} km")
    click.echo(f"Phase angle: {peak.phase_angle_deg:.1f}°")
    click.echo(f"In shadow:   {'yes' if peak.is_in_shadow else 'no'}")


@main.command()
@click.option('--tle', required=True, type=click.Path(exists=True),
              help='Path to TLE file')
@click.option('--satellite', required=True,
              help='Satellite name or NORAD id in the TLE file')
@click.option('--start-time', type=str,
              help='Start time (YYYY-MM-DD HH:MM:SS UTC, default: now)')
@click.option('--minutes', default=100.0, type=float,
              help='Window length in minutes (default: 100)')
@click.pass_context
def eclipse(ctx: click.Context, tle: str, satellite: str, start_time: Optional[str], minutes: float) -> None:
    """List shadow entries and exits over a time window."""
    config = _config(ctx)
    try:
        sat = SatelliteOrbit.from_tle_file(tle, satellite)
        start = parse_datetime(start_time) if start_time else get_current_utc()
        end = start + timedelta(minutes=minutes)
        finder = EclipseTransitionFinder(
            sat, bucket_seconds=config.eclipse_bucket_s, cache_size=config.eclipse_cache_size
        )
        transitions = finder.find_transitions(start, end, config.transition_precision_s)
    except _USER_ERRORS as e:
        logger.error(f"Eclipse search failed: {e}")
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)

    state = "in shadow" if finder.is_in_shadow(start) else "sunlit"
    click.echo(f"{sat.satellite_name} is {state} at {start.strftime('%Y-%m-%d %H:%M:%S')} UTC")
    if not transitions:
        click.echo("No shadow transitions in the window")
    for transition in transitions:
        event = "enters shadow" if transition.to_shadow else "leaves shadow"
        click.echo(f"  {transition.time.strftime('%Y-%m-%d %H:%M:%S')} UTC  {event}")


@main.command()
@click.option('--source', default='celestrak_stations',
              help='TLE source name (see list-sources) or URL')
@click.option('--output', required=True, type=click.Path(),
              help='Output TLE file path')
def fetch_tle(source: str, output: str) -> None:
    """Download TLE data from a known source or URL."""
    sources = get_common_tle_sources()
    if source.startswith(('http://', 'https://')):
        download_url = source
    elif source in sources:
        download_url = sources[source]
    else:
        click.echo(f"Unknown source: {source}. Available: {', '.join(sources)}", err=True)
        raise SystemExit(1)

    click.echo(f"Downloading TLE data from {download_url}")
    if download_tle_file(download_url, output):
        click.echo(f"TLE data saved to: {output}")
    else:
        click.echo("Download failed", err=True)
        raise SystemExit(1)


@main.command()
def list_sources() -> None:
    """List available TLE data sources."""
    sources = get_common_tle_sources()

    click.echo("Available TLE sources:")
    for name, url in sources.items():
        click.echo(f"  {name:<20} {url}")


if __name__ == '__main__':
    main()
