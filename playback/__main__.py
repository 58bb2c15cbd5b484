"""Command-line device runner.

Connects to the relay, joins a room as an existing device, follows relayed
playback commands and plays streamed audio on the local sound card.

Usage:
    python -m playback --room-id ROOM --device-id DEVICE [--stream high]
"""

import argparse
import asyncio
import logging
from typing import Any, Optional

from playback.jitter_buffer import JitterBuffer
from playback.player import Track, TrackPlayer
from playback.quality import STREAM_QUALITIES
from playback.relay_client import RelayClient
from playback.stream_sender import StreamSender
from playback.synchronizer import PlaybackSynchronizer
from server.config import get_config
from server.interfaces.playback import IAudioOutput
from server.logging_config import setup_logging

logger = logging.getLogger("playback")


def build_parser() -> argparse.ArgumentParser:
    config = get_config()
    parser = argparse.ArgumentParser(description="Run a SurroundSync playback device")
    parser.add_argument(
        "--url",
        default=f"ws://localhost:{config.port}/ws",
        help="Relay WebSocket URL (default: %(default)s)",
    )
    parser.add_argument("--room-id", required=True, help="Room to join")
    parser.add_argument("--device-id", required=True, help="Device record to bind as")
    parser.add_argument(
        "--stream",
        choices=sorted(STREAM_QUALITIES),
        help="Stream the local capture device at this quality",
    )
    parser.add_argument("--output-device", help="PortAudio output device (index or name)")
    parser.add_argument("--input-device", help="PortAudio input device (index or name)")
    parser.add_argument("--track-title", help="Load a track with this title for synced playback")
    parser.add_argument("--track-artist", default="Unknown", help="Artist of the loaded track")
    parser.add_argument(
        "--track-duration", type=float, default=180.0, help="Track length in seconds"
    )
    parser.add_argument(
        "--status-interval", type=float, default=10.0, help="Seconds between status logs"
    )
    return parser


def _device_arg(value: str | None) -> int | str | None:
    if value is None:
        return None
    return int(value) if value.isdigit() else value


def apply_device_update(
    message: dict[str, Any],
    device_id: str,
    output: IAudioOutput,
    player: Optional[TrackPlayer] = None,
) -> bool:
    """Apply a relayed ``device-update`` addressed to this device.

    Returns:
        True if the message was for this device and was applied
    """
    if message.get("deviceId") != device_id:
        return False

    volume = message.get("volume", 100)
    is_muted = bool(message.get("isMuted"))
    output.set_gain(0.0 if is_muted else volume / 100.0)
    if player is not None:
        player.set_volume(volume)
        player.set_muted(is_muted)
    logger.info(f"Volume set to {volume} (muted={is_muted})")
    return True


async def run(args: argparse.Namespace) -> None:
    from playback.devices import SoundDeviceCapture, SoundDeviceOutput

    config = get_config()
    client = RelayClient(args.url)

    output = SoundDeviceOutput(device=_device_arg(args.output_device))
    jitter = JitterBuffer(output, lookahead_ms=config.jitter_lookahead_ms)
    synchronizer = PlaybackSynchronizer(send=client.send, lead_ms=config.sync_lead_ms)

    player = None
    if args.track_title:
        player = TrackPlayer(
            Track(args.track_title, args.track_artist, args.track_duration),
            volume=config.default_volume,
        )
        synchronizer.load(player)

    def on_device_update(message: dict[str, Any]) -> None:
        apply_device_update(message, args.device_id, output, player)

    def on_position_update(message: dict[str, Any]) -> None:
        if message.get("deviceId") == args.device_id:
            logger.info(f"Assigned audio role: {message.get('audioRole')}")

    def on_mode_change(message: dict[str, Any]) -> None:
        logger.info(f"Room audio mode: {message.get('mode')}")

    def on_song_update(message: dict[str, Any]) -> None:
        logger.info(f"Now playing: {message.get('title')} - {message.get('artist')}")

    unsubscribers = [
        synchronizer.attach(client),
        jitter.attach(client),
        client.subscribe("device-update", on_device_update),
        client.subscribe("position-update", on_position_update),
        client.subscribe("mode-change", on_mode_change),
        client.subscribe("current-song-update", on_song_update),
    ]

    await client.connect()
    await client.join_room(args.room_id, args.device_id)

    sender = None
    if args.stream:
        sender = StreamSender(
            SoundDeviceCapture(device=_device_arg(args.input_device)),
            send=client.send,
            quality=args.stream,
        )
        await sender.start()

    try:
        while client.is_connected:
            await asyncio.sleep(args.status_interval)
            logger.info(f"Playback: {synchronizer.get_stats()}")
            logger.info(f"Stream: {jitter.get_stats()}")
    finally:
        if sender is not None:
            await sender.stop()
        for unsubscribe in unsubscribers:
            unsubscribe()
        synchronizer.unload()
        jitter.close()
        output.close()
        await client.disconnect()


def main() -> None:
    """Main entry point."""
    args = build_parser().parse_args()
    setup_logging()
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
