"""Command-line runner for the EverVoice core: record, download models, transcribe."""

import argparse
import sys
import time

from evervoice import __app_name__, __version__
from evervoice.core.asr import (
    AVAILABLE_MODELS,
    ModelStore,
    TranscriptionEngine,
    get_model_by_name,
)
from evervoice.core.audio import DeviceCatalog, RecordingSession, WavExporter
from evervoice.core.errors import DownloadCancelled, EverVoiceError
from evervoice.core.settings import Settings
from evervoice.utils.logger import get_logger, shutdown_logging

logger = get_logger(__name__)


class App:
    """Wires the capture and model subsystems together."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.catalog = DeviceCatalog()
        self.exporter = WavExporter()
        self.session = RecordingSession(
            catalog=self.catalog, exporter=self.exporter, settings=settings.audio
        )
        self.store = ModelStore()
        self.engine = TranscriptionEngine(
            self.store,
            settings=settings,
            recordings_guard=self.exporter,
            on_state_change=lambda state, message: logger.info(
                f"Engine: {state.name} {message}"
            ),
        )

    def startup(self) -> None:
        removed = self.exporter.cleanup_old_recordings()
        if removed:
            logger.info(f"Removed {removed} stale recording(s)")

    def shutdown(self) -> None:
        self.session.close()
        self.engine.unload_model()

    def list_devices(self) -> None:
        for device in self.catalog.list_devices():
            marker = "*" if device.is_default else " "
            print(
                f"{marker} {device.name} "
                f"({device.channels} ch, {int(device.default_sample_rate)} Hz)"
            )

    def list_models(self) -> None:
        loaded = self.engine.loaded_model
        for status in self.store.get_all_model_status(
            loaded.name if loaded else None
        ):
            size = f"{status.file_size / 1e6:.0f} MB" if status.file_size else "-"
            flags = []
            if status.downloaded:
                flags.append("downloaded")
            if status.loaded:
                flags.append("loaded")
            if status.downloading:
                flags.append("downloading")
            print(f"{status.model:8} {size:>8}  {', '.join(flags)}")

    def download(self, name: str) -> None:
        descriptor = get_model_by_name(name)
        future = self.store.start_download(descriptor)
        try:
            while not future.done():
                progress = self.store.get_download_progress()
                if progress and progress.total_bytes:
                    percent = 100 * progress.downloaded_bytes / progress.total_bytes
                    speed = progress.speed_bytes_per_sec / 1e6
                    print(f"\r{percent:5.1f}%  {speed:.1f} MB/s", end="", flush=True)
                time.sleep(0.25)
        except KeyboardInterrupt:
            self.store.cancel_download()
        print()
        try:
            path = future.result()
        except DownloadCancelled:
            print("Download cancelled")
            return
        print(f"Installed {name} at {path}")

    def record(self, seconds: float, transcribe: bool) -> None:
        self.session.start_recording()
        print("Recording... (Ctrl+C to stop)")
        deadline = time.monotonic() + seconds if seconds else None
        try:
            while not self.session.max_duration_reached():
                if deadline and time.monotonic() >= deadline:
                    break
                if self.session.has_stream_error():
                    break
                print(f"\rLevel: {self.session.get_level():3d}", end="", flush=True)
                time.sleep(0.05)
        except KeyboardInterrupt:
            pass
        print()

        stream_error = self.session.get_stream_error()
        if stream_error:
            self.session.clear_stream_error()
            raise SystemExit(f"Recording failed: {stream_error}")

        result = self.session.stop_recording()
        print(f"Saved {result.duration_ms} ms to {result.file_path}")

        if not transcribe:
            return
        try:
            self.transcribe(result.file_path)
        finally:
            if result.privacy_mode:
                self.exporter.delete_recording(result.file_path)

    def transcribe(self, path: str) -> None:
        result = self.engine.transcribe(path)
        for segment in result.segments:
            print(f"[{segment.start_ms / 1000:7.2f}s] {segment.text}")
        print(
            f"\n{result.text}\n"
            f"(language: {result.language}, {result.processing_time_ms} ms)"
        )


def main() -> None:
    parser = argparse.ArgumentParser(
        description=f"{__app_name__} - local speech-to-text",
    )
    parser.add_argument(
        "--version", action="version", version=f"{__app_name__} v{__version__}"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("devices", help="List audio input devices")
    subparsers.add_parser("models", help="Show model download status")

    download = subparsers.add_parser("download", help="Download a model")
    download.add_argument("model", choices=[m.name for m in AVAILABLE_MODELS])

    record = subparsers.add_parser("record", help="Record from the microphone")
    record.add_argument(
        "--seconds",
        type=float,
        default=0,
        help="Stop after this many seconds (default: until Ctrl+C or max duration)",
    )
    record.add_argument(
        "--no-transcribe", action="store_true", help="Only save the recording"
    )

    transcribe = subparsers.add_parser("transcribe", help="Transcribe a recording")
    transcribe.add_argument("path", help="WAV file inside the recordings directory")

    args = parser.parse_args()

    app = App(Settings.load())
    app.startup()
    try:
        if args.command == "devices":
            app.list_devices()
        elif args.command == "models":
            app.list_models()
        elif args.command == "download":
            app.download(args.model)
        elif args.command == "record":
            app.record(args.seconds, transcribe=not args.no_transcribe)
        elif args.command == "transcribe":
            app.transcribe(args.path)
    except EverVoiceError as e:
        logger.error(f"Application error: {e}")
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        app.shutdown()
        shutdown_logging()


if __name__ == "__main__":
    main()
