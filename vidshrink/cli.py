"""
Command Line Interface for vidshrink
Main entry point with argument parsing and command execution
"""

import argparse
import os
import signal
import sys
import threading
import traceback
from concurrent.futures import TimeoutError as FutureTimeout
from typing import List, Optional

from tqdm import tqdm

from .config_manager import ConfigManager, get_packaged_config_dir
from .error_handler import ErrorHandler
from .errors import CompressionError, ErrorCategory
from .logger_setup import setup_logging
from .models import CompressionOptions, ProgressEvent, QualityPreset
from .video_compressor import CompressionJob, VideoCompressor

logger = None  # Initialized after logging setup

# Poll interval for the main thread while a job runs; keeps SIGINT responsive
JOB_WAIT_SECONDS = 0.5


class VidshrinkCLI:
    def __init__(self):
        self.config: Optional[ConfigManager] = None
        self.compressor: Optional[VideoCompressor] = None
        self.error_handler = ErrorHandler()
        self.current_job: Optional[CompressionJob] = None
        # Shutdown tracking
        self.shutdown_requested = False
        self.shutdown_lock = threading.Lock()

    def main(self, argv: Optional[List[str]] = None) -> int:
        """Main entry point; returns the process exit code"""
        global logger
        args = self._parse_arguments(argv)
        try:
            effective_level = 'DEBUG' if args.debug else args.log_level
            logger = setup_logging(self._logging_config_path(args.config_dir), log_level=effective_level)

            self._initialize_components(args)
            self._setup_signal_handlers()

            if args.command == 'info':
                return self._show_info()
            return self._compress_files(args)

        except KeyboardInterrupt:
            if logger:
                logger.info("Operation cancelled by user")
            return 130
        except CompressionError as e:
            if logger:
                logger.error(f"{e.category.value}: {e}")
            else:
                print(f"Error: {e}")
            return 1
        except Exception as e:
            if logger:
                logger.error(f"Unexpected error: {e}")
                logger.debug(traceback.format_exc())
            else:
                print(f"Error: {e}")
            return 1

    @staticmethod
    def _logging_config_path(config_dir: Optional[str]) -> str:
        if config_dir:
            candidate = os.path.join(config_dir, 'logging.yaml')
            if os.path.exists(candidate):
                return candidate
        return os.path.join(get_packaged_config_dir(), 'logging.yaml')

    def _parse_arguments(self, argv: Optional[List[str]] = None) -> argparse.Namespace:
        """Parse command line arguments"""
        parser = argparse.ArgumentParser(
            prog='vidshrink',
            description="vidshrink - Compress videos for in-browser playback and upload",
            epilog="Examples:\n"
                   "  %(prog)s compress clip.mov -o compressed/\n"
                   "  %(prog)s c a.mp4 b.mkv --quality high --max-width 1280\n"
                   "  %(prog)s c clip.mp4 --max-bitrate 2.5 --codec h264\n"
                   "  %(prog)s info\n",
            formatter_class=argparse.RawDescriptionHelpFormatter
        )

        # Global options
        parser.add_argument('--config-dir', default=None,
                            help='Directory with compression.yaml/logging.yaml overriding the packaged defaults')
        parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                            default=None, help='Override console logging level (default: WARNING)')
        parser.add_argument('-v', '--debug', action='store_true',
                            help='Enable verbose debug output in console and logs')

        subparsers = parser.add_subparsers(dest='command', help='Available commands')
        subparsers.required = True

        compress_parser = subparsers.add_parser('compress', aliases=['c'],
                                                help='Compress one or more video files')
        compress_parser.add_argument('inputs', nargs='+', metavar='INPUT', help='Input video file(s)')
        compress_parser.add_argument('-o', '--output-dir', default='output',
                                     help='Output directory (default: ./output)')
        compress_parser.add_argument('-q', '--quality', choices=[p.value for p in QualityPreset],
                                     default=QualityPreset.BALANCED.value,
                                     help='Quality preset (default: balanced)')
        compress_parser.add_argument('--max-width', type=int, metavar='PX', help='Maximum output width')
        compress_parser.add_argument('--max-height', type=int, metavar='PX', help='Maximum output height')
        compress_parser.add_argument('--max-bitrate', type=float, metavar='MBPS',
                                     help='Target bitrate in Mbps (switches from CRF to bitrate control)')
        compress_parser.add_argument('--codec', choices=['h265', 'vp9', 'h264'],
                                     help='Restrict negotiation to this codec (h264 is always available)')
        compress_parser.add_argument('--no-progress', action='store_true', help='Disable the progress bar')

        subparsers.add_parser('info', aliases=['i'], help='Show FFmpeg and codec capability information')

        args = parser.parse_args(argv)
        if args.command == 'c':
            args.command = 'compress'
        elif args.command == 'i':
            args.command = 'info'
        return args

    def _initialize_components(self, args: argparse.Namespace):
        self.config = ConfigManager(args.config_dir)
        if getattr(args, 'codec', None):
            self.config.update_from_args({'compression.codec_negotiation.supported_codecs': [args.codec]})
        if not self.config.validate_config():
            raise CompressionError("Configuration validation failed; see the log for details")
        self.compressor = VideoCompressor(self.config)

    def _setup_signal_handlers(self):
        """First SIGINT cancels the running job; a second one aborts FFmpeg and exits"""

        def signal_handler(signum, frame):
            with self.shutdown_lock:
                already_requested = self.shutdown_requested
                self.shutdown_requested = True

            if already_requested:
                print("\nInterrupted again, stopping FFmpeg and exiting...")
                if self.compressor:
                    self.compressor.engine.abort()
                sys.exit(130)

            print("\nCancelling... (press Ctrl+C again to force quit)")
            if logger:
                logger.info("Received interrupt, cancelling current compression")
            if self.current_job is not None:
                self.current_job.cancel()

        signal.signal(signal.SIGINT, signal_handler)
        if hasattr(signal, 'SIGTERM'):
            signal.signal(signal.SIGTERM, signal_handler)

    def _show_info(self) -> int:
        engine = self.compressor.engine
        print("=== FFMPEG ===")
        if not engine.is_supported():
            print(f"FFmpeg toolchain not found (ffmpeg={engine.ffmpeg_path}, ffprobe={engine.ffprobe_path})")
            return 1
        self.compressor.pipeline.ensure_loaded()
        print(f"Version: {engine.version}")
        print(f"Working storage: {engine.work_dir}")

        print("\n=== SYSTEM ===")
        for key, value in engine.get_system_info().items():
            print(f"{key}: {value}")

        print("\n=== CODECS (priority order) ===")
        report = self.compressor.negotiator.capability_report()
        for codec_id, supported in report.items():
            print(f"{codec_id}: {'supported' if supported else 'unavailable'}")
        print(f"Negotiated: {self.compressor.negotiator.negotiate().codec_id}")
        return 0

    def _compress_files(self, args: argparse.Namespace) -> int:
        options = CompressionOptions(
            max_width=args.max_width,
            max_height=args.max_height,
            max_bitrate_mbps=args.max_bitrate,
            quality_preset=args.quality,
        )
        os.makedirs(args.output_dir, exist_ok=True)

        successful = 0
        processed = 0
        for input_path in args.inputs:
            if self.shutdown_requested:
                logger.info("Shutdown requested, skipping remaining files")
                break
            processed += 1
            try:
                output_path = self._compress_one(input_path, args.output_dir, options, not args.no_progress)
            except (CompressionError, OSError) as e:
                error = self.error_handler.handle_error(e, input_path)
                if error.category is ErrorCategory.CANCELLED:
                    print(f"Cancelled: {input_path}")
                else:
                    print(f"Failed: {input_path} ({error.get_short_description()})")
                continue
            successful += 1
            print(f"Saved: {output_path}")

        if processed > 1 or successful < processed:
            self.error_handler.log_batch_summary(processed, successful)
        if self.shutdown_requested:
            return 130
        return 0 if successful == processed else 1

    def _compress_one(self, input_path: str, output_dir: str, options: CompressionOptions,
                      show_progress: bool) -> str:
        with open(input_path, 'rb') as f:
            data = f.read()
        filename = os.path.basename(input_path)
        size_mb = len(data) / (1024 * 1024)
        logger.info(f"Compressing {input_path} ({size_mb:.2f}MB, "
                    f"estimated {VideoCompressor.estimate_compression_time(size_mb)}s)")

        bar = tqdm(total=100, desc=filename, unit="%", disable=not show_progress,
                   bar_format="{l_bar}{bar}| {n:.0f}%")

        def on_progress(event: ProgressEvent):
            bar.set_postfix_str(event.stage.value, refresh=False)
            bar.update(event.percent - bar.n)

        try:
            self.current_job = self.compressor.start(data, filename, options, on_progress)
            while True:
                try:
                    result = self.current_job.result(timeout=JOB_WAIT_SECONDS)
                    break
                except FutureTimeout:
                    continue
        finally:
            self.current_job = None
            bar.close()

        output_path = os.path.join(output_dir, result.output_filename)
        if os.path.abspath(output_path) == os.path.abspath(input_path):
            stem, ext = os.path.splitext(result.output_filename)
            output_path = os.path.join(output_dir, f"{stem}_compressed{ext}")
        with open(output_path, 'wb') as f:
            f.write(result.output_bytes)

        logger.info(f"{input_path} -> {output_path}: {result.compression_ratio_percent:.1f}% smaller, "
                    f"{result.codec_id} {result.output_width}x{result.output_height}")
        return output_path


def main(argv: Optional[List[str]] = None):
    """Entry point for the CLI application"""
    cli = VidshrinkCLI()
    sys.exit(cli.main(argv))


if __name__ == '__main__':
    main()
