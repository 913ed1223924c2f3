"""
Command Line Interface for disfit
Main entry point with argument parsing and command execution
"""

import argparse
import atexit
import os
import signal
import sys
import traceback
from pathlib import Path

from .logger_setup import setup_logging
from .config_manager import ConfigManager
from .error_handler import ErrorHandler, TranscodeError
from .naming import derive_work_paths
from .pass_controller import PassController
from .bitrate_allocator import BYTES_PER_MB
from .temp_file_manager import TempFileManager

logger = None  # Will be initialized after logging setup

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130


class DisfitCLI:
    def __init__(self):
        self.config = None
        self.error_handler = ErrorHandler()

    def main(self, argv=None) -> int:
        """Main entry point; returns the process exit code"""
        global logger
        args = self._parse_arguments(argv)

        effective_level = 'DEBUG' if args.debug else args.log_level
        logger = setup_logging(os.path.join(args.config_dir, 'logging.yaml'), log_level=effective_level)

        self._setup_signal_handlers()
        atexit.register(TempFileManager.cleanup)

        try:
            self._validate_arguments(args)
            self._initialize_components(args)
            return self._execute(args)
        except KeyboardInterrupt:
            logger.info("Operation cancelled by user")
            pending = TempFileManager.list_temp_files()
            if pending:
                logger.info(f"Removing {len(pending)} intermediate file(s): "
                            f"{', '.join(p.name for p in pending)}")
            TempFileManager.cleanup()
            return EXIT_INTERRUPTED
        except TranscodeError as e:
            error = self.error_handler.handle_error(e, args.input)
            for suggestion in error.suggestions:
                logger.info(f"  • {suggestion}")
            self._log_error_summary()
            return EXIT_ERROR
        except Exception as e:
            self.error_handler.handle_error(e, args.input)
            logger.debug(traceback.format_exc())
            self._log_error_summary()
            return EXIT_ERROR

    def _log_error_summary(self):
        summary = self.error_handler.get_error_summary()
        categories = ', '.join(f"{name}={count}" for name, count in summary['by_category'].items())
        logger.debug(f"Error summary: {summary['total_errors']} error(s) ({categories}), "
                     f"{summary['retryable_errors']} retryable")

    def _setup_signal_handlers(self):
        """Turn SIGTERM into the same cancellation path as Ctrl+C"""
        def signal_handler(signum, frame):
            raise KeyboardInterrupt(signal.Signals(signum).name)

        if hasattr(signal, 'SIGTERM'):
            signal.signal(signal.SIGTERM, signal_handler)

    def _parse_arguments(self, argv=None) -> argparse.Namespace:
        """Parse command line arguments"""
        parser = argparse.ArgumentParser(
            prog='disfit',
            description="Re-encode a video until it fits under a size limit",
            epilog="Examples:\n"
                   "  %(prog)s clip.mkv 25\n"
                   "  %(prog)s clip.mp4 8 --output small.mp4 --max-attempts 4\n",
            formatter_class=argparse.RawDescriptionHelpFormatter
        )
        parser.add_argument('input', help='Media file to compress')
        parser.add_argument('size_mb', type=float, help='Maximum output size in MB (1MB = 1024*1024 bytes)')
        parser.add_argument('-o', '--output',
                            help='Final output path (default: discord_ready_video.mp4 beside the input)')
        parser.add_argument('--config-dir', default='config',
                            help='Configuration directory (default: config, then packaged defaults)')
        parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                            default=None, help='Override console logging level')
        parser.add_argument('-v', '--debug', action='store_true',
                            help='Enable verbose debug output in console and logs')
        parser.add_argument('--max-attempts', type=int, metavar='N',
                            help='Give up after N over-budget attempts')
        parser.add_argument('--shrink-divisor', type=float, metavar='D',
                            help='Shrink the target by measured_size / D after each overshoot')
        parser.add_argument('--min-video-bitrate', type=float, metavar='KBPS',
                            help='Refuse to encode video below this bitrate')
        parser.add_argument('--keep-intermediate', action='store_true', default=None,
                            help='Keep the intermediate audio artifact')
        return parser.parse_args(argv)

    def _validate_arguments(self, args):
        if not os.path.isfile(args.input):
            raise TranscodeError(f"Input file not found: {args.input}", path=args.input)
        if args.size_mb <= 0:
            raise TranscodeError(f"Target size must be positive, got {args.size_mb}MB")
        if args.max_attempts is not None and args.max_attempts < 1:
            raise TranscodeError(f"--max-attempts must be at least 1, got {args.max_attempts}")

    def _initialize_components(self, args):
        """Load configuration and apply command line overrides"""
        self.config = ConfigManager(args.config_dir)
        self.config.update_from_args({
            'size_fit.max_attempts': args.max_attempts,
            'size_fit.shrink_divisor': args.shrink_divisor,
            'size_fit.video.min_bitrate_kbps': args.min_video_bitrate,
            'size_fit.keep_intermediate': args.keep_intermediate,
        })
        issues = self.config.validate_configuration_values()
        if issues:
            for issue in issues:
                logger.error(f"Configuration issue: {issue}")
            raise TranscodeError(f"{len(issues)} configuration issue(s) found")
        if args.debug:
            self.config.log_active_configuration()

    def _execute(self, args) -> int:
        source = Path(args.input)
        target_bytes = int(args.size_mb * BYTES_PER_MB)
        work_paths = derive_work_paths(source, args.output)

        controller = PassController(self.config.get_transcode_settings())
        result = controller.run(source, target_bytes,
                                output_path=work_paths.pass_output_path,
                                audio_path=work_paths.audio_path)

        if result == source:
            logger.info(f"Input already fits: {source}")
            print(source)
            return EXIT_OK

        os.replace(result, work_paths.final_path)
        size = os.path.getsize(work_paths.final_path)
        logger.info(f"Wrote {work_paths.final_path} ({size / BYTES_PER_MB:.2f}MB) "
                    f"after {len(controller.passes)} attempt(s)")
        print(work_paths.final_path)
        return EXIT_OK


def main(argv=None):
    """Entry point for the CLI application"""
    cli = DisfitCLI()
    sys.exit(cli.main(argv))


if __name__ == '__main__':
    main()
