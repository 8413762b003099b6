"""Command-line batch runner for the intake pipeline.

Exit codes: 0 when every document was filed or detected as a duplicate;
otherwise the highest code among the rejections (see EXIT_CODES).
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List

from .config import load_config
from .exceptions import ConfigurationError, IntakeError, InvalidRequest, RubricMismatch
from .models import IntakeRequest, IntakeResult, Status
from .pipeline import IntakePipeline

EXIT_OK = 0
EXIT_USAGE = 1

EXIT_CODES = {
    'InvalidRequest': EXIT_USAGE,
    'ConfigurationError': EXIT_USAGE,
    'InsufficientContent': 2,
    'ExtractionFailed': 3,
    'ExtractionTimeout': 4,
    'InvariantViolation': 5,
    'RubricMismatch': 6,
}


def setup_logging(log_level: str = 'INFO', log_file: str = 'logs/intake.log'):
    """Setup logging configuration."""
    handlers = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.insert(0, logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )


def exit_code_for(results: List[IntakeResult]) -> int:
    """Highest exit code among results; 0 when nothing was rejected."""
    code = EXIT_OK
    for result in results:
        if result.status is Status.REJECTED:
            code = max(code, EXIT_CODES.get(result.reason, EXIT_USAGE))
    return code


def read_requests(args) -> List[IntakeRequest]:
    """Build requests from --url/--text-file arguments or a JSON lines file.

    Raises:
        InvalidRequest: On malformed input
    """
    requests = []
    metadata = {
        'author_info': args.author,
        'publication_date': args.published,
        'validated_at': args.validated_at,
        'priority': args.priority,
    }

    for url in args.url or []:
        requests.append(IntakeRequest(url=url, **metadata))

    for path in args.text_file or []:
        try:
            raw_text = Path(path).read_text(encoding='utf-8')
        except OSError as e:
            raise InvalidRequest(f"Cannot read {path}: {e}") from e
        requests.append(IntakeRequest(raw_text=raw_text, **metadata))

    if args.batch:
        try:
            with open(args.batch, 'r', encoding='utf-8') as f:
                for line_no, line in enumerate(f, 1):
                    if not line.strip():
                        continue
                    try:
                        payload = json.loads(line)
                    except json.JSONDecodeError as e:
                        raise InvalidRequest(f"{args.batch}:{line_no}: invalid JSON: {e}") from e
                    requests.append(IntakeRequest.from_dict(payload))
        except OSError as e:
            raise InvalidRequest(f"Cannot read {args.batch}: {e}") from e

    if not requests:
        raise InvalidRequest("Nothing to process: pass --url, --text-file or --batch")
    return requests


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Run content intake and classification')
    parser.add_argument(
        '--config',
        default=None,
        help='Path to YAML configuration file'
    )
    parser.add_argument('--url', action='append', help='Source URL (repeatable)')
    parser.add_argument(
        '--text-file',
        action='append',
        help='File holding already-extracted text (repeatable)'
    )
    parser.add_argument(
        '--batch',
        help='JSON lines file of {"url"|"rawText", "metadata": {...}} requests'
    )
    parser.add_argument('--author', default=None, help='Author information')
    parser.add_argument('--published', default=None, help='Publication date (ISO 8601)')
    parser.add_argument(
        '--validated-at',
        default=None,
        help='Human validation timestamp (ISO 8601); required for the practice tier'
    )
    parser.add_argument(
        '--priority',
        choices=['high', 'medium', 'low'],
        default='medium',
        help='Intake priority'
    )
    parser.add_argument('--registry', default=None, help='Path to SQLite registry database')
    parser.add_argument('--strict', action='store_true', help='Reject instead of downgrading')
    parser.add_argument('--workers', type=int, default=None, help='Concurrent documents')
    parser.add_argument('--output', default=None, help='Write results JSON here')
    parser.add_argument('--summary-csv', default=None, help='Write a CSV result table here')
    parser.add_argument('--log-file', default='logs/intake.log', help='Log file path')
    return parser


def main(argv: List[str] = None) -> int:
    """Main execution function."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_USAGE

    setup_logging(config.output.get('log_level', 'INFO'), args.log_file)
    logger = logging.getLogger(__name__)

    if args.registry:
        config.registry_path = args.registry
    if args.strict:
        config.strict = True

    try:
        requests = read_requests(args)
    except InvalidRequest as e:
        logger.error(str(e))
        return EXIT_USAGE

    pipeline = IntakePipeline(config=config)

    try:
        results = pipeline.process_batch(requests, max_workers=args.workers)
    except RubricMismatch as e:
        logger.error(f"Rubric defect, nothing further processed: {e}")
        return EXIT_CODES[e.reason]
    except IntakeError as e:
        logger.error(f"{e.reason}: {e}")
        return EXIT_CODES.get(e.reason, EXIT_USAGE)

    for result in results:
        print(json.dumps(result.to_dict()))

    output = args.output or config.output.get('results')
    if output:
        Path(output).parent.mkdir(parents=True, exist_ok=True)
        pipeline.save_results(results, output)

    summary_csv = args.summary_csv or config.output.get('summary_csv')
    if summary_csv:
        Path(summary_csv).parent.mkdir(parents=True, exist_ok=True)
        pipeline.save_summary_csv(results, summary_csv)

    statistics = pipeline.compute_statistics(results)
    logger.info(f"Status distribution: {statistics['status_distribution']}")
    logger.info(f"Tier distribution: {statistics['tier_distribution']}")

    return exit_code_for(results)


if __name__ == '__main__':
    sys.exit(main())
