import argparse
import json
import logging
import os
import re
import sys
from typing import Any, Dict, List, Optional

import yaml

from detection.signature_engine import DEFAULT_MATCH_TIMEOUT, SignatureMatcher
from extraction.targets import extract_directory, iter_source_files, read_source, targets_by_process
from extraction.workflow import build_alias_map
from quality.attribution import attribute_processes, format_verdict
from quality.evaluator import QualityEvaluator
from quality.publisher import ReportPublisher
from rules.assembly import DEFAULT_NAMESPACE, assemble_directory, write_rule_collection
from rules.store import RuleCollectionError, RuleStore
from telemetry.commands import read_command_log
from telemetry.completion_log import DEFAULT_PROCESS_TOKEN, DEFAULT_STATUS_MARKER, CompletionLogParser

logger = logging.getLogger(__name__)


def setup_logging(config: Dict[str, Any]):
    """Configure logging based on config."""
    log_config = config.get('logging', {})
    log_level = getattr(logging, str(log_config.get('level', 'INFO')).upper(), logging.INFO)
    log_file = log_config.get('file')

    # Report lines go to stdout, so diagnostics go to stderr.
    handlers = [logging.StreamHandler(sys.stderr)]

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )

    logging.getLogger('urllib3').setLevel(logging.WARNING)


def load_config(path: str) -> Dict[str, Any]:
    """Load YAML configuration file with environment variable expansion."""
    with open(path, 'r') as f:
        content = f.read()

    # Expand environment variables (${VAR_NAME} format)
    def expand_env_var(match):
        return os.environ.get(match.group(1), '')

    content = re.sub(r'\$\{([^}]+)\}', expand_env_var, content)
    return yaml.safe_load(content) or {}


def _write_json(data: Any, output: Optional[str]):
    text = json.dumps(data, indent=2, ensure_ascii=False)
    if not output:
        print(text)
        return
    directory = os.path.dirname(output)
    if directory and not os.path.exists(directory):
        os.makedirs(directory, exist_ok=True)
    with open(output, 'w', encoding='utf-8') as f:
        f.write(text)
    logger.info(f"Wrote {output}")


def _read_workflow_sources(paths: List[str]) -> List[str]:
    texts = []
    for root in paths:
        if not os.path.isdir(root):
            logger.warning(f"Workflow path does not exist: {root}")
            continue
        for path in iter_source_files(root):
            text = read_source(path)
            if text is not None:
                texts.append(text)
    return texts


def run_extract(config: Dict[str, Any], output: Optional[str]) -> int:
    extraction = config.get('extraction', {})
    targets = extract_directory(
        extraction.get('modules_path', 'modules'),
        template_dir=extraction.get('template_dir', 'templates'),
        max_workers=extraction.get('max_workers', 4),
    )
    _write_json([t.to_dict() for t in targets], output)
    return 0


def run_assemble(config: Dict[str, Any], input_dir: str, output: Optional[str]) -> int:
    rules_config = config.get('rules', {})
    if not os.path.isdir(input_dir):
        logger.error(f"Generator output directory not found: {input_dir}")
        return 1
    rules = assemble_directory(input_dir, namespace=rules_config.get('namespace', DEFAULT_NAMESPACE))
    write_rule_collection(rules, output or rules_config.get('path', 'results/rules.json'))
    return 0


def run_evaluate(config: Dict[str, Any], output: Optional[str]) -> int:
    extraction = config.get('extraction', {})
    rules_config = config.get('rules', {})
    telemetry = config.get('telemetry', {})

    try:
        store = RuleStore.from_config(rules_config)
        commands = read_command_log(telemetry['commands_path'])
        parser = CompletionLogParser(
            status_marker=telemetry.get('status_marker', DEFAULT_STATUS_MARKER),
            process_token=telemetry.get('process_token', DEFAULT_PROCESS_TOKEN),
        )
        logged = parser.read(telemetry['completion_log_path'])
    except (RuleCollectionError, OSError, KeyError) as e:
        logger.error(f"Cannot load evaluation inputs: {e}")
        return 1

    targets = extract_directory(
        extraction.get('modules_path', 'modules'),
        template_dir=extraction.get('template_dir', 'templates'),
        max_workers=extraction.get('max_workers', 4),
    )
    alias_map = build_alias_map(_read_workflow_sources(extraction.get('workflow_paths') or []))

    matcher = SignatureMatcher.from_store(store, timeout=rules_config.get('match_timeout', DEFAULT_MATCH_TIMEOUT))
    report = QualityEvaluator(matcher).evaluate(commands)
    attributions = attribute_processes(logged, alias_map, targets_by_process(targets), report)

    for attribution in attributions:
        print(format_verdict(attribution))

    processes = [a.to_dict() for a in attributions]
    summary = report.summary()
    if output:
        _write_json({'summary': summary, 'processes': processes}, output)

    reporting = config.get('reporting') or {}
    if reporting.get('webhook_url'):
        ReportPublisher(reporting).publish(processes, summary)

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Attribute captured commands to workflow processes')
    parser.add_argument('--config', '-c', default=os.environ.get('CONFIG_PATH', 'config/config.yaml'),
                        help='Path to YAML configuration')
    sub = parser.add_subparsers(dest='command', required=True)

    extract = sub.add_parser('extract', help='Locate script blocks in process definitions')
    extract.add_argument('--output', '-o', help='Write targets as JSON to this file')

    assemble = sub.add_parser('assemble', help='Build the rule collection from generator output')
    assemble.add_argument('input_dir', help='Directory of tagged generator output (.txt)')
    assemble.add_argument('--output', '-o', help='Rule collection path (defaults to rules.path)')

    evaluate = sub.add_parser('evaluate', help='Check rule quality against fixtures and telemetry')
    evaluate.add_argument('--output', '-o', help='Write the JSON report to this file')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if not os.path.exists(args.config):
        print(f"Error: Config file not found at {args.config}", file=sys.stderr)
        return 1

    config = load_config(args.config)
    setup_logging(config)

    if args.command == 'extract':
        return run_extract(config, args.output)
    if args.command == 'assemble':
        return run_assemble(config, args.input_dir, args.output)
    return run_evaluate(config, args.output)


if __name__ == '__main__':
    sys.exit(main())
