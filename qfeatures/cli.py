"""Command-line interface for qfeatures.

Builds a linked multi-assay container from a flat table, aggregates it level
by level, filters and subsets it, and writes the long-form result.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

import yaml

from . import __version__
from .aggregation import aggregate_features
from .container import QFeatures
from .data_io import export_long_form, load_sample_metadata, read_features
from .errors import QFeaturesError
from .filtering import filter_features
from .subsetting import subset_by_feature

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )


def load_config(config_path: Path | None) -> dict:
    """Load configuration from YAML file or return defaults."""
    defaults = {
        'input': {
            'assay_name': 'psms',
            'quant_columns': None,     # list of column names
            'quant_pattern': None,     # or a regex selecting them
            'row_id_column': None,
            'sample_column': 'sample',  # sample id column of the metadata file
        },
        # Ordered aggregation steps, each:
        # {source, group_by, name, method, sep}
        'aggregation': [],
        'filters': [],
        'subset': {
            'features': [],
        },
        'output': {
            'format': 'parquet',
            'assays': None,
            'row_vars': [],
            'col_vars': [],
        },
    }

    if config_path and Path(config_path).exists():
        with open(config_path) as f:
            user_config = yaml.safe_load(f) or {}
        # Deep merge user config over defaults
        defaults = _deep_merge(defaults, user_config)

    return defaults


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge override dict into base dict."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def build_container(input_path: Path, config: dict, metadata_path: Path | None = None) -> QFeatures:
    """Ingest the input table as configured."""
    input_cfg = config['input']
    quant_cols = input_cfg.get('quant_columns') or input_cfg.get('quant_pattern')
    if not quant_cols:
        raise ValueError("Config must set input.quant_columns or input.quant_pattern")

    col_data = None
    if metadata_path is not None:
        col_data = load_sample_metadata(metadata_path, sample_col=input_cfg['sample_column'])

    return read_features(
        input_path,
        quant_cols,
        name=input_cfg['assay_name'],
        row_id_col=input_cfg.get('row_id_column'),
        col_data=col_data,
    )


def run_steps(container: QFeatures, config: dict) -> tuple[QFeatures, list[str]]:
    """Apply the configured aggregation, filter and subset steps in order."""
    method_log = []

    for step in config.get('aggregation') or []:
        container = aggregate_features(
            container,
            source=step['source'],
            group_by=step['group_by'],
            name=step['name'],
            fn=step.get('method', 'mean'),
            sep=step.get('sep', ';'),
            **(step.get('params') or {}),
        )
        method_log.append(
            f"Aggregated {step['source']} -> {step['name']} by {step['group_by']} "
            f"({step.get('method', 'mean')})"
        )

    filters = config.get('filters') or []
    if filters:
        container = filter_features(container, filters)
        method_log.append(f"Filtered features: {' & '.join(filters)}")

    features = (config.get('subset') or {}).get('features') or []
    if features:
        container = subset_by_feature(container, features)
        method_log.append(f"Subset to features: {', '.join(map(str, features))}")

    return container, method_log


def generate_run_metadata(
    container: QFeatures,
    config: dict,
    input_path: Path,
    method_log: list[str],
) -> dict:
    """Summarize a run for metadata.json."""
    return {
        'qfeatures_version': __version__,
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'input': str(input_path),
        'processing_steps': method_log,
        'assays': {
            name: {'n_rows': container[name].n_rows, 'n_samples': container[name].n_samples}
            for name in container.names
        },
        'links': [
            {'parent': link.parent, 'child': link.child, 'n_rows': len(link)}
            for link in container.links
        ],
        'config': config,
    }


def cmd_run(args: argparse.Namespace) -> int:
    """Run the configured pipeline and write outputs."""
    config = load_config(Path(args.config) if args.config else None)
    input_path = Path(args.input)
    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    metadata_path = Path(args.metadata) if args.metadata else None
    container = build_container(input_path, config, metadata_path)
    container, method_log = run_steps(container, config)

    output_cfg = config['output']
    suffix = {'parquet': '.parquet', 'tsv': '.tsv', 'csv': '.csv'}.get(output_cfg['format'])
    if suffix is None:
        raise ValueError(f"Unknown output format: {output_cfg['format']}")
    long_path = export_long_form(
        container,
        output_dir / f"long_form{suffix}",
        names=output_cfg.get('assays'),
        row_vars=output_cfg.get('row_vars'),
        col_vars=output_cfg.get('col_vars'),
    )

    metadata = generate_run_metadata(container, config, input_path, method_log)
    metadata_output = output_dir / "metadata.json"
    with open(metadata_output, 'w') as f:
        json.dump(metadata, f, indent=2, default=str)
    logger.info(f"Saved run metadata to {metadata_output}")

    logger.info("=" * 60)
    logger.info("qfeatures run complete")
    logger.info("=" * 60)
    for step in method_log:
        logger.info(f"  {step}")
    logger.info(f"Long-form output: {long_path}")

    return 0


def cmd_summary(args: argparse.Namespace) -> int:
    """Ingest, apply configured steps and print assay dimensions."""
    config = load_config(Path(args.config) if args.config else None)
    container = build_container(Path(args.input), config)
    container, _ = run_steps(container, config)
    print(container.dims().to_string())
    for link in container.links:
        print(f"{link.parent} -> {link.child}: {len(link)} linked rows")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog='qfeatures',
        description='qfeatures: linked quantitative feature tables\n\n'
                    'Aggregate PSMs to peptides to proteins while recording which\n'
                    'rows fed which, then filter or subset all levels consistently.\n\n'
                    'Primary usage:\n'
                    '  qfeatures run -i psms.tsv -o output_dir/ -c config.yaml',
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Verbose output')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    run_parser = subparsers.add_parser(
        'run',
        help='Ingest, aggregate, filter and export',
        description='Build the container from a flat table, run the configured '
                    'aggregation/filter/subset steps and write the long-form table.',
    )
    run_parser.add_argument('-i', '--input', required=True,
                            help='Input table (CSV/TSV/Parquet)')
    run_parser.add_argument('-o', '--output-dir', required=True,
                            help='Output directory for results')
    run_parser.add_argument('-c', '--config', help='Configuration YAML file')
    run_parser.add_argument('-m', '--metadata', help='Sample metadata table')

    summary_parser = subparsers.add_parser('summary', help='Print assay dimensions')
    summary_parser.add_argument('-i', '--input', required=True, help='Input table')
    summary_parser.add_argument('-c', '--config', help='Configuration YAML file')

    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    try:
        if args.command == 'run':
            return cmd_run(args)
        elif args.command == 'summary':
            return cmd_summary(args)
        else:
            parser.print_help()
            return 1
    except (QFeaturesError, ValueError) as e:
        logger.error(str(e))
        return 1


if __name__ == '__main__':
    sys.exit(main())
