import functools

import click

from peak_classifier.augment import write_augmented_bed
from peak_classifier.classify import run as run_classify
from peak_classifier.config import (
    CHROM_ORDERS,
    DEFAULT_MIN_OVERLAP,
    JOIN_STRATEGIES,
    ClassifierConfig,
    parse_feature_list,
    parse_upstream_boundaries,
)
from peak_classifier.download import download_gff3
from peak_classifier.errors import PeakClassifierError
from peak_classifier.filter_overlaps import run as run_filter_overlaps


class PeakClassifierCLIError(click.ClickException):
    def __init__(self, err: PeakClassifierError):
        super().__init__(str(err))
        self.exit_code = err.exit_status


def _fatal_errors(f):
    """Report PeakClassifierError as a one-line message and its exit status."""

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except PeakClassifierError as e:
            raise PeakClassifierCLIError(e) from e

    return wrapper


def _config_options(f):
    options = [
        click.option(
            "--upstream-boundaries",
            default="1000,10000,100000",
            show_default=True,
            help="Comma-separated ascending distances (bp) delimiting the upstream bands.",
        ),
        click.option(
            "--min-peak-overlap",
            default=DEFAULT_MIN_OVERLAP,
            show_default=True,
            type=float,
            help="Minimum overlap as a fraction of the peak (0-1).",
        ),
        click.option(
            "--min-gff-overlap",
            default=DEFAULT_MIN_OVERLAP,
            show_default=True,
            type=float,
            help="Minimum overlap as a fraction of the feature (0-1).",
        ),
        click.option(
            "--min-either-overlap",
            is_flag=True,
            default=False,
            help="Accept a pair when either minimum is met, instead of both.",
        ),
        click.option(
            "--midpoints-only",
            is_flag=True,
            default=False,
            help="Collapse each peak to its midpoint base before joining.",
        ),
        click.option(
            "--feature-priority",
            default=None,
            help="Comma-separated feature names, highest priority first. "
            "Default: five_prime_UTR,three_prime_UTR,exon,intron,upstream<N>...,upstream-beyond",
        ),
        click.option(
            "--join",
            "join_strategy",
            default="internal",
            show_default=True,
            type=click.Choice(list(JOIN_STRATEGIES), case_sensitive=False),
            help="Join peaks internally or delegate to 'bedtools intersect'.",
        ),
        click.option(
            "--chrom-order",
            default="lexical",
            show_default=True,
            type=click.Choice(list(CHROM_ORDERS), case_sensitive=False),
            help="Chromosome sort order of both inputs: byte-wise (LC_ALL=C sort) or natural (sort -V).",
        ),
    ]
    for opt in reversed(options):
        f = opt(f)
    return f


def _build_config(
    upstream_boundaries: str,
    min_peak_overlap: float,
    min_gff_overlap: float,
    min_either_overlap: bool,
    midpoints_only: bool,
    feature_priority: str | None,
    join_strategy: str,
    chrom_order: str,
) -> ClassifierConfig:
    return ClassifierConfig(
        upstream_boundaries=parse_upstream_boundaries(upstream_boundaries),
        min_peak_overlap=min_peak_overlap,
        min_gff_overlap=min_gff_overlap,
        min_either_overlap=min_either_overlap,
        midpoints_only=midpoints_only,
        feature_priority=parse_feature_list(feature_priority) if feature_priority else None,
        join=join_strategy.lower(),
        chrom_order=chrom_order.lower(),
    )


@click.group()
def cli():
    """Classify genomic peaks by the gene-model features they overlap."""
    pass


@cli.command("download-gff")
@click.option("--release", required=True, type=int, help="Ensembl release number (e.g. 111, 112, 115)")
@click.option("--outdir", default="data/annotations", show_default=True, type=click.Path())
@click.option(
    "--species",
    default="homo_sapiens",
    show_default=True,
    help="Ensembl species directory name (e.g. homo_sapiens, mus_musculus).",
)
@click.option(
    "--assembly",
    default=None,
    help="Optional assembly substring to select the correct GFF3 when multiple exist (e.g. GRCh38, GRCm39).",
)
@_fatal_errors
def download_gff_cmd(release: int, outdir: str, species: str, assembly: str | None):
    path = download_gff3(release=release, out_dir=outdir, species=species, assembly=assembly)
    click.echo(str(path))


@cli.command("augment")
@click.argument("gff_path", type=click.Path(exists=True, dir_okay=False))
@click.argument("output_path", type=click.Path(dir_okay=False))
@click.option(
    "--upstream-boundaries",
    default="1000,10000,100000",
    show_default=True,
    help="Comma-separated ascending distances (bp) delimiting the upstream bands.",
)
@click.option(
    "--chrom-order",
    default="lexical",
    show_default=True,
    type=click.Choice(list(CHROM_ORDERS), case_sensitive=False),
    help="Chromosome sort order of the output.",
)
@_fatal_errors
def augment_cmd(gff_path: str, output_path: str, upstream_boundaries: str, chrom_order: str):
    """Write the sorted, augmented feature BED for GFF_PATH."""
    config = ClassifierConfig(
        upstream_boundaries=parse_upstream_boundaries(upstream_boundaries),
        chrom_order=chrom_order.lower(),
    )
    write_augmented_bed(gff_path, output_path, config)


@cli.command("classify")
@click.option(
    "--peaks",
    "peaks_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, allow_dash=True),
    help="Peak BED file (0-based), sorted by chromosome and start. '-' for stdin.",
)
@click.option(
    "--gff",
    "gff_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="GFF3 annotation (may be gzipped).",
)
@click.option(
    "--output",
    "output_path",
    required=True,
    type=click.Path(),
    help="Output base path (with or without .tsv). Produces <base>_overlaps.tsv, <base>_classified.tsv, <base>_stats.tsv.",
)
@_config_options
@click.option(
    "--cache-dir",
    default=".cache/peak-classifier",
    show_default=True,
    type=click.Path(),
    help="Directory to store/read augmented feature files.",
)
@click.option(
    "--report",
    is_flag=True,
    default=False,
    help="Log per-feature overlap counts when done (also written to the stats TSV).",
)
@click.option("--stats-out", default=None, type=click.Path(), help="Write run statistics to this TSV file.")
@_fatal_errors
def classify_cmd(
    peaks_path: str,
    gff_path: str,
    output_path: str,
    upstream_boundaries: str,
    min_peak_overlap: float,
    min_gff_overlap: float,
    min_either_overlap: bool,
    midpoints_only: bool,
    feature_priority: str | None,
    join_strategy: str,
    chrom_order: str,
    cache_dir: str,
    report: bool,
    stats_out: str | None,
):
    # configuration is validated before any input is read
    config = _build_config(
        upstream_boundaries,
        min_peak_overlap,
        min_gff_overlap,
        min_either_overlap,
        midpoints_only,
        feature_priority,
        join_strategy,
        chrom_order,
    )
    run_classify(
        peaks_path=peaks_path,
        gff_path=gff_path,
        output=output_path,
        config=config,
        cache_dir=cache_dir,
        report=report,
        stats_out=stats_out,
    )


@cli.command("filter-overlaps")
@click.argument("overlaps_path", type=click.Path(exists=True, dir_okay=False, allow_dash=True))
@click.argument("output_path", type=click.Path(dir_okay=False, allow_dash=True))
@click.argument("features", nargs=-1, required=True)
@click.option("--stats-out", default=None, type=click.Path(), help="Write per-feature counts to this TSV file.")
@_fatal_errors
def filter_overlaps_cmd(overlaps_path: str, output_path: str, features: tuple[str, ...], stats_out: str | None):
    """
    Keep one row per peak from OVERLAPS_PATH: the overlapping feature listed
    first in FEATURES.

    Example: filter-overlaps overlaps.tsv classified.tsv exon intron upstream1000
    """
    run_filter_overlaps(
        overlaps_path=overlaps_path,
        output_path=output_path,
        features=features,
        stats_out=stats_out,
    )


if __name__ == "__main__":
    cli()
