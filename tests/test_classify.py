import shutil

import pandas as pd
import pytest

from peak_classifier.classify import run
from peak_classifier.config import ClassifierConfig
from peak_classifier.errors import UnsortedInputError

pytestmark = pytest.mark.skipif(shutil.which("sort") is None, reason="sort not available")

GFF = """\
##gff-version 3
chr1\ttest\tgene\t1500\t2500\t.\t+\t.\tID=gene:G1
###
chr1\ttest\tgene\t10001\t20000\t.\t+\t.\tID=gene:G2
chr1\ttest\tmRNA\t10001\t20000\t.\t+\t.\tID=transcript:T1;Parent=gene:G2
chr1\ttest\texon\t10001\t11000\t.\t+\t.\tParent=transcript:T1
chr1\ttest\texon\t15001\t20000\t.\t+\t.\tParent=transcript:T1
###
"""


def _inputs(tmp_path, peaks):
    gff = tmp_path / "genes.gff3"
    gff.write_text(GFF)
    bed = tmp_path / "peaks.bed"
    bed.write_text(peaks)
    return str(bed), str(gff)


def _read(path):
    return [line.split("\t") for line in path.read_text().splitlines()[1:]]


class TestClassifyRun:
    def test_scenario(self, tmp_path):
        peaks, gff = _inputs(tmp_path, "chr1\t1000\t2000\n")
        cfg = ClassifierConfig(upstream_boundaries=(1000,), feature_priority=("exon", "intron", "upstream1000", "gene"))
        out = run(peaks_path=peaks, gff_path=gff, output=str(tmp_path / "out"), config=cfg,
                  cache_dir=str(tmp_path / "cache"))

        overlaps = _read(out["overlaps"])
        assert ["chr1", "1000", "2000", "499", "1499", "upstream1000", "+", "499"] in overlaps
        assert ["chr1", "1000", "2000", "1499", "2500", "gene", "+", "501"] in overlaps

        classified = _read(out["classified"])
        assert [row[5] for row in classified] == ["upstream1000"]

    def test_full_run(self, tmp_path):
        peaks, gff = _inputs(
            tmp_path,
            "chr1\t100\t200\tp1\n"       # clamped upstream5000 of G1
            "chr1\t2600\t2700\tp2\n"     # upstream-beyond
            "chr1\t9500\t9600\tp3\n"     # upstream1000 of G2
            "chr1\t10100\t10200\tp4\n"   # exon
            "chr1\t12000\t12100\tp5\n"   # intron
            "chr1\t14950\t15050\tp6\n",  # intron + exon -> exon
        )
        cfg = ClassifierConfig(upstream_boundaries=(1000, 5000))
        out = run(peaks_path=peaks, gff_path=gff, output=str(tmp_path / "res.tsv"), config=cfg,
                  cache_dir=str(tmp_path / "cache"), report=True)

        assert out["overlaps"].name == "res_overlaps.tsv"
        classified = [(row[1], row[5]) for row in _read(out["classified"])]
        assert classified == [
            ("100", "upstream5000"),
            ("2600", "upstream-beyond"),
            ("9500", "upstream1000"),
            ("10100", "exon"),
            ("12000", "intron"),
            ("14950", "exon"),
        ]

        acc = out["accumulator"]
        assert acc.unique_peaks == 6

        stats = pd.read_csv(out["stats"], sep="\t")
        values = dict(zip(stats["metric"], stats["value"]))
        assert int(values["join_peaks"]) == 6
        assert int(values["join_unmatched_peaks"]) == 1
        assert int(values["augment_introns"]) == 1
        assert int(values["overlaps_exon"]) == 2
        assert int(values["classified_peaks"]) == 6

    def test_unsorted_peaks(self, tmp_path):
        peaks, gff = _inputs(tmp_path, "chr1\t500\t600\nchr1\t100\t200\n")
        with pytest.raises(UnsortedInputError):
            run(peaks_path=peaks, gff_path=gff, output=str(tmp_path / "out"), config=ClassifierConfig(),
                cache_dir=str(tmp_path / "cache"))
        # header only
        assert (tmp_path / "out_overlaps.tsv").read_text().splitlines()[1:] == []
