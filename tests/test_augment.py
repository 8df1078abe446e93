import shutil

import pytest

from peak_classifier.augment import (
    AugmentStats,
    SubfeatureAugmenter,
    TranscriptState,
    augment_records,
    augmented_cache_path,
    is_primary_chromosome,
    is_transcript_boundary,
    load_or_build_augmented,
    write_augmented_bed,
)
from peak_classifier.config import ClassifierConfig
from peak_classifier.formats import read_gff
from peak_classifier.records import BLOCK_SEPARATOR, GffRecord

GFF = """\
##gff-version 3
##sequence-region   1 1 248956422
1\tGRCh38\tchromosome\t1\t248956422\t.\t.\t.\tID=chromosome:1
1\tensembl_havana\tgene\t200001\t210000\t.\t+\t.\tID=gene:G1
1\tensembl_havana\tmRNA\t200001\t210000\t.\t+\t.\tID=transcript:T1;Parent=gene:G1
1\tensembl_havana\tfive_prime_UTR\t200001\t200100\t.\t+\t.\tParent=transcript:T1
1\tensembl_havana\texon\t200001\t201000\t.\t+\t.\tParent=transcript:T1
1\tensembl_havana\texon\t203001\t204000\t.\t+\t.\tParent=transcript:T1
1\tensembl_havana\texon\t208001\t210000\t.\t+\t.\tParent=transcript:T1
1\tensembl_havana\tlnc_RNA\t200001\t204000\t.\t+\t.\tID=transcript:T2;Parent=gene:G1
1\tensembl_havana\texon\t200001\t201000\t.\t+\t.\tParent=transcript:T2
1\tensembl_havana\texon\t202001\t204000\t.\t+\t.\tParent=transcript:T2
###
X\tensembl\tgene\t100\t900\t.\t+\t.\tID=gene:GX
X\tensembl\texon\t100\t900\t.\t+\t.\tParent=gene:GX
###
2\tensembl\tgene\t5001\t6000\t.\t-\t.\tID=gene:G2
2\tensembl\tncRNA\t5001\t6000\t.\t-\t.\tID=transcript:T3;Parent=gene:G2
2\tensembl\texon\t5801\t6000\t.\t-\t.\tParent=transcript:T3
2\tensembl\texon\t5001\t5500\t.\t-\t.\tParent=transcript:T3
###
2\tensembl\tbiological_region\t7001\t7100\t.\t.\t.\tID=region:R1
"""


def _gff_path(tmp_path, text=GFF):
    path = tmp_path / "test.gff3"
    path.write_text(text)
    return path


def _augment(text=GFF, boundaries=(1000,), stats=None):
    return list(augment_records(read_gff(text.splitlines(keepends=True)), boundaries, stats))


def _gff(feature_type, start, end, strand="+", seqid="1"):
    return GffRecord(seqid, "test", feature_type, start, end, ".", strand, ".", "")


class TestPredicates:
    @pytest.mark.parametrize(
        "feature_type",
        ["mRNA", "lnc_RNA", "ncRNA", "snoRNA", "pseudogenic_transcript", "V_gene_segment", "C_gene_segment",
         "unconfirmed_transcript"],
    )
    def test_transcript_boundary(self, feature_type):
        assert is_transcript_boundary(feature_type)

    @pytest.mark.parametrize("feature_type", ["exon", "CDS", "five_prime_UTR", "three_prime_UTR"])
    def test_not_transcript_boundary(self, feature_type):
        assert not is_transcript_boundary(feature_type)

    @pytest.mark.parametrize("name,expected", [("1", True), ("22", True), ("chr7", True), ("X", False),
                                               ("MT", False), ("chrY", False), ("KI270728.1", False)])
    def test_primary_chromosome(self, name, expected):
        assert is_primary_chromosome(name) is expected


class TestSubfeatureAugmenter:
    def test_introns_between_exons(self):
        aug = SubfeatureAugmenter()
        out = []
        for start, end in [(101, 200), (301, 400), (501, 600), (701, 800)]:
            out.extend(aug.feed(_gff("exon", start, end)))
        introns = [r for r in out if r.feature_type == "intron"]
        assert [(r.start, r.end, r.ordinal) for r in introns] == [(200, 300, 1), (400, 500, 2), (600, 700, 3)]
        assert [r.ordinal for r in out if r.feature_type == "exon"] == [1, 2, 3, 4]
        assert aug.stats.introns == 3

    def test_intron_emitted_before_exon(self):
        aug = SubfeatureAugmenter()
        aug.feed(_gff("exon", 101, 200))
        out = aug.feed(_gff("exon", 301, 400))
        assert [r.feature_type for r in out] == ["intron", "exon"]

    def test_single_exon_has_no_intron(self):
        aug = SubfeatureAugmenter()
        assert aug.state is TranscriptState.AWAITING_FIRST_EXON
        out = aug.feed(_gff("exon", 101, 200))
        assert [r.feature_type for r in out] == ["exon"]
        assert aug.state is TranscriptState.IN_TRANSCRIPT

    def test_new_transcript_resets(self):
        aug = SubfeatureAugmenter()
        aug.feed(_gff("mRNA", 101, 800))
        aug.feed(_gff("exon", 101, 200))
        aug.feed(_gff("exon", 301, 400))
        assert aug.feed(_gff("mRNA", 101, 800)) == []
        assert aug.state is TranscriptState.AWAITING_FIRST_EXON
        out = aug.feed(_gff("exon", 501, 600))
        assert [(r.feature_type, r.ordinal) for r in out] == [("exon", 1)]

    def test_descending_exons(self):
        aug = SubfeatureAugmenter()
        aug.feed(_gff("exon", 501, 600, "-"))
        out = aug.feed(_gff("exon", 101, 200, "-"))
        assert (out[0].feature_type, out[0].start, out[0].end, out[0].strand) == ("intron", 200, 500, "-")

    def test_adjacent_exons_make_no_intron(self):
        aug = SubfeatureAugmenter()
        aug.feed(_gff("exon", 101, 200))
        out = aug.feed(_gff("exon", 201, 300))
        assert [r.feature_type for r in out] == ["exon"]

    def test_other_subfeatures_passed_through(self):
        aug = SubfeatureAugmenter()
        (utr,) = aug.feed(_gff("three_prime_UTR", 101, 200, "-"))
        assert (utr.feature_type, utr.start, utr.end, utr.strand) == ("three_prime_UTR", 100, 200, "-")
        assert aug.state is TranscriptState.AWAITING_FIRST_EXON

    def test_custom_boundary_predicate(self):
        aug = SubfeatureAugmenter(boundary=lambda t: t == "isoform")
        aug.feed(_gff("exon", 101, 200))
        aug.feed(_gff("isoform", 101, 800))
        out = aug.feed(_gff("exon", 301, 400))
        assert [r.feature_type for r in out] == ["exon"]


class TestAugmentationPipeline:
    def test_block_layout(self):
        items = _augment()
        blocks, cur = [], []
        for item in items:
            if item is BLOCK_SEPARATOR:
                blocks.append(cur)
                cur = []
            else:
                cur.append(item)
        assert cur == []
        # the X block is skipped but its separator passes through, leaving an empty block
        assert blocks[1] == []
        blocks = [b for b in blocks if b]
        assert len(blocks) == 3

        g1 = blocks[0]
        assert [(r.feature_type, r.start, r.end) for r in g1] == [
            ("gene", 200000, 210000),
            ("upstream1000", 199000, 200000),
            ("five_prime_UTR", 200000, 200100),
            ("exon", 200000, 201000),
            ("intron", 201000, 203000),
            ("exon", 203000, 204000),
            ("intron", 204000, 208000),
            ("exon", 208000, 210000),
            ("exon", 200000, 201000),
            ("intron", 201000, 202000),
            ("exon", 202000, 204000),
        ]

        g2 = blocks[1]
        assert [(r.feature_type, r.start, r.end) for r in g2] == [
            ("gene", 5000, 6000),
            ("exon", 5800, 6000),
            ("intron", 5500, 5800),
            ("exon", 5000, 5500),
            ("upstream1000", 6000, 7000),
        ]
        assert all(r.strand == "-" for r in g2)

        assert [(r.feature_type, r.start, r.end) for r in blocks[2]] == [("biological_region", 7000, 7100)]

    def test_intron_count_per_transcript(self):
        stats = AugmentStats()
        _augment(stats=stats)
        # T1: 3 exons -> 2, T2: 2 exons -> 1, T3: 2 exons -> 1
        assert stats.introns == 4
        assert stats.genes == 2
        assert stats.upstream_bands == 2
        assert stats.skipped_records == 3  # chromosome row, X gene, X exon

    def test_gene_without_separator_at_eof(self):
        text = "1\ttest\tgene\t1500\t2500\t.\t+\t.\tID=g\n"
        items = _augment(text)
        assert [getattr(i, "feature_type", i) for i in items] == ["gene", "upstream1000", BLOCK_SEPARATOR]

    def test_genes_without_separator_lines(self):
        text = (
            "1\ttest\tgene\t5001\t6000\t.\t+\t.\tID=g1\n"
            "1\ttest\tmRNA\t5001\t6000\t.\t+\t.\tID=t1;Parent=g1\n"
            "1\ttest\texon\t5001\t5200\t.\t+\t.\tParent=t1\n"
            "1\ttest\texon\t5801\t6000\t.\t+\t.\tParent=t1\n"
            "1\ttest\tgene\t20001\t21000\t.\t-\t.\tID=g2\n"
            "1\ttest\texon\t20001\t21000\t.\t-\t.\tParent=g2\n"
        )
        stats = AugmentStats()
        items = _augment(text, stats=stats)
        layout = [
            BLOCK_SEPARATOR if i is BLOCK_SEPARATOR else (i.feature_type, i.start, i.end) for i in items
        ]
        assert layout == [
            ("gene", 5000, 6000),
            ("upstream1000", 4000, 5000),
            ("exon", 5000, 5200),
            ("intron", 5200, 5800),
            ("exon", 5800, 6000),
            BLOCK_SEPARATOR,
            ("gene", 20000, 21000),
            ("exon", 20000, 21000),
            ("upstream1000", 21000, 22000),
            BLOCK_SEPARATOR,
        ]
        assert stats.genes == 2
        assert stats.upstream_bands == 2

    def test_scenario_band(self):
        text = "chr1\ttest\tgene\t1500\t2500\t.\t+\t.\tID=g\n"
        gene, band, sep = _augment(text)
        assert gene.to_bed_fields() == ["chr1", "1499", "2500", "gene", ".", "+"]
        assert band.to_bed_fields() == ["chr1", "499", "1499", "upstream1000", ".", "+"]
        assert sep is BLOCK_SEPARATOR

    def test_clamped_bands_counted(self):
        stats = AugmentStats()
        _augment("1\ttest\tgene\t501\t900\t.\t+\t.\tID=g\n", boundaries=(1000, 2000), stats=stats)
        assert stats.clamped_bands == 1
        assert stats.upstream_bands == 1

    def test_idempotent(self):
        assert _augment() == _augment()


@pytest.mark.skipif(shutil.which("sort") is None, reason="sort not available")
class TestAugmentedFile:
    def test_sorted_output(self, tmp_path):
        out = tmp_path / "aug.bed"
        stats = write_augmented_bed(str(_gff_path(tmp_path)), str(out), ClassifierConfig(upstream_boundaries=(1000,)))
        lines = out.read_text().splitlines()
        assert len(lines) == stats.written == 17
        keys = [(f[0], int(f[1]), int(f[2])) for f in (line.split("\t") for line in lines)]
        assert keys == sorted(keys)
        assert "1\t201000\t203000\tintron\t1\t+" in lines
        assert not any(line.startswith("#") for line in lines)
        assert not list(tmp_path.glob("aug.bed.*"))

    def test_byte_identical_reruns(self, tmp_path):
        gff = str(_gff_path(tmp_path))
        cfg = ClassifierConfig()
        write_augmented_bed(gff, str(tmp_path / "a.bed"), cfg)
        write_augmented_bed(gff, str(tmp_path / "b.bed"), cfg)
        assert (tmp_path / "a.bed").read_bytes() == (tmp_path / "b.bed").read_bytes()

    def test_cache_reused(self, tmp_path):
        gff = str(_gff_path(tmp_path))
        cfg = ClassifierConfig()
        cache = tmp_path / "cache"
        path, stats = load_or_build_augmented(gff, str(cache), cfg)
        assert stats is not None and path.exists()
        again, stats2 = load_or_build_augmented(gff, str(cache), cfg)
        assert again == path and stats2 is None

    def test_cache_name_depends_on_boundaries(self, tmp_path):
        gff = str(_gff_path(tmp_path))
        a = augmented_cache_path(gff, "c", ClassifierConfig(upstream_boundaries=(1000,)))
        b = augmented_cache_path(gff, "c", ClassifierConfig(upstream_boundaries=(2000,)))
        assert a != b
        assert a.name.startswith("test-augmented_")
