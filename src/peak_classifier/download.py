# src/peak_classifier/download.py
from __future__ import annotations

import re
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

import requests

from peak_classifier.errors import CollaboratorError


@dataclass(frozen=True)
class EnsemblGFF3:
    release: int
    species: str = "homo_sapiens"
    assembly: str | None = None  # optional filter for filename selection

    @property
    def base_dir_url(self) -> str:
        return f"https://ftp.ensembl.org/pub/release-{self.release}/gff3/{self.species}/"


def _run(cmd: list[str]) -> None:
    p = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True)
    if p.returncode != 0:
        raise CollaboratorError(p.stdout)


def _discover_gff3_filename(release: int, species: str, assembly: str | None = None) -> str:
    """
    Discover the whole-genome *.gff3.gz filename for a species and Ensembl
    release by listing the Ensembl HTTPS directory.

    Per-chromosome, abinitio and patch files are ignored. If assembly is
    provided, it is used as a case-insensitive substring filter.
    """
    url = EnsemblGFF3(release=release, species=species).base_dir_url
    r = requests.get(url, timeout=60)
    r.raise_for_status()

    files = sorted(set(re.findall(r'href="([^"]+\.gff3\.gz)"', r.text)))
    files = [f for f in files if not re.search(r"\.(chromosome|chr|abinitio|nonchromosomal|primary_assembly)\b", f)
             and ".chr_patch" not in f]
    if not files:
        raise CollaboratorError(f"No whole-genome .gff3.gz files found at {url}")

    if assembly:
        cand = [f for f in files if assembly.lower() in f.lower()]
        if not cand:
            raise CollaboratorError(f"No .gff3.gz matched assembly='{assembly}' at {url}")
        return sorted(cand, key=len)[0]

    # Heuristic: shortest filename is the primary annotation file.
    return sorted(files, key=len)[0]


def download_gff3(
    release: int,
    out_dir: str,
    species: str = "homo_sapiens",
    assembly: str | None = None,
) -> Path:
    """
    Download an Ensembl GFF3 for the given release/species via HTTPS.
    Returns the path to the .gff3.gz file; it is read compressed, so it is
    not unzipped.
    """
    spec = EnsemblGFF3(release=release, species=species, assembly=assembly)

    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)

    filename = _discover_gff3_filename(release=release, species=species, assembly=assembly)
    https_url = spec.base_dir_url + filename
    gz_path = out / filename

    # Reuse if already downloaded
    if gz_path.exists():
        return gz_path

    partial = out / (filename + ".part")
    if shutil.which("curl"):
        _run(["curl", "-fL", "--retry", "5", "--retry-delay", "3", "-o", str(partial), https_url])
    elif shutil.which("wget"):
        _run(["wget", "-c", "-O", str(partial), https_url])
    else:
        raise CollaboratorError("Neither 'curl' nor 'wget' found on this system.")

    partial.replace(gz_path)
    return gz_path
